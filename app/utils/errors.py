"""Domain error taxonomy and standardized error payloads."""
from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class EscrowDomainError(Exception):
    """Base class for errors returned to the caller as the outcome of a request."""

    code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details or None)


class ValidationError(EscrowDomainError):
    """Malformed input; ``field`` names the offending attribute."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message, details={"field": field})
        self.field = field


class AuthorizationError(EscrowDomainError):
    code = "FORBIDDEN"
    status_code = 403


class StateConflictError(EscrowDomainError):
    """Transition not legal from the current status, including lost races."""

    code = "STATE_CONFLICT"
    status_code = 409


class NotFoundError(EscrowDomainError):
    code = "NOT_FOUND"
    status_code = 404


class ExternalNotificationError(Exception):
    """A best-effort side channel failed. Logged, never surfaced to callers."""


__all__ = [
    "AuthorizationError",
    "EscrowDomainError",
    "ExternalNotificationError",
    "NotFoundError",
    "StateConflictError",
    "ValidationError",
    "error_response",
]
