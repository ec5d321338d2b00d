# app/security.py
"""Security dependencies for API key validation and scope enforcement."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Set

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.api_key import ApiKey, ApiScope
from app.utils.apikey import find_valid_key
from app.utils.audit import actor_from_api_key, log_audit
from app.utils.errors import error_response
from app.utils.time import utcnow


@dataclass(frozen=True)
class Principal:
    """The marketplace user behind an API key."""

    user_id: int
    is_admin: bool = False


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_api_key(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_key),
) -> ApiKey:
    """Validate API key tokens and return the corresponding row."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    key = find_valid_key(db, token)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key"),
        )

    # Book-keeping: last_used_at + audit
    key.last_used_at = utcnow()
    log_audit(
        db,
        actor=actor_from_api_key(key),
        action="API_KEY_USED",
        entity="ApiKey",
        entity_id=key.id,
        data={"scope": key.scope.value, "prefix": key.prefix},
    )
    db.commit()
    return key


def require_scope(allowed: Set[ApiScope]) -> Callable:
    """Ensure the key carries one of the allowed scopes (admin always passes)."""

    if not allowed:
        raise RuntimeError("require_scope needs a non-empty set of ApiScope")

    def _dep(key: ApiKey = Depends(require_api_key)) -> ApiKey:
        if key.scope == ApiScope.admin or key.scope in allowed:
            return key
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_SCOPE",
                f"Requires one of: {[scope.value for scope in allowed]}",
            ),
        )

    return _dep


def get_principal(key: ApiKey = Depends(require_scope({ApiScope.user}))) -> Principal:
    """Return the user the key acts for; keys without a user cannot touch milestones."""

    if key.user_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("USER_NOT_LINKED", "API key is not linked to a user."),
        )
    return Principal(user_id=key.user_id, is_admin=key.scope == ApiScope.admin)


__all__ = ["Principal", "get_principal", "require_api_key", "require_scope"]
