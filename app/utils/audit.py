"""Audit trail helpers: masking and staging of AuditLog rows."""
from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from app.models.audit import AuditLog
from app.utils.time import utcnow

LINK_KEYS = frozenset({"locator", "submission_url"})
FREE_TEXT_KEYS = frozenset({"reason", "note", "feedback", "submission_note"})
FREE_TEXT_PREVIEW = 120


def _mask_email(value: Any) -> str:
    text = str(value)
    if "@" not in text:
        return "***"
    return "***@" + text.split("@", 1)[1]


def _mask_link(value: Any) -> str:
    # Evidence and deliverable links are often pre-signed.
    base = str(value).split("?", 1)[0]
    if "/" not in base:
        return "***/***"
    return base.rsplit("/", 1)[0] + "/***"


def _preview(value: Any) -> str:
    text = str(value)
    if len(text) <= FREE_TEXT_PREVIEW:
        return text
    return text[: FREE_TEXT_PREVIEW - 3] + "..."


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key == "email":
        return _mask_email(value)
    if key in LINK_KEYS:
        return _mask_link(value)
    if key in FREE_TEXT_KEYS:
        return _preview(value)
    return value


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with contact details and links masked.

    Free-text fields (refund reasons, resolution notes) are kept as a short
    preview; the full text lives on the dispute row.
    """

    if isinstance(data, Mapping):
        return {key: sanitize_payload_for_audit(_mask_value(key, value)) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [sanitize_payload_for_audit(item) for item in data]
    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: dict | None = None,
) -> AuditLog:
    """Stage an audit entry in the caller's transaction; the caller commits."""

    entry = AuditLog(
        actor=actor,
        action=action,
        entity=entity,
        entity_id=entity_id if entity_id is not None else 0,
        data_json=sanitize_payload_for_audit(data or {}),
        at=utcnow(),
    )
    db.add(entry)
    return entry


def actor_from_api_key(api_key: Any, fallback: str = "system") -> str:
    prefix = getattr(api_key, "prefix", None)
    return f"apikey:{prefix}" if prefix else fallback
