"""Alert service helpers."""
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.alert import Alert

logger = logging.getLogger(__name__)


def create_alert(
    db: Session,
    *,
    alert_type: str,
    message: str,
    milestone_id: int | None,
    payload: dict[str, Any],
) -> Alert:
    """Persist an alert together with whatever the session has staged."""

    alert = Alert(type=alert_type, message=message, milestone_id=milestone_id, payload_json=payload)
    db.add(alert)
    db.commit()
    db.refresh(alert)
    logger.warning("Alert created", extra={"type": alert_type, "milestone_id": milestone_id})
    return alert


def list_alerts(db: Session, *, alert_type: str | None = None, limit: int = 100) -> list[Alert]:
    stmt = select(Alert).order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit)
    if alert_type:
        stmt = stmt.where(Alert.type == alert_type)
    return list(db.scalars(stmt).all())


__all__ = ["create_alert", "list_alerts"]
