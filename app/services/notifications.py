"""Event emitter: collaboration log entries and notification fan-out.

Runs strictly after a transition has been committed. Nothing raised in here
reaches the caller or undoes the transition; failures are logged and left to
the dispatcher's own retry policy.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol

import httpx
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.message import MessageAuthor, MilestoneMessage
from app.services.authorization import Actor
from app.services.directory import get_contact
from app.utils.errors import ExternalNotificationError
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

NOTIFICATION_CHANNELS = ("realtime", "email")


@dataclass(frozen=True)
class MilestoneEvent:
    """A committed transition, described for the collaboration log and recipients."""

    event_type: str
    job_id: int
    job_title: str
    milestone_id: int
    milestone_title: str
    actor: Actor
    targets: tuple[int, ...]
    message: str
    message_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    attachments: list[dict[str, Any]] = field(default_factory=list)

    def payload_for(self, recipient: dict[str, Any] | None) -> dict[str, Any]:
        body = {
            "job_id": self.job_id,
            "job_title": self.job_title,
            "milestone_id": self.milestone_id,
            "milestone_title": self.milestone_title,
            "actor": str(self.actor),
            "occurred_at": utcnow().isoformat(),
            "channels": list(NOTIFICATION_CHANNELS),
            **self.payload,
        }
        if recipient is not None:
            body["recipient"] = recipient
        return body


class NotificationDispatcher(Protocol):
    def dispatch(self, target_user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        """Hand a notification over for realtime and email delivery."""


class LoggingNotificationDispatcher:
    """Default dispatcher: records the notification in the application log."""

    def dispatch(self, target_user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        logger.info(
            "Notification dispatched",
            extra={
                "target_user_id": target_user_id,
                "event_type": event_type,
                "milestone_id": payload.get("milestone_id"),
            },
        )


class WebhookNotificationDispatcher:
    """POST notifications to an external fan-out service."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 2.0,
        secret: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.secret = secret
        self._client = client or httpx.Client(timeout=timeout)

    def _headers(self, content: bytes) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            digest = hmac.new(self.secret.encode(), content, hashlib.sha256).hexdigest()
            headers["X-Escrow-Signature"] = f"sha256={digest}"
        return headers

    def dispatch(self, target_user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        content = json.dumps(
            {"target_user_id": target_user_id, "event_type": event_type, "payload": payload},
            default=str,
        ).encode()
        try:
            response = self._client.post(
                self.url, content=content, headers=self._headers(content), timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalNotificationError(f"Notification webhook failed: {exc}") from exc


class CollaborationLog:
    """Append-only sink for system-authored milestone messages."""

    def append(
        self,
        db: Session,
        *,
        milestone_id: int,
        message: str,
        message_type: str,
        attachments: list[dict[str, Any]] | None = None,
    ) -> MilestoneMessage:
        entry = MilestoneMessage(
            milestone_id=milestone_id,
            author_kind=MessageAuthor.SYSTEM,
            author_user_id=None,
            message=message,
            message_type=message_type,
            attachments=list(attachments or []),
        )
        db.add(entry)
        db.commit()
        return entry


class EventEmitter:
    """Best-effort notifier invoked after every committed transition."""

    def __init__(self, dispatcher: NotificationDispatcher, log: CollaborationLog | None = None) -> None:
        self.dispatcher = dispatcher
        self.log = log or CollaborationLog()

    def emit(self, db: Session, event: MilestoneEvent) -> None:
        self._append_to_log(db, event)
        for target in event.targets:
            self._notify(db, target, event)

    def _append_to_log(self, db: Session, event: MilestoneEvent) -> None:
        try:
            self.log.append(
                db,
                milestone_id=event.milestone_id,
                message=event.message,
                message_type=event.message_type,
                attachments=event.attachments,
            )
        except Exception:  # noqa: BLE001
            db.rollback()
            logger.exception(
                "Collaboration log append failed",
                extra={"milestone_id": event.milestone_id, "event_type": event.event_type},
            )

    def _notify(self, db: Session, target: int, event: MilestoneEvent) -> None:
        try:
            contact = get_contact(db, target)
            recipient = {"name": contact.name, "email": contact.email} if contact else None
            self.dispatcher.dispatch(target, event.event_type, event.payload_for(recipient))
        except ExternalNotificationError as exc:
            logger.warning(
                "Notification dispatch failed",
                extra={"target_user_id": target, "event_type": event.event_type, "error": str(exc)},
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Unexpected notification failure",
                extra={"target_user_id": target, "event_type": event.event_type},
            )


def build_event_emitter(settings: Settings) -> EventEmitter:
    if settings.NOTIFICATION_WEBHOOK_URL:
        dispatcher: NotificationDispatcher = WebhookNotificationDispatcher(
            settings.NOTIFICATION_WEBHOOK_URL,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
            secret=settings.NOTIFICATION_WEBHOOK_SECRET,
        )
    else:
        dispatcher = LoggingNotificationDispatcher()
    return EventEmitter(dispatcher)


@lru_cache
def get_event_emitter() -> EventEmitter:
    """Return the process-wide emitter (overridable as a FastAPI dependency)."""

    return build_event_emitter(get_settings())


__all__ = [
    "CollaborationLog",
    "EventEmitter",
    "LoggingNotificationDispatcher",
    "MilestoneEvent",
    "NotificationDispatcher",
    "WebhookNotificationDispatcher",
    "build_event_emitter",
    "get_event_emitter",
]
