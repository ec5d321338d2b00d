"""Health check endpoint."""
from __future__ import annotations

import logging

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter
from sqlalchemy import text

from app.config import get_settings
from app.core.runtime_state import is_scheduler_active, scheduled_jobs
from app.db import get_engine
from app.services.scheduler_lock import describe_scheduler_lock

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        config = Config("alembic.ini")
        script = ScriptDirectory.from_config(config)
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> tuple[bool, str]:
    expected_head = _expected_migration_head()
    try:
        engine = get_engine()
        with engine.connect() as conn:
            current = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
        if expected_head and current == expected_head:
            return True, "up_to_date"
        if expected_head is None:
            return False, "unknown"
        return False, "out_of_date"
    except Exception:  # noqa: BLE001
        logger.exception("Migration check failed")
        return False, "unknown"


def _scheduler_lock_status() -> dict[str, object]:
    try:
        return describe_scheduler_lock()
    except Exception:  # noqa: BLE001
        logger.exception("Scheduler lock check failed")
        return {"status": "unknown", "owner": None}


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    """Return database, migration and scheduler status plus escrow policy flags."""

    settings = get_settings()
    db_status = _db_status()
    db_ok = db_status == "ok"
    if db_ok:
        migration_ok, migration_status = _migrations_status()
    else:
        migration_ok, migration_status = False, "unknown"
    degraded = not (db_ok and migration_ok)
    return {
        "status": "degraded" if degraded else "ok",
        "env": settings.app_env,
        "db_ok": db_ok,
        "db_status": db_status,
        "migrations_ok": migration_ok,
        "migrations_status": migration_status,
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "scheduler_jobs": list(scheduled_jobs()),
        "scheduler_lock": _scheduler_lock_status() if db_ok else {"status": "unknown", "owner": None},
        "notifications": {
            "webhook_configured": bool(settings.NOTIFICATION_WEBHOOK_URL),
            "webhook_signed": bool(settings.NOTIFICATION_WEBHOOK_SECRET),
        },
        "features": {
            "auto_release": {
                "enabled": bool(settings.AUTO_RELEASE_ENABLED),
                "grace_hours": settings.AUTO_RELEASE_GRACE_HOURS,
            },
            "dispute_escalation": {
                "enabled": bool(settings.DISPUTE_ESCALATION_ENABLED),
                "response_window_hours": settings.DISPUTE_RESPONSE_WINDOW_HOURS,
            },
            "party_self_resolution": bool(settings.DISPUTE_PARTY_SELF_RESOLUTION),
        },
    }
