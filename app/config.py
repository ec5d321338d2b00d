"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("ESCROW_ENV", "dev").lower()

# Recognised API key scopes
API_SCOPES = {"user", "admin"}


class Settings(BaseSettings):
    """Environment configuration for the milestone escrow backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///milestone_escrow.db"
    SECRET_KEY: str = "change-me"
    ALLOW_DB_CREATE_ALL: bool = False
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Background sweeps -------------------------------------------------
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_INTERVAL_MINUTES: int = 15

    # --- Refund requests ---------------------------------------------------
    REFUND_REASON_MIN_LENGTH: int = 10
    REFUND_REASON_MAX_LENGTH: int = 1000
    REFUND_EVIDENCE_MAX_ITEMS: int = 20
    RESOLUTION_NOTE_MAX_LENGTH: int = 1000

    # --- Disputes ----------------------------------------------------------
    DISPUTE_RESPONSE_WINDOW_HOURS: int = 72
    DISPUTE_ESCALATION_ENABLED: bool = False
    DISPUTE_PARTY_SELF_RESOLUTION: bool = True

    # --- Auto-release of submitted milestones ------------------------------
    AUTO_RELEASE_ENABLED: bool = True
    AUTO_RELEASE_GRACE_HOURS: int = 72

    # --- Notifications -----------------------------------------------------
    NOTIFICATION_WEBHOOK_URL: str | None = None
    NOTIFICATION_WEBHOOK_SECRET: str | None = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 2.0

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator("NOTIFICATION_WEBHOOK_URL", "NOTIFICATION_WEBHOOK_SECRET")
    @classmethod
    def _strip_empty(cls, value: str | None) -> str | None:
        """Normalise empty strings to ``None`` so the webhook stays disabled."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "milestone-escrow-backend"
    version: str = "0.1.0"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = [
    "ENV",
    "API_SCOPES",
    "Settings",
    "AppInfo",
    "get_settings",
]
