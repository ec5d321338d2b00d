"""Schemas for milestone entities and lifecycle actions."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models.milestone import MilestoneStatus


class MilestoneCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    amount: Decimal = Field(gt=Decimal("0"), max_digits=18, decimal_places=2)
    currency: str = Field(default="USD", pattern="^[A-Z]{3}$")
    due_date: datetime | None = None
    sort_order: int = Field(default=0, ge=0)
    auto_release_enabled: bool = True


class MilestoneRead(BaseModel):
    id: int
    job_id: int
    title: str
    description: str | None
    amount: Decimal
    currency: str
    due_date: datetime | None
    sort_order: int
    status: MilestoneStatus
    submission_url: str | None
    submission_note: str | None
    feedback: str | None
    rating: int | None
    auto_release_enabled: bool
    submitted_at: datetime | None
    approved_at: datetime | None
    paid_at: datetime | None
    disputed_at: datetime | None
    refunded_at: datetime | None
    dispute_resolved_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MilestoneSubmit(BaseModel):
    submission_url: str | None = Field(default=None, max_length=2048)
    submission_note: str | None = Field(default=None, max_length=5000)


class MilestoneApprove(BaseModel):
    feedback: str | None = Field(default=None, max_length=5000)
    rating: int | None = Field(default=None, ge=1, le=5)


class TransitionResult(BaseModel):
    """Minimal answer of the submit/approve/start operations."""

    milestone_id: int
    status: MilestoneStatus
    job_completed: bool = False
