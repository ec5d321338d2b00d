"""Schemas for refund requests and dispute resolution."""
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models.dispute import ResolutionAction
from app.models.milestone import MilestoneStatus


class DisputeEvidence(BaseModel):
    type: str = Field(min_length=1, max_length=50)
    locator: str = Field(min_length=1, max_length=2048)
    description: str = Field(default="", max_length=1000)


class RefundRequestCreate(BaseModel):
    # Length bounds are enforced by the service so direct callers get them too.
    reason: str
    amount: Decimal | None = None
    evidence: list[DisputeEvidence] = Field(default_factory=list)


class DisputeResolutionCreate(BaseModel):
    action: Literal["approve", "reject", "partial"]
    amount: Decimal | None = None
    note: str | None = None


class RefundRequestRead(BaseModel):
    requested_by: int = Field(validation_alias="requested_by_id")
    requested_at: datetime
    reason: str
    amount: Decimal = Field(validation_alias="requested_amount")
    evidence: list[DisputeEvidence]
    previous_status: MilestoneStatus
    escalated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class RefundResolutionRead(BaseModel):
    action: ResolutionAction
    amount: Decimal
    resolved_by: int | None
    resolved_by_role: str
    resolved_at: datetime
    note: str | None = None


class DisputeSummary(BaseModel):
    milestone_id: int
    status: MilestoneStatus
    reason: str
    amount: Decimal
    created_at: datetime
    respond_by: datetime


class RefundRequestResult(BaseModel):
    status: MilestoneStatus
    dispute: DisputeSummary


class ResolutionSummary(BaseModel):
    action: ResolutionAction
    amount: Decimal
    status: MilestoneStatus
    earning_amount: Decimal | None = None


class DisputeResolutionResult(BaseModel):
    status: MilestoneStatus
    resolution: ResolutionSummary


class RefundStatusRead(BaseModel):
    status: MilestoneStatus
    is_disputed: bool
    disputed_at: datetime | None
    refunded_at: datetime | None
    refund_request: RefundRequestRead | None = None
    refund_resolution: RefundResolutionRead | None = None
