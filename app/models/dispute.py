"""Dispute records attached to milestones."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, value_enum
from .milestone import MilestoneStatus


class ResolutionAction(str, PyEnum):
    """How a dispute was settled."""

    APPROVE = "approve"
    REJECT = "reject"
    PARTIAL = "partial"


class MilestoneDispute(Base):
    """One refund request against a milestone and how it was settled.

    A milestone keeps every request it has received; a rejected dispute can be
    followed by a new one.
    """

    __tablename__ = "milestone_disputes"
    __table_args__ = (
        CheckConstraint("requested_amount > 0", name="ck_dispute_positive_requested_amount"),
        CheckConstraint(
            "resolved_amount IS NULL OR (resolved_amount >= 0 AND resolved_amount <= requested_amount)",
            name="ck_dispute_resolved_within_requested",
        ),
    )

    milestone_id: Mapped[int] = mapped_column(ForeignKey("milestones.id"), nullable=False, index=True)
    requested_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    requested_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    evidence: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    previous_status: Mapped[MilestoneStatus] = mapped_column(
        value_enum(MilestoneStatus, "milestonestatus"), nullable=False
    )
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    resolution_action: Mapped[ResolutionAction | None] = mapped_column(
        value_enum(ResolutionAction, "resolutionaction"), nullable=True
    )
    resolved_by_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolved_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    milestone = relationship("Milestone", back_populates="disputes")

    @property
    def is_resolved(self) -> bool:
        return self.resolution_action is not None
