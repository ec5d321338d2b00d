"""Milestone model definitions."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from .base import Base, value_enum

if TYPE_CHECKING:
    from .dispute import MilestoneDispute


class MilestoneStatus(str, PyEnum):
    """Possible statuses for a milestone."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


TERMINAL_STATUSES = frozenset({MilestoneStatus.REFUNDED, MilestoneStatus.PARTIALLY_REFUNDED})


class Milestone(Base):
    """A priced unit of work whose funds stay in escrow until approval."""

    __tablename__ = "milestones"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_milestone_rating_range"),
        Index("ix_milestones_status", "status"),
        Index("ix_milestones_job_sort", "job_id", "sort_order"),
    )

    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[MilestoneStatus] = mapped_column(
        value_enum(MilestoneStatus, "milestonestatus"), nullable=False, default=MilestoneStatus.PENDING
    )

    submission_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    submission_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_release_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dispute_resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency token: every UPDATE is conditioned on it.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    job = relationship("Job", back_populates="milestones")
    disputes = relationship(
        "MilestoneDispute",
        back_populates="milestone",
        order_by="MilestoneDispute.id",
    )
    earning = relationship("Earning", back_populates="milestone", uselist=False)

    __mapper_args__ = {"version_id_col": version}

    @validates("amount")
    def _freeze_amount(self, key: str, value: Decimal) -> Decimal:
        current = self.__dict__.get("amount")
        if current is not None and Decimal(str(value)) != current:
            raise ValueError("Milestone amount is immutable once created")
        return value

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None

    @property
    def dispute(self) -> "MilestoneDispute | None":
        """The most recent refund request, open or settled; ``None`` if never disputed."""
        return self.disputes[-1] if self.disputes else None
