"""Earning ledger models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, value_enum


class EarningStatus(str, PyEnum):
    """Ledger states mirrored from the milestone."""

    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"


class AdjustmentKind(str, PyEnum):
    """Kinds of ledger movements recorded against an earning."""

    PAYMENT = "payment"
    DISPUTE_OPENED = "dispute_opened"
    PARTIAL_REFUND = "partial_refund"
    FULL_REFUND = "full_refund"
    DISPUTE_REJECTED = "dispute_rejected"


class Earning(Base):
    """Money credited (or credit-adjusted) to a freelancer for one milestone."""

    __tablename__ = "earnings"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_earning_non_negative_amount"),
        Index("ix_earnings_status", "status"),
    )

    freelancer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id"), nullable=False, index=True)
    milestone_id: Mapped[int] = mapped_column(ForeignKey("milestones.id"), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[EarningStatus] = mapped_column(
        value_enum(EarningStatus, "earningstatus"), nullable=False, default=EarningStatus.COMPLETED
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    milestone = relationship("Milestone", back_populates="earning")
    adjustments = relationship(
        "EarningAdjustment",
        back_populates="earning",
        order_by="EarningAdjustment.id",
        cascade="all, delete-orphan",
    )


class EarningAdjustment(Base):
    """Immutable audit entry for each change applied to an earning."""

    __tablename__ = "earning_adjustments"

    earning_id: Mapped[int] = mapped_column(ForeignKey("earnings.id"), nullable=False, index=True)
    kind: Mapped[AdjustmentKind] = mapped_column(value_enum(AdjustmentKind, "adjustmentkind"), nullable=False)
    amount_delta: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    earning = relationship("Earning", back_populates="adjustments")
