"""Earning ledger synchronisation.

Every function here only stages changes on the session. The caller commits
them together with the milestone status write, so the ledger and the
milestone always move in the same transaction.
"""
import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.earning import AdjustmentKind, Earning, EarningAdjustment, EarningStatus
from app.models.job import Job
from app.models.milestone import Milestone
from app.services.authorization import Actor
from app.utils.money import to_decimal
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class LedgerInvariantError(RuntimeError):
    """Raised when a ledger change would break ``0 <= earning <= milestone amount``."""


def get_earning(db: Session, milestone_id: int) -> Earning | None:
    stmt = select(Earning).where(Earning.milestone_id == milestone_id).limit(1)
    return db.scalars(stmt).first()


def _check_bounds(earning: Earning, milestone: Milestone) -> None:
    if earning.amount < ZERO or earning.amount > milestone.amount:
        raise LedgerInvariantError(
            f"Earning {earning.amount} outside [0, {milestone.amount}] for milestone {milestone.id}"
        )


def _adjust(
    earning: Earning,
    kind: AdjustmentKind,
    *,
    delta: Decimal,
    actor: Actor,
    note: str | None = None,
) -> None:
    earning.adjustments.append(
        EarningAdjustment(
            kind=kind,
            amount_delta=to_decimal(delta),
            balance_after=to_decimal(earning.amount),
            actor=str(actor),
            note=note,
            at=utcnow(),
        )
    )


def _new_earning(milestone: Milestone, job: Job, amount: Decimal, description: str) -> Earning:
    if job.freelancer_id is None:
        raise LedgerInvariantError(f"Job {job.id} has no freelancer to credit")
    earning = Earning(
        freelancer_id=job.freelancer_id,
        job_id=job.id,
        amount=to_decimal(amount),
        currency=milestone.currency,
        status=EarningStatus.COMPLETED,
        description=description,
    )
    earning.milestone = milestone
    return earning


def record_payment(db: Session, milestone: Milestone, job: Job, actor: Actor) -> Earning:
    """Create (or confirm) the earning crediting the full milestone amount."""

    earning = get_earning(db, milestone.id)
    if earning is not None:
        # Already credited: confirm it instead of paying twice.
        if earning.status != EarningStatus.COMPLETED or earning.amount != milestone.amount:
            raise LedgerInvariantError(
                f"Milestone {milestone.id} already has a {earning.status.value} earning of {earning.amount}"
            )
        return earning

    earning = _new_earning(milestone, job, milestone.amount, f"Payment for milestone: {milestone.title}")
    db.add(earning)
    _adjust(earning, AdjustmentKind.PAYMENT, delta=milestone.amount, actor=actor)
    _check_bounds(earning, milestone)
    logger.info(
        "Earning recorded",
        extra={"milestone_id": milestone.id, "amount": str(earning.amount), "actor": str(actor)},
    )
    return earning


def mark_disputed(db: Session, milestone: Milestone, actor: Actor, reason: str) -> Earning | None:
    """Flag a completed earning as disputed; its amount is left untouched."""

    earning = get_earning(db, milestone.id)
    if earning is None or earning.status != EarningStatus.COMPLETED:
        return None
    earning.status = EarningStatus.DISPUTED
    _adjust(earning, AdjustmentKind.DISPUTE_OPENED, delta=ZERO, actor=actor, note=reason)
    return earning


def apply_full_refund(db: Session, milestone: Milestone, actor: Actor, note: str | None) -> Earning | None:
    """Record a full reversal. Nothing to reverse when the milestone was never paid."""

    earning = get_earning(db, milestone.id)
    if earning is None:
        return None
    earning.status = EarningStatus.REFUNDED
    _adjust(earning, AdjustmentKind.FULL_REFUND, delta=-earning.amount, actor=actor, note=note)
    return earning


def apply_partial_refund(
    db: Session,
    milestone: Milestone,
    job: Job,
    refund_amount: Decimal,
    actor: Actor,
    note: str | None,
) -> Earning:
    """Reduce the earning to ``milestone.amount - refund_amount``.

    When the milestone had not been paid yet, the remainder is released to the
    freelancer by creating the earning at the reduced amount.
    """

    refund_amount = to_decimal(refund_amount)
    remaining = to_decimal(milestone.amount - refund_amount)
    earning = get_earning(db, milestone.id)
    if earning is None:
        earning = _new_earning(
            milestone, job, remaining, f"Partial payment for milestone: {milestone.title}"
        )
        db.add(earning)
        delta = remaining
    else:
        delta = remaining - earning.amount
        earning.amount = remaining
    earning.status = EarningStatus.COMPLETED
    _adjust(earning, AdjustmentKind.PARTIAL_REFUND, delta=delta, actor=actor, note=note)
    _check_bounds(earning, milestone)
    logger.info(
        "Partial refund applied to earning",
        extra={"milestone_id": milestone.id, "refund": str(refund_amount), "remaining": str(remaining)},
    )
    return earning


def restore_after_rejection(db: Session, milestone: Milestone, actor: Actor, note: str | None) -> Earning | None:
    """Return a disputed earning to ``completed`` with its amount unchanged."""

    earning = get_earning(db, milestone.id)
    if earning is None:
        return None
    earning.status = EarningStatus.COMPLETED
    _adjust(earning, AdjustmentKind.DISPUTE_REJECTED, delta=ZERO, actor=actor, note=note)
    return earning


__all__ = [
    "LedgerInvariantError",
    "apply_full_refund",
    "apply_partial_refund",
    "get_earning",
    "mark_disputed",
    "record_payment",
    "restore_after_rejection",
]
