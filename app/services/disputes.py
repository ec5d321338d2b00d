"""Dispute resolution, refund status and the stale-dispute escalation sweep."""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.dispute import MilestoneDispute, ResolutionAction
from app.models.milestone import Milestone, MilestoneStatus
from app.schemas.dispute import (
    DisputeResolutionResult,
    RefundRequestRead,
    RefundResolutionRead,
    RefundStatusRead,
    ResolutionSummary,
)
from app.services import ledger
from app.services.alerts import create_alert
from app.services.authorization import Actor, MilestoneAction
from app.services.directory import get_job_parties
from app.services.milestones import sync_job_completion
from app.services.notifications import EventEmitter, MilestoneEvent
from app.services.transitions import commit_transition, emit, load_for_action
from app.utils.audit import log_audit
from app.utils.errors import StateConflictError, ValidationError
from app.utils.money import format_amount, to_decimal
from app.utils.time import hours_before, utcnow

logger = logging.getLogger(__name__)

ESCALATION_ALERT_TYPE = "DISPUTE_ESCALATED"


def resolve_dispute(
    db: Session,
    job_id: int,
    milestone_id: int,
    actor: Actor,
    *,
    action: ResolutionAction | str,
    amount: Decimal | str | None = None,
    note: str | None = None,
    emitter: EventEmitter | None = None,
) -> DisputeResolutionResult:
    """Settle an open dispute by approving, rejecting or partially refunding it.

    ``approve`` refunds what the client asked for; when that was less than the
    full milestone amount the outcome is a partial refund of that sum.
    ``partial`` refunds ``amount`` and releases the remainder. ``reject``
    returns the milestone to where it was before the dispute, paid or not.
    """

    settings = get_settings()
    job, milestone = load_for_action(
        db,
        job_id,
        milestone_id,
        actor,
        MilestoneAction.RESOLVE_DISPUTE,
        allow_party_resolution=settings.DISPUTE_PARTY_SELF_RESOLUTION,
    )
    observed = milestone.status
    dispute = milestone.dispute
    if dispute is None or dispute.is_resolved:
        raise StateConflictError("Milestone has no open dispute", details={"milestone_id": milestone.id})

    try:
        action = ResolutionAction(action)
    except ValueError as exc:
        raise ValidationError("action", "Action must be one of approve, reject, partial") from exc
    cleaned_note = (note or "").strip() or None
    if cleaned_note and len(cleaned_note) > settings.RESOLUTION_NOTE_MAX_LENGTH:
        raise ValidationError(
            "note", f"Note must be at most {settings.RESOLUTION_NOTE_MAX_LENGTH} characters"
        )

    requested = to_decimal(dispute.requested_amount)
    if action is ResolutionAction.PARTIAL:
        refund = _validate_partial_amount(amount, milestone, requested)
    elif action is ResolutionAction.APPROVE:
        refund = requested
    else:
        refund = ledger.ZERO

    now = utcnow()
    earning = None
    if action is ResolutionAction.REJECT:
        milestone.status = MilestoneStatus.APPROVED if milestone.paid_at else MilestoneStatus.SUBMITTED
        earning = ledger.restore_after_rejection(db, milestone, actor, cleaned_note)
    elif refund == milestone.amount:
        milestone.status = MilestoneStatus.REFUNDED
        milestone.refunded_at = now
        earning = ledger.apply_full_refund(db, milestone, actor, cleaned_note)
    else:
        milestone.status = MilestoneStatus.PARTIALLY_REFUNDED
        milestone.refunded_at = now
        earning = ledger.apply_partial_refund(db, milestone, job, refund, actor, cleaned_note)
        if milestone.paid_at is None:
            # The remainder has just been released to the freelancer.
            milestone.paid_at = now
    milestone.dispute_resolved_at = now
    sync_job_completion(db, job, now)

    dispute.resolution_action = action
    dispute.resolved_by_role = actor.role.value
    dispute.resolved_by_id = actor.user_id
    dispute.resolved_at = now
    dispute.resolved_amount = refund
    dispute.resolution_note = cleaned_note

    log_audit(
        db,
        actor=str(actor),
        action="DISPUTE_RESOLVED",
        entity="Milestone",
        entity_id=milestone.id,
        data={
            "from": observed.value,
            "to": milestone.status.value,
            "resolution": action.value,
            "refund_amount": str(refund),
            "earning_amount": str(earning.amount) if earning is not None else None,
            "note": cleaned_note,
        },
    )
    commit_transition(db, milestone, MilestoneAction.RESOLVE_DISPUTE, observed)
    logger.info(
        "Dispute resolved",
        extra={
            "milestone_id": milestone.id,
            "actor": str(actor),
            "resolution": action.value,
            "refund_amount": str(refund),
        },
    )

    emit(
        db,
        emitter,
        lambda: MilestoneEvent(
            event_type="dispute-resolved",
            job_id=job.id,
            job_title=job.title,
            milestone_id=milestone.id,
            milestone_title=milestone.title,
            actor=actor,
            targets=get_job_parties(job).others(actor.user_id),
            message=_resolution_message(action, refund, cleaned_note),
            message_type="dispute_resolution",
            payload={
                "resolution": action.value,
                "amount": str(refund),
                "status": milestone.status.value,
            },
        ),
    )
    return DisputeResolutionResult(
        status=milestone.status,
        resolution=ResolutionSummary(
            action=action,
            amount=refund,
            status=milestone.status,
            earning_amount=earning.amount if earning is not None else None,
        ),
    )


def _validate_partial_amount(amount: Decimal | str | None, milestone: Milestone, requested: Decimal) -> Decimal:
    if amount is None:
        raise ValidationError("amount", "A partial refund requires an amount")
    try:
        value = to_decimal(amount)
    except ValueError as exc:
        raise ValidationError("amount", str(exc)) from exc
    if value <= 0:
        raise ValidationError("amount", "Partial refund amount must be positive")
    if value >= milestone.amount:
        raise ValidationError("amount", "Partial refund must be less than the milestone amount")
    if value > requested:
        raise ValidationError("amount", f"Partial refund cannot exceed the requested amount {requested}")
    return value


def _resolution_message(action: ResolutionAction, refund: Decimal, note: str | None) -> str:
    if action is ResolutionAction.REJECT:
        text = "Refund request rejected"
    elif action is ResolutionAction.APPROVE:
        text = f"Refund approved: {format_amount(refund)}"
    else:
        text = f"Partial refund approved: {format_amount(refund)}"
    if note:
        text = f"{text}\n\nNote: {note}"
    return text


def get_refund_status(db: Session, job_id: int, milestone_id: int, actor: Actor) -> RefundStatusRead:
    """Read-only view of the milestone's dispute and resolution."""

    _, milestone = load_for_action(db, job_id, milestone_id, actor, MilestoneAction.VIEW_REFUND_STATUS)
    dispute = milestone.dispute
    request = RefundRequestRead.model_validate(dispute) if dispute is not None else None
    resolution = None
    if dispute is not None and dispute.is_resolved:
        resolution = RefundResolutionRead(
            action=dispute.resolution_action,
            amount=dispute.resolved_amount,
            resolved_by=dispute.resolved_by_id,
            resolved_by_role=dispute.resolved_by_role,
            resolved_at=dispute.resolved_at,
            note=dispute.resolution_note,
        )
    return RefundStatusRead(
        status=milestone.status,
        is_disputed=milestone.status == MilestoneStatus.DISPUTED,
        disputed_at=milestone.disputed_at,
        refunded_at=milestone.refunded_at,
        refund_request=request,
        refund_resolution=resolution,
    )


def escalate_stale_disputes(
    db: Session,
    *,
    now: datetime | None = None,
    emitter: EventEmitter | None = None,
) -> list[int]:
    """Flag disputes left unanswered past the response window.

    Raises an operational alert and notifies both parties. Milestone status and
    money are never touched; each dispute is escalated at most once.
    """

    settings = get_settings()
    if not settings.DISPUTE_ESCALATION_ENABLED:
        return []

    now = now or utcnow()
    cutoff = hours_before(now, settings.DISPUTE_RESPONSE_WINDOW_HOURS)
    stmt = select(MilestoneDispute.id).where(
        MilestoneDispute.escalated_at.is_(None),
        MilestoneDispute.resolved_at.is_(None),
        MilestoneDispute.requested_at <= cutoff,
    )
    escalated: list[int] = []
    for dispute_id in list(db.scalars(stmt).all()):
        result = db.execute(
            update(MilestoneDispute)
            .where(
                MilestoneDispute.id == dispute_id,
                MilestoneDispute.escalated_at.is_(None),
                MilestoneDispute.resolved_at.is_(None),
            )
            .values(escalated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            continue

        dispute = db.get(MilestoneDispute, dispute_id)
        db.refresh(dispute)
        milestone = dispute.milestone
        job = milestone.job
        log_audit(
            db,
            actor=str(Actor.system()),
            action="DISPUTE_ESCALATED",
            entity="Milestone",
            entity_id=milestone.id,
            data={"dispute_id": dispute.id},
        )
        # Commits the escalation mark, the audit entry and the alert together.
        create_alert(
            db,
            alert_type=ESCALATION_ALERT_TYPE,
            message=f"Dispute on milestone {milestone.id} unanswered for {settings.DISPUTE_RESPONSE_WINDOW_HOURS}h",
            milestone_id=milestone.id,
            payload={
                "job_id": job.id,
                "requested_at": dispute.requested_at.isoformat(),
                "requested_amount": str(dispute.requested_amount),
            },
        )
        escalated.append(milestone.id)
        emit(
            db,
            emitter,
            lambda: MilestoneEvent(
                event_type="dispute-escalated",
                job_id=job.id,
                job_title=job.title,
                milestone_id=milestone.id,
                milestone_title=milestone.title,
                actor=Actor.system(),
                targets=get_job_parties(job).others(),
                message="Dispute escalated for platform review after the response window elapsed",
                message_type="dispute",
                payload={"escalated_at": now.isoformat()},
            ),
        )
    if escalated:
        logger.info("Dispute escalation sweep finished", extra={"escalated": escalated})
    return escalated


__all__ = [
    "ESCALATION_ALERT_TYPE",
    "escalate_stale_disputes",
    "get_refund_status",
    "resolve_dispute",
]
