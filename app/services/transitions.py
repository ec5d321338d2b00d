"""Milestone state transition engine.

Each operation follows the same read-validate-conditional-write sequence:

1. load the milestone (and its job) through the store;
2. ask the authorization guard, before anything else is inspected;
3. check the transition graph against the status observed at read time;
4. validate the input;
5. stage the milestone, ledger and audit changes and commit them at once.

The commit is conditioned on the milestone ``version`` read in step 1. If
another request won the race, the commit fails, everything is rolled back and
the caller receives :class:`StateConflictError`. Nothing is retried.
Notifications are sent only after a successful commit.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import get_settings
from app.models.dispute import MilestoneDispute
from app.models.job import Job, JobStatus
from app.models.milestone import Milestone, MilestoneStatus
from app.schemas.dispute import DisputeEvidence, DisputeSummary, RefundRequestResult
from app.services import ledger
from app.services.authorization import Actor, MilestoneAction, authorize
from app.services.directory import get_job_parties
from app.services.milestones import get_milestone_for_job, sync_job_completion
from app.services.notifications import EventEmitter, MilestoneEvent, get_event_emitter
from app.utils.audit import log_audit
from app.utils.errors import StateConflictError, ValidationError
from app.utils.money import format_amount, to_decimal
from app.utils.time import hours_before, utcnow

logger = logging.getLogger(__name__)

S = MilestoneStatus

# action -> (statuses it may start from, status it leads to)
# Dispute resolution picks its target at runtime, hence ``None``.
TRANSITIONS: dict[MilestoneAction, tuple[frozenset[MilestoneStatus], MilestoneStatus | None]] = {
    MilestoneAction.START: (frozenset({S.PENDING}), S.IN_PROGRESS),
    MilestoneAction.SUBMIT: (frozenset({S.IN_PROGRESS}), S.SUBMITTED),
    MilestoneAction.APPROVE: (frozenset({S.SUBMITTED}), S.APPROVED),
    MilestoneAction.AUTO_RELEASE: (frozenset({S.SUBMITTED}), S.APPROVED),
    MilestoneAction.REQUEST_REFUND: (frozenset({S.SUBMITTED, S.APPROVED}), S.DISPUTED),
    MilestoneAction.RESOLVE_DISPUTE: (frozenset({S.DISPUTED}), None),
}


def can_transition(status: MilestoneStatus, action: MilestoneAction) -> bool:
    sources, _ = TRANSITIONS[action]
    return status in sources


def ensure_transition(milestone: Milestone, action: MilestoneAction) -> None:
    """Raise :class:`StateConflictError` if ``action`` is illegal from the current status."""

    if not can_transition(milestone.status, action):
        sources, _ = TRANSITIONS[action]
        raise StateConflictError(
            f"Cannot {action.value.replace('_', ' ')} a milestone that is {milestone.status.value}",
            details={
                "action": action.value,
                "status": milestone.status.value,
                "allowed_from": sorted(status.value for status in sources),
            },
        )


def load_for_action(
    db: Session,
    job_id: int,
    milestone_id: int,
    actor: Actor,
    action: MilestoneAction,
    *,
    allow_party_resolution: bool = True,
) -> tuple[Job, Milestone]:
    """Steps 1-3: load, authorize, then check the transition graph."""

    milestone = get_milestone_for_job(db, job_id, milestone_id)
    job = milestone.job
    authorize(actor, job, milestone, action, allow_party_resolution=allow_party_resolution)
    if action in TRANSITIONS:
        ensure_transition(milestone, action)
    return job, milestone


def commit_transition(db: Session, milestone: Milestone, action: MilestoneAction, observed: MilestoneStatus) -> None:
    """Commit staged changes, or roll everything back on a lost race."""

    milestone_id = milestone.id
    try:
        db.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.rollback()
        logger.warning(
            "Concurrent modification detected; transition rejected",
            extra={"milestone_id": milestone_id, "action": action.value, "observed_status": observed.value},
        )
        raise StateConflictError(
            "Milestone was modified concurrently; reload and try again",
            details={"action": action.value, "observed_status": observed.value},
        ) from exc


def emit(db: Session, emitter: EventEmitter | None, build_event: Callable[[], MilestoneEvent]) -> None:
    """Notify about a committed transition. Never raises."""

    try:
        event = build_event()
        (emitter or get_event_emitter()).emit(db, event)
    except Exception:  # noqa: BLE001
        logger.exception("Event emission failed after commit")


def _event(
    job: Job,
    milestone: Milestone,
    actor: Actor,
    *,
    event_type: str,
    targets: Iterable[int],
    message: str,
    message_type: str = "status",
    payload: dict[str, Any] | None = None,
    attachments: list[dict[str, Any]] | None = None,
) -> MilestoneEvent:
    return MilestoneEvent(
        event_type=event_type,
        job_id=job.id,
        job_title=job.title,
        milestone_id=milestone.id,
        milestone_title=milestone.title,
        actor=actor,
        targets=tuple(targets),
        message=message,
        message_type=message_type,
        payload=dict(payload or {}),
        attachments=list(attachments or []),
    )


def start_milestone(
    db: Session,
    job_id: int,
    milestone_id: int,
    actor: Actor,
    *,
    emitter: EventEmitter | None = None,
) -> Milestone:
    """pending -> in_progress, by the job's freelancer."""

    job, milestone = load_for_action(db, job_id, milestone_id, actor, MilestoneAction.START)
    observed = milestone.status

    milestone.status = S.IN_PROGRESS
    if job.status == JobStatus.OPEN:
        job.status = JobStatus.IN_PROGRESS
    log_audit(
        db,
        actor=str(actor),
        action="MILESTONE_STARTED",
        entity="Milestone",
        entity_id=milestone.id,
        data={"from": observed.value, "to": milestone.status.value},
    )
    commit_transition(db, milestone, MilestoneAction.START, observed)
    logger.info("Milestone started", extra={"milestone_id": milestone.id, "actor": str(actor)})

    emit(
        db,
        emitter,
        lambda: _event(
            job,
            milestone,
            actor,
            event_type="milestone-started",
            targets=get_job_parties(job).others(actor.user_id),
            message="Work started on this milestone",
        ),
    )
    return milestone


def submit_milestone(
    db: Session,
    job_id: int,
    milestone_id: int,
    actor: Actor,
    *,
    submission_url: str | None = None,
    submission_note: str | None = None,
    emitter: EventEmitter | None = None,
) -> Milestone:
    """in_progress -> submitted, by the job's freelancer. No ledger effect."""

    job, milestone = load_for_action(db, job_id, milestone_id, actor, MilestoneAction.SUBMIT)
    observed = milestone.status

    now = utcnow()
    milestone.status = S.SUBMITTED
    milestone.submitted_at = now
    milestone.submission_url = submission_url
    milestone.submission_note = submission_note
    log_audit(
        db,
        actor=str(actor),
        action="MILESTONE_SUBMITTED",
        entity="Milestone",
        entity_id=milestone.id,
        data={"from": observed.value, "to": milestone.status.value, "submission_url": submission_url},
    )
    commit_transition(db, milestone, MilestoneAction.SUBMIT, observed)
    logger.info("Milestone submitted", extra={"milestone_id": milestone.id, "actor": str(actor)})

    emit(
        db,
        emitter,
        lambda: _event(
            job,
            milestone,
            actor,
            event_type="milestone-submitted",
            targets=(job.client_id,),
            message="Milestone submitted for client review",
            payload={"submitted_at": now.isoformat()},
        ),
    )
    return milestone


def _release_payment(
    db: Session,
    job_id: int,
    milestone_id: int,
    actor: Actor,
    action: MilestoneAction,
    *,
    feedback: str | None = None,
    rating: int | None = None,
) -> tuple[Job, Milestone]:
    """Shared approve path: mark approved and paid, credit the earning."""

    job, milestone = load_for_action(db, job_id, milestone_id, actor, action)
    observed = milestone.status
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError("rating", "Rating must be between 1 and 5")

    now = utcnow()
    milestone.status = S.APPROVED
    milestone.approved_at = now
    milestone.paid_at = now
    if feedback is not None:
        milestone.feedback = feedback
    if rating is not None:
        milestone.rating = rating
    earning = ledger.record_payment(db, milestone, job, actor)

    sync_job_completion(db, job, now)
    log_audit(
        db,
        actor=str(actor),
        action="MILESTONE_AUTO_RELEASED" if action is MilestoneAction.AUTO_RELEASE else "MILESTONE_APPROVED",
        entity="Milestone",
        entity_id=milestone.id,
        data={
            "from": observed.value,
            "to": milestone.status.value,
            "amount": str(earning.amount),
            "job_completed": job.status == JobStatus.COMPLETED,
        },
    )
    commit_transition(db, milestone, action, observed)
    logger.info(
        "Milestone approved and payment released",
        extra={"milestone_id": milestone.id, "actor": str(actor), "amount": str(milestone.amount)},
    )
    return job, milestone


def approve_milestone(
    db: Session,
    job_id: int,
    milestone_id: int,
    actor: Actor,
    *,
    feedback: str | None = None,
    rating: int | None = None,
    emitter: EventEmitter | None = None,
) -> Milestone:
    """submitted -> approved, by the job's client; credits the full amount."""

    job, milestone = _release_payment(
        db, job_id, milestone_id, actor, MilestoneAction.APPROVE, feedback=feedback, rating=rating
    )
    emit(
        db,
        emitter,
        lambda: _event(
            job,
            milestone,
            actor,
            event_type="milestone-approved",
            targets=get_job_parties(job).others(actor.user_id),
            message=f"Milestone approved and payment released: {format_amount(milestone.amount)}",
            payload={"amount": str(milestone.amount), "approved_at": milestone.approved_at.isoformat()},
        ),
    )
    return milestone


def request_refund(
    db: Session,
    job_id: int,
    milestone_id: int,
    actor: Actor,
    *,
    reason: str,
    amount: Decimal | str | None = None,
    evidence: Iterable[DisputeEvidence | dict[str, Any]] | None = None,
    emitter: EventEmitter | None = None,
) -> RefundRequestResult:
    """submitted|approved -> disputed, by the job's client."""

    settings = get_settings()
    job, milestone = load_for_action(db, job_id, milestone_id, actor, MilestoneAction.REQUEST_REFUND)
    observed = milestone.status

    cleaned_reason = _validate_reason(reason)
    requested_amount = _validate_requested_amount(amount, milestone)
    evidence_items = _validate_evidence(evidence)

    now = utcnow()
    dispute = MilestoneDispute(
        requested_by_id=actor.user_id,
        requested_at=now,
        reason=cleaned_reason,
        requested_amount=requested_amount,
        evidence=evidence_items,
        previous_status=observed,
    )
    milestone.disputes.append(dispute)
    milestone.status = S.DISPUTED
    milestone.disputed_at = now
    if observed == S.APPROVED and milestone.is_paid:
        ledger.mark_disputed(db, milestone, actor, cleaned_reason)
    sync_job_completion(db, job, now)
    log_audit(
        db,
        actor=str(actor),
        action="REFUND_REQUESTED",
        entity="Milestone",
        entity_id=milestone.id,
        data={
            "from": observed.value,
            "to": milestone.status.value,
            "requested_amount": str(requested_amount),
            "reason": cleaned_reason,
            "evidence": evidence_items,
        },
    )
    commit_transition(db, milestone, MilestoneAction.REQUEST_REFUND, observed)
    logger.info(
        "Refund requested",
        extra={"milestone_id": milestone.id, "actor": str(actor), "amount": str(requested_amount)},
    )

    respond_by = now + timedelta(hours=settings.DISPUTE_RESPONSE_WINDOW_HOURS)
    emit(
        db,
        emitter,
        lambda: _event(
            job,
            milestone,
            actor,
            event_type="milestone-disputed",
            targets=get_job_parties(job).others(actor.user_id),
            message=(
                "Refund requested by client\n\n"
                f"Reason: {cleaned_reason}\nAmount: {format_amount(requested_amount)}"
            ),
            message_type="dispute",
            payload={
                "reason": cleaned_reason,
                "amount": str(requested_amount),
                "respond_by": respond_by.isoformat(),
            },
            attachments=evidence_items,
        ),
    )
    return RefundRequestResult(
        status=milestone.status,
        dispute=DisputeSummary(
            milestone_id=milestone.id,
            status=milestone.status,
            reason=cleaned_reason,
            amount=requested_amount,
            created_at=now,
            respond_by=respond_by,
        ),
    )


def _validate_reason(reason: str | None) -> str:
    settings = get_settings()
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("reason", "A reason is required to request a refund")
    if len(cleaned) < settings.REFUND_REASON_MIN_LENGTH:
        raise ValidationError(
            "reason", f"Reason must be at least {settings.REFUND_REASON_MIN_LENGTH} characters"
        )
    if len(cleaned) > settings.REFUND_REASON_MAX_LENGTH:
        raise ValidationError(
            "reason", f"Reason must be at most {settings.REFUND_REASON_MAX_LENGTH} characters"
        )
    return cleaned


def _validate_requested_amount(amount: Decimal | str | None, milestone: Milestone) -> Decimal:
    if amount is None or (isinstance(amount, str) and not amount.strip()):
        return to_decimal(milestone.amount)
    try:
        value = to_decimal(amount)
    except ValueError as exc:
        raise ValidationError("amount", str(exc)) from exc
    if value <= 0:
        raise ValidationError("amount", "Refund amount must be positive")
    if value > milestone.amount:
        raise ValidationError("amount", f"Refund amount cannot exceed the milestone amount {milestone.amount}")
    return value


def _validate_evidence(evidence: Iterable[DisputeEvidence | dict[str, Any]] | None) -> list[dict[str, Any]]:
    items = list(evidence or [])
    limit = get_settings().REFUND_EVIDENCE_MAX_ITEMS
    if len(items) > limit:
        raise ValidationError("evidence", f"At most {limit} evidence items are accepted")
    validated: list[dict[str, Any]] = []
    for item in items:
        try:
            model = item if isinstance(item, DisputeEvidence) else DisputeEvidence.model_validate(item)
        except PydanticValidationError as exc:
            raise ValidationError("evidence", f"Malformed evidence item: {exc.errors()[0]['msg']}") from exc
        validated.append(model.model_dump())
    return validated


def auto_release_due_milestones(
    db: Session,
    *,
    now: datetime | None = None,
    emitter: EventEmitter | None = None,
) -> list[int]:
    """Approve submitted milestones left unreviewed past the grace period.

    Uses the same conditional write as an interactive approval; a milestone
    that changed in the meantime is skipped.
    """

    settings = get_settings()
    if not settings.AUTO_RELEASE_ENABLED:
        return []

    now = now or utcnow()
    cutoff = hours_before(now, settings.AUTO_RELEASE_GRACE_HOURS)
    stmt = (
        select(Milestone.id, Milestone.job_id)
        .where(
            Milestone.status == S.SUBMITTED,
            Milestone.auto_release_enabled.is_(True),
            Milestone.submitted_at.is_not(None),
            Milestone.submitted_at <= cutoff,
        )
        .order_by(Milestone.submitted_at)
    )
    candidates = list(db.execute(stmt).all())
    system = Actor.system()
    released: list[int] = []
    for milestone_id, job_id in candidates:
        try:
            job, milestone = _release_payment(db, job_id, milestone_id, system, MilestoneAction.AUTO_RELEASE)
        except StateConflictError:
            logger.info("Auto-release skipped; milestone changed", extra={"milestone_id": milestone_id})
            continue
        released.append(milestone.id)
        emit(
            db,
            emitter,
            lambda: _event(
                job,
                milestone,
                system,
                event_type="milestone-auto-released",
                targets=get_job_parties(job).others(),
                message=(
                    "Milestone payment automatically released after "
                    f"{settings.AUTO_RELEASE_GRACE_HOURS} hours without client review"
                ),
                payload={"amount": str(milestone.amount)},
            ),
        )
    if released:
        logger.info("Auto-release sweep finished", extra={"released": released})
    return released


__all__ = [
    "TRANSITIONS",
    "approve_milestone",
    "auto_release_due_milestones",
    "can_transition",
    "commit_transition",
    "emit",
    "ensure_transition",
    "load_for_action",
    "request_refund",
    "start_milestone",
    "submit_milestone",
]
