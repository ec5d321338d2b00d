"""Milestone lifecycle and refund endpoints, scoped to a job."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.job import JobStatus
from app.models.milestone import Milestone
from app.schemas.dispute import (
    DisputeResolutionCreate,
    DisputeResolutionResult,
    RefundRequestCreate,
    RefundRequestResult,
    RefundStatusRead,
)
from app.schemas.milestone import (
    MilestoneApprove,
    MilestoneCreate,
    MilestoneRead,
    MilestoneSubmit,
    TransitionResult,
)
from app.security import Principal, get_principal
from app.services import disputes as dispute_service
from app.services import milestones as milestone_service
from app.services import transitions as transition_service
from app.services.authorization import Actor, MilestoneAction, actor_for_job, authorize
from app.services.notifications import EventEmitter, get_event_emitter

router = APIRouter(prefix="/jobs/{job_id}/milestones", tags=["milestones"])


def _actor(db: Session, principal: Principal, job_id: int, milestone_id: int | None = None) -> Actor:
    """Resolve the caller's role on the job once the addressed rows are known to exist."""

    job = milestone_service.get_job(db, job_id)
    if milestone_id is not None:
        milestone_service.get_milestone_for_job(db, job_id, milestone_id)
    return actor_for_job(job, principal.user_id, is_admin=principal.is_admin)


def _result(milestone: Milestone) -> TransitionResult:
    return TransitionResult(
        milestone_id=milestone.id,
        status=milestone.status,
        job_completed=milestone.job.status == JobStatus.COMPLETED,
    )


@router.post("", response_model=MilestoneRead, status_code=status.HTTP_201_CREATED)
def create_milestone(
    job_id: int,
    payload: MilestoneCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> Milestone:
    actor = _actor(db, principal, job_id)
    return milestone_service.create_milestone(db, job_id, actor, payload)


@router.get("", response_model=list[MilestoneRead])
def list_milestones(
    job_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> list[Milestone]:
    actor = _actor(db, principal, job_id)
    authorize(actor, milestone_service.get_job(db, job_id), None, MilestoneAction.VIEW_MILESTONE)
    return milestone_service.list_milestones(db, job_id)


@router.get("/{milestone_id}", response_model=MilestoneRead)
def get_milestone(
    job_id: int,
    milestone_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> Milestone:
    actor = _actor(db, principal, job_id, milestone_id)
    milestone = milestone_service.get_milestone_for_job(db, job_id, milestone_id)
    authorize(actor, milestone.job, milestone, MilestoneAction.VIEW_MILESTONE)
    return milestone


@router.post("/{milestone_id}/start", response_model=TransitionResult)
def start_milestone(
    job_id: int,
    milestone_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    emitter: EventEmitter = Depends(get_event_emitter),
) -> TransitionResult:
    actor = _actor(db, principal, job_id, milestone_id)
    milestone = transition_service.start_milestone(db, job_id, milestone_id, actor, emitter=emitter)
    return _result(milestone)


@router.post("/{milestone_id}/submit", response_model=TransitionResult)
def submit_milestone(
    job_id: int,
    milestone_id: int,
    payload: MilestoneSubmit | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    emitter: EventEmitter = Depends(get_event_emitter),
) -> TransitionResult:
    actor = _actor(db, principal, job_id, milestone_id)
    payload = payload or MilestoneSubmit()
    milestone = transition_service.submit_milestone(
        db,
        job_id,
        milestone_id,
        actor,
        submission_url=payload.submission_url,
        submission_note=payload.submission_note,
        emitter=emitter,
    )
    return _result(milestone)


@router.post("/{milestone_id}/approve", response_model=TransitionResult)
def approve_milestone(
    job_id: int,
    milestone_id: int,
    payload: MilestoneApprove | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    emitter: EventEmitter = Depends(get_event_emitter),
) -> TransitionResult:
    actor = _actor(db, principal, job_id, milestone_id)
    payload = payload or MilestoneApprove()
    milestone = transition_service.approve_milestone(
        db,
        job_id,
        milestone_id,
        actor,
        feedback=payload.feedback,
        rating=payload.rating,
        emitter=emitter,
    )
    return _result(milestone)


@router.post("/{milestone_id}/refund", response_model=RefundRequestResult, status_code=status.HTTP_201_CREATED)
def request_refund(
    job_id: int,
    milestone_id: int,
    payload: RefundRequestCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    emitter: EventEmitter = Depends(get_event_emitter),
) -> RefundRequestResult:
    actor = _actor(db, principal, job_id, milestone_id)
    return transition_service.request_refund(
        db,
        job_id,
        milestone_id,
        actor,
        reason=payload.reason,
        amount=payload.amount,
        evidence=payload.evidence,
        emitter=emitter,
    )


@router.put("/{milestone_id}/refund", response_model=DisputeResolutionResult)
def resolve_dispute(
    job_id: int,
    milestone_id: int,
    payload: DisputeResolutionCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    emitter: EventEmitter = Depends(get_event_emitter),
) -> DisputeResolutionResult:
    actor = _actor(db, principal, job_id, milestone_id)
    return dispute_service.resolve_dispute(
        db,
        job_id,
        milestone_id,
        actor,
        action=payload.action,
        amount=payload.amount,
        note=payload.note,
        emitter=emitter,
    )


@router.get("/{milestone_id}/refund", response_model=RefundStatusRead)
def get_refund_status(
    job_id: int,
    milestone_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> RefundStatusRead:
    actor = _actor(db, principal, job_id, milestone_id)
    return dispute_service.get_refund_status(db, job_id, milestone_id, actor)
