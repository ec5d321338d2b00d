"""Milestone store: lookups, creation and job completion."""
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.job import Job, JobStatus
from app.models.milestone import Milestone, MilestoneStatus
from app.schemas.milestone import MilestoneCreate
from app.services.authorization import Actor, MilestoneAction, authorize
from app.utils.audit import log_audit
from app.utils.errors import NotFoundError, StateConflictError
from app.utils.money import to_decimal

logger = logging.getLogger(__name__)


def get_job(db: Session, job_id: int) -> Job:
    job = db.get(Job, job_id)
    if job is None:
        raise NotFoundError("Job not found", details={"job_id": job_id})
    return job


def get_milestone_for_job(db: Session, job_id: int, milestone_id: int) -> Milestone:
    """Return the milestone, or raise when it is missing or belongs to another job."""

    milestone = db.get(Milestone, milestone_id)
    if milestone is None or milestone.job_id != job_id:
        raise NotFoundError(
            "Milestone not found",
            details={"job_id": job_id, "milestone_id": milestone_id},
        )
    return milestone


def list_milestones(db: Session, job_id: int) -> list[Milestone]:
    stmt = select(Milestone).where(Milestone.job_id == job_id).order_by(Milestone.sort_order, Milestone.id)
    return list(db.scalars(stmt).all())


SETTLED_STATUSES = frozenset(
    {MilestoneStatus.APPROVED, MilestoneStatus.REFUNDED, MilestoneStatus.PARTIALLY_REFUNDED}
)


def sync_job_completion(db: Session, job: Job, now: datetime) -> None:
    """Complete the job once every milestone is settled, reopen it when one is not.

    A milestone is settled when it was approved or its dispute ended in a
    refund. Loads entities rather than bare columns so unflushed status
    changes held in the session are taken into account. Cancelled jobs are
    left alone.
    """

    if job.status == JobStatus.CANCELLED:
        return
    milestones = list_milestones(db, job.id)
    settled = bool(milestones) and all(m.status in SETTLED_STATUSES for m in milestones)
    if settled and job.status != JobStatus.COMPLETED:
        job.status = JobStatus.COMPLETED
        job.completed_at = now
    elif not settled and job.status == JobStatus.COMPLETED:
        job.status = JobStatus.IN_PROGRESS
        job.completed_at = None
        logger.info("Job reopened", extra={"job_id": job.id})


def create_milestone(db: Session, job_id: int, actor: Actor, payload: MilestoneCreate) -> Milestone:
    """Define a new milestone for a job; the amount is fixed from here on."""

    job = get_job(db, job_id)
    authorize(actor, job, None, MilestoneAction.CREATE_MILESTONE)
    if job.status in (JobStatus.COMPLETED, JobStatus.CANCELLED):
        raise StateConflictError(
            "Milestones cannot be added to a closed job",
            details={"job_status": job.status.value},
        )

    milestone = Milestone(
        job_id=job.id,
        title=payload.title,
        description=payload.description,
        amount=to_decimal(payload.amount),
        currency=payload.currency,
        due_date=payload.due_date,
        sort_order=payload.sort_order,
        auto_release_enabled=payload.auto_release_enabled,
        status=MilestoneStatus.PENDING,
    )
    db.add(milestone)
    db.flush()
    log_audit(
        db,
        actor=str(actor),
        action="MILESTONE_CREATED",
        entity="Milestone",
        entity_id=milestone.id,
        data={"job_id": job.id, "amount": str(milestone.amount), "currency": milestone.currency},
    )
    db.commit()
    logger.info("Milestone created", extra={"milestone_id": milestone.id, "job_id": job.id})
    return milestone


__all__ = [
    "SETTLED_STATUSES",
    "create_milestone",
    "get_job",
    "get_milestone_for_job",
    "list_milestones",
    "sync_job_completion",
]
