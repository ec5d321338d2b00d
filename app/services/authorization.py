"""Authorization guard for milestone actions.

The guard is a pure decision over ``(actor, job, action)``: it never touches
the database and must run before any mutation. A role only counts when it is
*bound* to the job, i.e. a client actor must be the job's client.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.models.job import Job
from app.models.milestone import Milestone
from app.utils.errors import AuthorizationError


class ActorRole(str, Enum):
    CLIENT = "client"
    FREELANCER = "freelancer"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Who is asking: a job party, an arbitrating admin, or the platform itself."""

    role: ActorRole
    user_id: int | None = None

    def __post_init__(self) -> None:
        if self.role is ActorRole.SYSTEM and self.user_id is not None:
            raise ValueError("the system actor carries no user id")
        if self.role is not ActorRole.SYSTEM and self.user_id is None:
            raise ValueError(f"{self.role.value} actor requires a user id")

    @classmethod
    def client(cls, user_id: int) -> "Actor":
        return cls(ActorRole.CLIENT, user_id)

    @classmethod
    def freelancer(cls, user_id: int) -> "Actor":
        return cls(ActorRole.FREELANCER, user_id)

    @classmethod
    def admin(cls, user_id: int) -> "Actor":
        return cls(ActorRole.ADMIN, user_id)

    @classmethod
    def system(cls) -> "Actor":
        return cls(ActorRole.SYSTEM)

    @property
    def is_system(self) -> bool:
        return self.role is ActorRole.SYSTEM

    def __str__(self) -> str:
        if self.user_id is None:
            return self.role.value
        return f"{self.role.value}:{self.user_id}"


class MilestoneAction(str, Enum):
    START = "start"
    SUBMIT = "submit"
    APPROVE = "approve"
    AUTO_RELEASE = "auto_release"
    REQUEST_REFUND = "request_refund"
    RESOLVE_DISPUTE = "resolve_dispute"
    VIEW_REFUND_STATUS = "view_refund_status"
    VIEW_MILESTONE = "view_milestone"
    CREATE_MILESTONE = "create_milestone"


_PARTIES_AND_ADMIN = frozenset({ActorRole.CLIENT, ActorRole.FREELANCER, ActorRole.ADMIN})

CAPABILITIES: dict[MilestoneAction, frozenset[ActorRole]] = {
    MilestoneAction.START: frozenset({ActorRole.FREELANCER}),
    MilestoneAction.SUBMIT: frozenset({ActorRole.FREELANCER}),
    MilestoneAction.APPROVE: frozenset({ActorRole.CLIENT}),
    MilestoneAction.AUTO_RELEASE: frozenset({ActorRole.SYSTEM}),
    MilestoneAction.REQUEST_REFUND: frozenset({ActorRole.CLIENT}),
    MilestoneAction.RESOLVE_DISPUTE: _PARTIES_AND_ADMIN,
    MilestoneAction.VIEW_REFUND_STATUS: _PARTIES_AND_ADMIN,
    MilestoneAction.VIEW_MILESTONE: _PARTIES_AND_ADMIN,
    MilestoneAction.CREATE_MILESTONE: frozenset({ActorRole.CLIENT}),
}


def _is_bound(actor: Actor, job: Job) -> bool:
    if actor.role is ActorRole.CLIENT:
        return actor.user_id == job.client_id
    if actor.role is ActorRole.FREELANCER:
        return job.freelancer_id is not None and actor.user_id == job.freelancer_id
    # Admin and system are global capabilities, not job parties.
    return True


def is_allowed(
    actor: Actor,
    job: Job,
    milestone: Milestone | None,
    action: MilestoneAction,
    *,
    allow_party_resolution: bool = True,
) -> bool:
    """Return whether ``actor`` may perform ``action`` on ``milestone`` of ``job``."""

    if milestone is not None and milestone.job_id != job.id:
        return False
    roles = CAPABILITIES[action]
    if action is MilestoneAction.RESOLVE_DISPUTE and not allow_party_resolution:
        roles = frozenset({ActorRole.ADMIN})
    return actor.role in roles and _is_bound(actor, job)


def authorize(
    actor: Actor,
    job: Job,
    milestone: Milestone | None,
    action: MilestoneAction,
    *,
    allow_party_resolution: bool = True,
) -> None:
    """Raise :class:`AuthorizationError` unless :func:`is_allowed` says yes."""

    if not is_allowed(actor, job, milestone, action, allow_party_resolution=allow_party_resolution):
        raise AuthorizationError(
            f"{actor.role.value} is not allowed to {action.value.replace('_', ' ')} on this milestone",
            details={"action": action.value, "role": actor.role.value},
        )


def actor_for_job(job: Job, user_id: int, *, is_admin: bool = False) -> Actor:
    """Derive the actor for an authenticated user relative to ``job``.

    Job parties take precedence over the admin capability so an admin who is
    also the client of a job acts as that client.
    """

    if user_id == job.client_id:
        return Actor.client(user_id)
    if job.freelancer_id is not None and user_id == job.freelancer_id:
        return Actor.freelancer(user_id)
    if is_admin:
        return Actor.admin(user_id)
    raise AuthorizationError("Not a party to this job", details={"job_id": job.id})


__all__ = [
    "Actor",
    "ActorRole",
    "CAPABILITIES",
    "MilestoneAction",
    "actor_for_job",
    "authorize",
    "is_allowed",
]
