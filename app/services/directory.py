"""Job/user directory lookups used for notification rendering."""
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.models.job import Job
from app.models.user import User


@dataclass(frozen=True)
class JobParties:
    client_id: int
    freelancer_id: int | None

    def others(self, *exclude: int | None) -> tuple[int, ...]:
        """Both parties minus ``exclude``, in a stable order."""

        ids = [self.client_id, self.freelancer_id]
        return tuple(uid for uid in ids if uid is not None and uid not in exclude)


@dataclass(frozen=True)
class Contact:
    user_id: int
    name: str
    email: str


def get_job_parties(job: Job) -> JobParties:
    return JobParties(client_id=job.client_id, freelancer_id=job.freelancer_id)


def get_contact(db: Session, user_id: int | None) -> Contact | None:
    if user_id is None:
        return None
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return Contact(user_id=user.id, name=user.name or user.email, email=user.email)


__all__ = ["Contact", "JobParties", "get_contact", "get_job_parties"]
