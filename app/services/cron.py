"""Background sweeps run by the scheduler."""
from __future__ import annotations

from app.db import session_scope
from app.services.disputes import escalate_stale_disputes
from app.services.transitions import auto_release_due_milestones


def auto_release_due_milestones_once() -> int:
    """Release payment for submitted milestones left unreviewed past the grace period."""

    with session_scope() as db:
        released = auto_release_due_milestones(db)
    return len(released)


def escalate_stale_disputes_once() -> int:
    """Escalate disputes left unanswered past the response window."""

    with session_scope() as db:
        escalated = escalate_stale_disputes(db)
    return len(escalated)


__all__ = ["auto_release_due_milestones_once", "escalate_stale_disputes_once"]
