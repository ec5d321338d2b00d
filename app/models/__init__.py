"""ORM models package."""
from .alert import Alert
from .api_key import ApiKey, ApiScope
from .audit import AuditLog
from .base import Base
from .dispute import MilestoneDispute, ResolutionAction
from .earning import AdjustmentKind, Earning, EarningAdjustment, EarningStatus
from .job import Job, JobStatus
from .message import MessageAuthor, MilestoneMessage
from .milestone import TERMINAL_STATUSES, Milestone, MilestoneStatus
from .scheduler_lock import SchedulerLock
from .user import User

__all__ = [
    "AdjustmentKind",
    "Alert",
    "ApiKey",
    "ApiScope",
    "AuditLog",
    "Base",
    "Earning",
    "EarningAdjustment",
    "EarningStatus",
    "Job",
    "JobStatus",
    "MessageAuthor",
    "Milestone",
    "MilestoneDispute",
    "MilestoneMessage",
    "MilestoneStatus",
    "ResolutionAction",
    "SchedulerLock",
    "TERMINAL_STATUSES",
    "User",
]
