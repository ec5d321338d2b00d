"""Schema package exports."""
from .alert import AlertRead
from .dispute import (
    DisputeEvidence,
    DisputeResolutionCreate,
    DisputeResolutionResult,
    DisputeSummary,
    RefundRequestCreate,
    RefundRequestRead,
    RefundRequestResult,
    RefundResolutionRead,
    RefundStatusRead,
    ResolutionSummary,
)
from .milestone import MilestoneApprove, MilestoneCreate, MilestoneRead, MilestoneSubmit, TransitionResult
