"""Approval lifecycle: requests, workflow and escalation timers."""

from .models import (
    EXPIRED_REASON,
    ApprovalEvent,
    ApprovalEventKind,
    ApprovalNotice,
    ApprovalRequest,
    ApprovalStatus,
    Assignment,
    BatchItem,
    BatchResult,
    NoticeKind,
)
from .workflow import ApprovalWorkflow
from .escalation import EscalationScheduler, wait_for_resolution

__all__ = (
    "EXPIRED_REASON",
    "ApprovalEvent",
    "ApprovalEventKind",
    "ApprovalNotice",
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalWorkflow",
    "Assignment",
    "BatchItem",
    "BatchResult",
    "EscalationScheduler",
    "NoticeKind",
    "wait_for_resolution",
)
