"""Typed models for the approval lifecycle."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..policies.models import Approver, EscalationLevel
from ..types import RiskLevel


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"

    @property
    def is_terminal(self) -> bool:
        return self is not ApprovalStatus.PENDING

    @property
    def is_executable(self) -> bool:
        return self in (ApprovalStatus.APPROVED, ApprovalStatus.MODIFIED)


EXPIRED_REASON = "expired"


class Assignment(BaseModel):
    """An approver currently responsible for a request."""

    model_config = ConfigDict(frozen=True)

    approver: Approver
    assigned_at: datetime
    # Monotonic reading at assignment; fallback deadlines are measured from it.
    assigned_mono: float
    via_fallback: bool = False
    replaced_id: str | None = None

    def fallback_due(self, now_mono: float) -> bool:
        approver = self.approver
        if self.via_fallback or not approver.fallback_id or not approver.timeout_minutes:
            return False
        return now_mono >= self.assigned_mono + approver.timeout_minutes * 60


class ApprovalRequest(BaseModel):
    """Snapshot of an approval request. The workflow replaces it on every transition."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    action_id: str | None = None
    action_type: str | None = None
    subject: str = ""
    preview: dict[str, Any] = Field(default_factory=dict)
    policy_id: str
    risk_level: RiskLevel = RiskLevel.MEDIUM
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime
    opened_mono: float
    expires_at: datetime | None = None
    expires_mono: float | None = None
    assignments: list[Assignment] = Field(default_factory=list)
    escalations: list[EscalationLevel] = Field(default_factory=list)
    escalation_level: int = 0
    decided_by: str | None = None
    decided_at: datetime | None = None
    resolution_reason: str | None = None
    patch: dict[str, Any] | None = None
    rerun_count: int = 0
    version: int = 1

    @property
    def approver_ids(self) -> list[str]:
        return [assignment.approver.id for assignment in self.assignments]

    @property
    def is_pending(self) -> bool:
        return self.status is ApprovalStatus.PENDING

    def summary(self) -> dict[str, Any]:
        """Compact JSON-friendly view used for notifications and ledger entries."""
        return {
            "requestId": self.id,
            "actionId": self.action_id,
            "actionType": self.action_type,
            "subject": self.subject,
            "policyId": self.policy_id,
            "riskLevel": self.risk_level.value,
            "status": self.status.value,
            "escalationLevel": self.escalation_level,
            "approvers": self.approver_ids,
            "rerunCount": self.rerun_count,
        }


class ApprovalEventKind(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"
    RERUN = "rerun"
    ESCALATED = "escalated"
    FALLBACK = "fallback"
    EXPIRED = "expired"


class ApprovalEvent(BaseModel):
    """A change in an approval request, delivered to workflow listeners."""

    model_config = ConfigDict(frozen=True)

    kind: ApprovalEventKind
    request: ApprovalRequest
    at: datetime
    actor_id: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)


class BatchItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    ok: bool
    status: ApprovalStatus | None = None
    error: str | None = None


class BatchResult(BaseModel):
    """Per-id outcome of a batch operation. Failures never roll back successes."""

    model_config = ConfigDict(frozen=True)

    items: list[BatchItem] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [item.request_id for item in self.items if item.ok]

    @property
    def failed(self) -> list[str]:
        return [item.request_id for item in self.items if not item.ok]

    def __getitem__(self, request_id: str) -> BatchItem:
        for item in self.items:
            if item.request_id == request_id:
                return item
        raise KeyError(request_id)


class NoticeKind(str, Enum):
    REQUESTED = "requested"
    ESCALATED = "escalated"
    FALLBACK = "fallback"


class ApprovalNotice(BaseModel):
    """Tells a set of approvers that a request needs their attention."""

    model_config = ConfigDict(frozen=True)

    kind: NoticeKind
    request: ApprovalRequest
    recipients: list[Approver]
    message: str
    channels: list[str] = Field(default_factory=list)
