"""Typed models for ledger entries (who/what/when/where/why/how).

Entries serialize with camelCase keys. Everything except the content hash,
the signature and the review annotations is covered by the content hash.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _LedgerModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ActorType(str, Enum):
    USER = "user"
    COGNATE = "cognate"
    SYSTEM = "system"
    AUTOMATION = "automation"
    INTEGRATION = "integration"


class EventCategory(str, Enum):
    ACTION = "action"
    DECISION = "decision"
    APPROVAL = "approval"
    ESCALATION = "escalation"
    ERROR = "error"
    ACCESS = "access"
    CHANGE = "change"
    CREATION = "creation"
    DELETION = "deletion"
    COMMUNICATION = "communication"
    INTEGRATION = "integration"
    SYSTEM = "system"


class Severity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {severity: rank for rank, severity in enumerate(Severity)}


class EventType(str, Enum):
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_MODIFIED = "approval_modified"
    APPROVAL_ESCALATED = "approval_escalated"
    APPROVAL_EXPIRED = "approval_expired"
    RUN_RERUN_REQUESTED = "run_rerun_requested"
    POLICY_TRIGGERED = "policy_triggered"
    ACTION_BLOCKED = "action_blocked"
    RULE_SET_COMPILED = "rule_set_compiled"
    COGNATE_CREATED = "cognate_created"
    AUTOMATION_CREATED = "automation_created"
    SYSTEM_ALERT = "system_alert"
    INTEGRITY_ALERT = "integrity_alert"
    CORRECTION = "correction"


DEFAULT_CATEGORY: dict[EventType, EventCategory] = {
    EventType.RUN_COMPLETED: EventCategory.ACTION,
    EventType.RUN_FAILED: EventCategory.ERROR,
    EventType.APPROVAL_REQUESTED: EventCategory.APPROVAL,
    EventType.APPROVAL_GRANTED: EventCategory.APPROVAL,
    EventType.APPROVAL_REJECTED: EventCategory.APPROVAL,
    EventType.APPROVAL_MODIFIED: EventCategory.APPROVAL,
    EventType.APPROVAL_ESCALATED: EventCategory.ESCALATION,
    EventType.APPROVAL_EXPIRED: EventCategory.APPROVAL,
    EventType.RUN_RERUN_REQUESTED: EventCategory.ACTION,
    EventType.POLICY_TRIGGERED: EventCategory.DECISION,
    EventType.ACTION_BLOCKED: EventCategory.DECISION,
    EventType.RULE_SET_COMPILED: EventCategory.CHANGE,
    EventType.COGNATE_CREATED: EventCategory.CREATION,
    EventType.AUTOMATION_CREATED: EventCategory.CREATION,
    EventType.SYSTEM_ALERT: EventCategory.SYSTEM,
    EventType.INTEGRITY_ALERT: EventCategory.SYSTEM,
    EventType.CORRECTION: EventCategory.CHANGE,
}


class ReviewStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class Approach(str, Enum):
    SYMBOLIC = "symbolic"
    NEURAL = "neural"
    HYBRID = "hybrid"
    MANUAL = "manual"


class Who(_LedgerModel):
    type: ActorType
    id: str
    name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class What(_LedgerModel):
    type: EventType
    description: str
    category: EventCategory
    severity: Severity = Severity.INFO
    status: str | None = None
    result: Any = None
    duration_ms: int | None = None


class Where(_LedgerModel):
    space_id: str | None = None
    space_name: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    external_system: str | None = None
    path: str | None = None


class TriggerRef(_LedgerModel):
    type: str
    id: str
    name: str | None = None


class Why(_LedgerModel):
    trigger: str
    reasoning: str = ""
    trigger_ref: TriggerRef | None = None
    goal: str | None = None
    confidence: float | None = None

    @field_validator("confidence")
    @classmethod
    def _confidence_range(cls, value: float | None) -> float | None:
        if value is not None and not 0.0 <= value <= 1.0:
            raise ValueError("confidence must be between 0 and 1")
        return value


class ResourceUsage(_LedgerModel):
    tokens: int | None = None
    api_calls: int | None = None
    duration_ms: int | None = None
    cost: float | None = None


class How(_LedgerModel):
    approach: Approach | None = None
    tools: list[str] = Field(default_factory=list)
    model: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    steps: list[str] = Field(default_factory=list)
    resources: ResourceUsage | None = None


class Evidence(_LedgerModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: str
    name: str
    description: str | None = None
    mime_type: str | None = None
    size: int | None = None
    url: str | None = None
    hash: str | None = None
    captured_at: datetime | None = None
    captured_by: str | None = None


class CryptoRecord(_LedgerModel):
    content_hash: str
    previous_hash: str
    algorithm: str = "sha256"
    hashed_at: datetime
    signature: str | None = None


class EntryDraft(_LedgerModel):
    """Fields supplied by the caller of ``Ledger.append``.

    ``when`` defaults to the append time. It may differ from append order;
    the sequence number, not the timestamp, orders the chain.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    who: Who
    what: What
    when: datetime | None = None
    where: Where = Field(default_factory=Where)
    why: Why
    how: How = Field(default_factory=How)
    tags: list[str] = Field(default_factory=list)
    evidence: list[Evidence] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)

    @field_validator("when")
    @classmethod
    def _when_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)

    @classmethod
    def for_event(
        cls,
        event_type: EventType,
        *,
        who: Who,
        description: str,
        trigger: str,
        reasoning: str = "",
        severity: Severity = Severity.INFO,
        category: EventCategory | None = None,
        status: str | None = None,
        result: Any = None,
        duration_ms: int | None = None,
        where: Where | None = None,
        how: How | None = None,
        trigger_ref: TriggerRef | None = None,
        confidence: float | None = None,
        when: datetime | None = None,
        tags: Sequence[str] = (),
        evidence: Sequence[Evidence] = (),
        references: Sequence[str] = (),
    ) -> "EntryDraft":
        """Shortcut that fills ``what.category`` from the event type."""
        return cls(
            who=who,
            what=What(
                type=event_type,
                description=description,
                category=category or DEFAULT_CATEGORY[event_type],
                severity=severity,
                status=status,
                result=result,
                duration_ms=duration_ms,
            ),
            when=when,
            where=where or Where(),
            why=Why(
                trigger=trigger,
                reasoning=reasoning,
                trigger_ref=trigger_ref,
                confidence=confidence,
            ),
            how=how or How(),
            tags=list(tags),
            evidence=list(evidence),
            references=list(references),
        )


class LedgerEntry(_LedgerModel):
    """An appended, sealed ledger entry. Never mutated after creation."""

    id: str
    sequence: int
    who: Who
    what: What
    when: datetime
    where: Where = Field(default_factory=Where)
    why: Why
    how: How = Field(default_factory=How)
    tags: list[str] = Field(default_factory=list)
    evidence: list[Evidence] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    crypto: CryptoRecord
    is_flagged: bool = False
    review_status: ReviewStatus = ReviewStatus.PENDING
    created_at: datetime

    @field_validator("when", "created_at")
    @classmethod
    def _timestamps_aware(cls, value: datetime) -> datetime:
        return _aware(value)

    @field_validator("sequence")
    @classmethod
    def _sequence_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("sequence must be >= 1")
        return value


class Annotation(_LedgerModel):
    """Review markers kept beside an entry, outside its hashed content."""

    entry_id: str
    is_flagged: bool = False
    review_status: ReviewStatus = ReviewStatus.PENDING
    flagged_by: str | None = None
    flag_reason: str | None = None
    reviewed_by: str | None = None
    notes: str | None = None
    updated_at: datetime


class LedgerStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    flagged: int
    by_event_type: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    by_actor_type: dict[str, int] = Field(default_factory=dict)
    by_review_status: dict[str, int] = Field(default_factory=dict)
