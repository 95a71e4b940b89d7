"""Typed models for governance policies and policy decisions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..types import Decision, RiskLevel


class _PolicyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PolicyScope(str, Enum):
    GLOBAL = "global"
    SPACE = "space"
    PROJECT = "project"
    COGNATE = "cognate"
    AUTOMATION = "automation"
    USER = "user"
    INTEGRATION = "integration"


class PolicyTriggerType(str, Enum):
    ACTION = "action"
    THRESHOLD = "threshold"
    SCHEDULE = "schedule"
    CONDITION = "condition"
    EVENT = "event"
    MANUAL = "manual"


class TriggerLogic(str, Enum):
    """How a policy combines its triggers."""

    ANY = "any"
    ALL = "all"


class ApproverType(str, Enum):
    USER = "user"
    ROLE = "role"
    GROUP = "group"
    COGNATE = "cognate"
    SYSTEM = "system"


class PolicyStatus(str, Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    DISABLED = "disabled"
    ARCHIVED = "archived"


class PolicyTrigger(_PolicyModel):
    type: PolicyTriggerType
    config: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None


class Approver(_PolicyModel):
    """Someone who can approve a request. ``timeout_minutes`` bounds how long they hold it."""

    model_config = ConfigDict(frozen=True)

    type: ApproverType = ApproverType.USER
    id: str
    name: str | None = None
    fallback_id: str | None = None
    timeout_minutes: int | None = Field(default=None, alias="timeout")

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("approver id must be a non-empty string")
        return value

    @field_validator("timeout_minutes")
    @classmethod
    def _timeout_positive(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("approver timeout must be positive")
        return value


class Threshold(_PolicyModel):
    """A numeric bound on a named metric.

    The operator and operands are checked when the threshold is evaluated,
    not here, so a malformed threshold disables only its own policy.
    """

    metric: str
    operator: str
    value: float | None = None
    value_to: float | None = None
    unit: str | None = None

    def describe(self) -> str:
        if self.operator == "between":
            return f"{self.metric} between {self.value} and {self.value_to}"
        return f"{self.metric} {self.operator} {self.value}"


class EscalationNotification(_PolicyModel):
    channels: list[str] = Field(default_factory=list)
    message: str | None = None


class EscalationLevel(_PolicyModel):
    level: int
    after_minutes: int
    approvers: list[Approver] = Field(default_factory=list)
    notification: EscalationNotification | None = None

    # Requests start at level 0, meaning "not escalated".
    @field_validator("level")
    @classmethod
    def _level_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("escalation level must be 1 or higher")
        return value

    @field_validator("after_minutes")
    @classmethod
    def _offset_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("escalation offset must be non-negative")
        return value


class Policy(_PolicyModel):
    id: str
    name: str = ""
    description: str = ""
    status: PolicyStatus = PolicyStatus.ACTIVE
    scope: list[PolicyScope] = Field(default_factory=lambda: [PolicyScope.GLOBAL])
    triggers: list[PolicyTrigger] = Field(min_length=1)
    trigger_logic: TriggerLogic = TriggerLogic.ANY
    approval_required: bool = False
    block: bool = False
    risk_level: RiskLevel = RiskLevel.MEDIUM
    approvers: list[Approver] = Field(default_factory=list)
    thresholds: list[Threshold] = Field(default_factory=list)
    escalations: list[EscalationLevel] = Field(default_factory=list)
    auto_approve_conditions: list[dict[str, Any]] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @field_validator("scope", mode="before")
    @classmethod
    def _scope_as_list(cls, value: Any) -> Any:
        if isinstance(value, (str, PolicyScope)):
            return [value]
        return value

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("policy id must be a non-empty string")
        return value

    @model_validator(mode="after")
    def _escalations_ordered(self) -> "Policy":
        levels = [escalation.level for escalation in self.escalations]
        if levels != sorted(levels) or len(set(levels)) != len(levels):
            raise ValueError("escalation levels must be unique and ascending")
        return self

    @property
    def is_active(self) -> bool:
        return self.status is PolicyStatus.ACTIVE


class ProposedAction(_PolicyModel):
    """An action an agent wants to take, as submitted by the agent runtime."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: str
    description: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    metrics: dict[str, float] = Field(default_factory=dict)
    event_type: str | None = None
    space_id: str | None = None
    space_name: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    cognate_id: str | None = None
    cognate_name: str | None = None
    automation_id: str | None = None
    user_id: str | None = None
    integration_id: str | None = None
    policy_ids: list[str] = Field(default_factory=list)
    occurred_at: datetime | None = None

    @field_validator("type")
    @classmethod
    def _type_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("action type must be a non-empty string")
        return value

    def scopes(self) -> set[PolicyScope]:
        """Scopes this action falls under: global plus every scope it names an id for."""
        present = {PolicyScope.GLOBAL}
        for scope, value in (
            (PolicyScope.SPACE, self.space_id),
            (PolicyScope.PROJECT, self.project_id),
            (PolicyScope.COGNATE, self.cognate_id),
            (PolicyScope.AUTOMATION, self.automation_id),
            (PolicyScope.USER, self.user_id),
            (PolicyScope.INTEGRATION, self.integration_id),
        ):
            if value:
                present.add(scope)
        return present


class PolicyHit(BaseModel):
    """One policy whose scope and triggers matched an action."""

    model_config = {"frozen": True}

    policy_id: str
    policy_name: str
    risk_level: RiskLevel
    approval_required: bool
    block: bool
    matched_triggers: list[str] = Field(default_factory=list)
    breached_thresholds: list[str] = Field(default_factory=list)
    auto_approved: bool = False

    @property
    def effect(self) -> Decision:
        if self.approval_required:
            return Decision.ALLOW if self.auto_approved else Decision.REQUIRE_APPROVAL
        if self.block:
            return Decision.DENY
        return Decision.ALLOW


class PolicyDecision(BaseModel):
    """Result of evaluating an action against the active policies."""

    model_config = {"frozen": True}

    effect: Decision
    reason: str
    policy_id: str | None = None
    risk_level: RiskLevel | None = None
    hits: list[PolicyHit] = Field(default_factory=list)
    approvers: list[Approver] = Field(default_factory=list)
    escalations: list[EscalationLevel] = Field(default_factory=list)
    diagnostics: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_policy(self) -> "PolicyDecision":
        if self.effect is not Decision.ALLOW and self.policy_id is None:
            raise ValueError("policy_id is required unless the decision is allow")
        return self

    @property
    def requires_approval(self) -> bool:
        return self.effect is Decision.REQUIRE_APPROVAL

    @property
    def denied(self) -> bool:
        return self.effect is Decision.DENY

    @property
    def allowed(self) -> bool:
        return self.effect is Decision.ALLOW
