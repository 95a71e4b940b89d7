"""Typed models for rule-sets (SOPs): triggers, conditions, actions, rules."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _RuleModel(BaseModel):
    # Rule-set documents arrive from the authoring UI in camelCase.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerType(str, Enum):
    MESSAGE = "message"
    EVENT = "event"
    SCHEDULE = "schedule"
    CONDITION = "condition"
    MANUAL = "manual"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    MATCHES = "matches"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"

    @property
    def takes_value(self) -> bool:
        return self not in (ConditionOperator.EXISTS, ConditionOperator.NOT_EXISTS)


class ActionType(str, Enum):
    RESPOND = "respond"
    ESCALATE = "escalate"
    LOG = "log"
    NOTIFY = "notify"
    EXECUTE = "execute"
    WAIT = "wait"
    BRANCH = "branch"


class RuleSetStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class RuleSetPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Namespaces recognised in dotted field references (``message.sender``).
FIELD_NAMESPACES: frozenset[str] = frozenset({"message", "context", "user", "session", "system"})


class Trigger(_RuleModel):
    type: TriggerType
    config: dict[str, Any] = Field(default_factory=dict)


class Condition(_RuleModel):
    """A single ``field operator value`` clause. ``value`` is ignored by exists/not_exists."""

    id: str | None = None
    field: str = ""
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def _value_as_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @property
    def namespace(self) -> str | None:
        """Leading segment of the field reference when it is a known namespace."""
        head, _, rest = self.field.partition(".")
        if rest and head in FIELD_NAMESPACES:
            return head
        return None


class Action(_RuleModel):
    id: str | None = None
    type: ActionType
    label: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class Rule(_RuleModel):
    id: str
    name: str = ""
    description: str | None = None
    enabled: bool = True
    order: int = 0
    trigger: Trigger
    conditions: list[Condition] = Field(default_factory=list)
    then_actions: list[Action] = Field(default_factory=list)
    else_actions: list[Action] = Field(default_factory=list)

    @field_validator("else_actions", mode="before")
    @classmethod
    def _else_not_none(cls, value: Any) -> Any:
        return [] if value is None else value


class RuleSet(_RuleModel):
    """A named, versioned SOP: an ordered collection of rules plus metadata."""

    id: str | None = None
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    status: RuleSetStatus = RuleSetStatus.DRAFT
    priority: RuleSetPriority = RuleSetPriority.MEDIUM
    category: str | None = None
    author: str | None = None
    estimated_duration: str | None = None
    tags: list[str] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list)

    def enabled_rules(self) -> list[Rule]:
        """Enabled rules in ascending order; equal orders keep declaration order."""
        return sorted((rule for rule in self.rules if rule.enabled), key=lambda rule: rule.order)


# ---------------------------------------------------------------------------
# Action config schema registry
# ---------------------------------------------------------------------------

_JSON_TYPE_NAMES: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


class ActionConfigSchema(BaseModel):
    """Known config keys for one action type, each mapped to its accepted Python types."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    action_type: ActionType
    keys: dict[str, tuple[type, ...]] = Field(default_factory=dict)
    required: frozenset[str] = frozenset()

    def check(self, config: Mapping[str, Any]) -> list[str]:
        """Return one message per missing required key or mistyped known key."""
        problems: list[str] = []
        for key in sorted(self.required):
            if key not in config:
                problems.append(f"missing required config key '{key}'")
        for key, value in config.items():
            expected = self.keys.get(key)
            if expected is None or value is None:
                continue
            # bool is an int subclass; only accept it where boolean is declared.
            if isinstance(value, bool) and bool not in expected:
                ok = False
            else:
                ok = isinstance(value, expected)
            if not ok:
                names = " or ".join(_JSON_TYPE_NAMES.get(t, t.__name__) for t in expected)
                problems.append(f"config key '{key}' must be {names}")
        return problems


_NUMBER = (int, float)

ACTION_SCHEMAS: dict[ActionType, ActionConfigSchema] = {
    ActionType.RESPOND: ActionConfigSchema(
        action_type=ActionType.RESPOND,
        keys={"message": (str,), "template": (str,), "channel": (str,), "tone": (str,)},
    ),
    ActionType.ESCALATE: ActionConfigSchema(
        action_type=ActionType.ESCALATE,
        keys={"to": (str, list), "reason": (str,), "priority": (str,)},
    ),
    ActionType.LOG: ActionConfigSchema(
        action_type=ActionType.LOG,
        keys={"level": (str,), "message": (str,), "tags": (list,)},
    ),
    ActionType.NOTIFY: ActionConfigSchema(
        action_type=ActionType.NOTIFY,
        keys={"recipients": (list, str), "channel": (str,), "message": (str,)},
    ),
    ActionType.EXECUTE: ActionConfigSchema(
        action_type=ActionType.EXECUTE,
        keys={"command": (str,), "tool": (str,), "params": (dict,), "timeout": _NUMBER},
    ),
    ActionType.WAIT: ActionConfigSchema(
        action_type=ActionType.WAIT,
        keys={"duration": _NUMBER + (str,), "until": (str,)},
    ),
    ActionType.BRANCH: ActionConfigSchema(
        action_type=ActionType.BRANCH,
        keys={"target": (str,), "condition": (str,), "sop": (str,)},
    ),
}


def register_action_schema(schema: ActionConfigSchema) -> None:
    """Replace the config schema used to validate one action type."""
    ACTION_SCHEMAS[schema.action_type] = schema


def check_action_config(action: Action) -> list[str]:
    schema = ACTION_SCHEMAS.get(action.type)
    if schema is None:
        return []
    return schema.check(action.config)
