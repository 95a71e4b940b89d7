"""Rule-set model and S1 compiler."""

from .compiler import build_script, compile_rule_set, ensure_valid, lint, render_script, validate
from .models import (
    ACTION_SCHEMAS,
    Action,
    ActionConfigSchema,
    ActionType,
    Condition,
    ConditionOperator,
    Rule,
    RuleSet,
    RuleSetPriority,
    RuleSetStatus,
    Trigger,
    TriggerType,
    register_action_schema,
)
from .script import ActionCall, Clause, CompiledScript, ScriptBlock

__all__ = (
    "Action",
    "ActionCall",
    "ActionConfigSchema",
    "ActionType",
    "ACTION_SCHEMAS",
    "Clause",
    "CompiledScript",
    "Condition",
    "ConditionOperator",
    "Rule",
    "RuleSet",
    "RuleSetPriority",
    "RuleSetStatus",
    "ScriptBlock",
    "Trigger",
    "TriggerType",
    "build_script",
    "compile_rule_set",
    "ensure_valid",
    "lint",
    "register_action_schema",
    "render_script",
    "validate",
)
