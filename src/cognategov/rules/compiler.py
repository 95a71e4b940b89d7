"""Rule-set validation and S1 script compilation.

Compilation is a two step pipeline: :func:`build_script` turns a
:class:`~cognategov.rules.models.RuleSet` into a :class:`CompiledScript`
tree and :func:`render_script` turns the tree into text. Both steps are pure;
neither raises for incomplete rules, which degrade to empty clauses instead.

Compiled text is for display and audit. Several condition operators share a
symbol, so the text is not parsed back into conditions.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable

from ..errors import ValidationError
from .models import Action, Condition, Rule, RuleSet, check_action_config
from .script import (
    NO_ACTIONS_PLACEHOLDER,
    NO_RULES_PLACEHOLDER,
    OPERATOR_SYMBOLS,
    ActionCall,
    Clause,
    CompiledScript,
    Operand,
    ScriptBlock,
)

_logger = logging.getLogger(__name__)

PRIORITY_STEP = 10

_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_ARG_SEPARATORS = (",", ":")


def validate(rule_set: RuleSet) -> list[str]:
    """Return author-facing problems with ``rule_set``; an empty list means valid.

    Validation never raises. Callers decide whether an invalid rule-set may
    still be kept as a draft.
    """
    errors: list[str] = []
    if not rule_set.name.strip():
        errors.append("SOP name is required")
    if not rule_set.rules:
        errors.append("At least one rule is required")
    for index, rule in enumerate(rule_set.rules, start=1):
        if not rule.name.strip():
            errors.append(f"Rule {index}: Name is required")
        for position, condition in enumerate(rule.conditions, start=1):
            if not condition.field.strip():
                errors.append(f"Rule {index}: Condition {position}: Field is required")
        for branch, actions in (("THEN", rule.then_actions), ("ELSE", rule.else_actions)):
            for position, action in enumerate(actions, start=1):
                for problem in check_action_config(action):
                    errors.append(f"Rule {index}: {branch} action {position} ({action.type.value}): {problem}")
    return errors


def lint(rule_set: RuleSet) -> list[str]:
    """Return non-blocking warnings, such as rules with no THEN actions."""
    warnings: list[str] = []
    for rule in rule_set.rules:
        if not rule.then_actions:
            warnings.append(f'Rule "{rule.name}": No THEN actions defined')
    return warnings


def ensure_valid(rule_set: RuleSet) -> RuleSet:
    """Raise :class:`ValidationError` carrying every issue when ``rule_set`` is invalid."""
    issues = validate(rule_set)
    if issues:
        raise ValidationError(f"rule-set has {len(issues)} validation error(s)", issues)
    return rule_set


def is_numeric_literal(text: str) -> bool:
    return bool(_NUMBER_RE.match(text.strip()))


def build_script(rule_set: RuleSet) -> CompiledScript:
    """Build the intermediate script for the enabled rules of ``rule_set``."""
    script_name = rule_set.name.strip() or "untitled"
    blocks = tuple(
        _build_block(rule, script_name, index)
        for index, rule in enumerate(rule_set.enabled_rules(), start=1)
    )
    return CompiledScript(name=script_name, version=rule_set.version, blocks=blocks)


def render_script(script: CompiledScript) -> str:
    """Render ``script`` as S1 text. Identical input always yields identical output."""
    header = f"// SOP: {script.name} (v{script.version})"
    if script.is_empty:
        return f"{header}\n{NO_RULES_PLACEHOLDER}"
    body = "\n\n".join(_render_block(block) for block in script.blocks)
    return f"{header}\n\n{body}"


def compile_rule_set(rule_set: RuleSet) -> str:
    """Compile ``rule_set`` to S1 text."""
    script = build_script(rule_set)
    _logger.debug("compiled rule-set %r: %d block(s)", script.name, len(script.blocks))
    return render_script(script)


# ---------------------------------------------------------------------------
# Tree construction
# ---------------------------------------------------------------------------


def _build_block(rule: Rule, script_name: str, index: int) -> ScriptBlock:
    return ScriptBlock(
        index=index,
        title=rule.name.strip() or "Untitled",
        label=f"{script_name}_rule_{index}",
        rule_id=rule.id,
        triggers=(rule.trigger.type.value,),
        when=tuple(_clauses(rule.conditions)),
        then=tuple(_action_call(action) for action in rule.then_actions),
        otherwise=tuple(_action_call(action) for action in rule.else_actions),
        priority=rule.order * PRIORITY_STEP,
    )


def _clauses(conditions: Iterable[Condition]) -> Iterable[Clause]:
    for condition in conditions:
        field = condition.field.strip()
        if not field:
            continue
        symbol = OPERATOR_SYMBOLS[condition.operator]
        if not condition.operator.takes_value:
            yield Clause(field=field, symbol=symbol)
            continue
        value = condition.value
        yield Clause(field=field, symbol=symbol, operand=Operand(text=value, numeric=is_numeric_literal(value)))


def _action_call(action: Action) -> ActionCall:
    return ActionCall(name=action.type.value, arguments=tuple(action.config.items()))


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_block(block: ScriptBlock) -> str:
    lines = [
        f"// Rule {block.index}: {block.title}",
        f'RULE "{block.label}" {{',
        "  TRIGGERS: [" + ", ".join(json.dumps(t) for t in block.triggers) + "]",
    ]
    if block.when:
        lines.append("  WHEN: " + " AND ".join(_render_clause(clause) for clause in block.when))
    else:
        lines.append("  WHEN: TRUE")

    lines.append("  THEN: {")
    if block.then:
        lines.extend(_render_call(call) for call in block.then)
    else:
        lines.append(f"    {NO_ACTIONS_PLACEHOLDER}")
    lines.append("  }")

    if block.otherwise:
        lines.append("  ELSE: {")
        lines.extend(_render_call(call) for call in block.otherwise)
        lines.append("  }")

    lines.append(f"  PRIORITY: {block.priority}")
    lines.append("}")
    return "\n".join(lines)


def _render_clause(clause: Clause) -> str:
    if clause.operand is None:
        return f"{clause.field} {clause.symbol}"
    if clause.operand.numeric:
        operand = clause.operand.text.strip()
    else:
        operand = json.dumps(clause.operand.text, ensure_ascii=False)
    return f"{clause.field} {clause.symbol} {operand}"


def _render_call(call: ActionCall) -> str:
    args = ", ".join(f"{key}: {_render_argument(value)}" for key, value in call.arguments)
    return f"    {call.name}({args})"


def _render_argument(value: Any) -> str:
    return json.dumps(_integral_floats(value), ensure_ascii=False, separators=_ARG_SEPARATORS, default=str)


def _integral_floats(value: Any) -> Any:
    # 2.0 renders as 2 so authored numbers look the same as in the editor.
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {k: _integral_floats(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_integral_floats(v) for v in value]
    return value
