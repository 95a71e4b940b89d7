"""Intermediate script structure produced from a rule-set before rendering.

The compiler builds these nodes first and renders text from them second, so
callers that want structured access (a rule builder, a diff view) never need
to parse compiled text back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import ConditionOperator

# contains, not_contains and matches collapse onto the same family of symbols,
# so compiled text cannot be mapped back to the operator that produced it.
OPERATOR_SYMBOLS: dict[ConditionOperator, str] = {
    ConditionOperator.EQUALS: "==",
    ConditionOperator.NOT_EQUALS: "!=",
    ConditionOperator.CONTAINS: "~=",
    ConditionOperator.NOT_CONTAINS: "!~=",
    ConditionOperator.GREATER_THAN: ">",
    ConditionOperator.LESS_THAN: "<",
    ConditionOperator.MATCHES: "~=",
    ConditionOperator.EXISTS: "??",
    ConditionOperator.NOT_EXISTS: "!??",
}

NO_RULES_PLACEHOLDER = "// No rules defined"
NO_ACTIONS_PLACEHOLDER = "// No actions defined"


@dataclass(frozen=True, slots=True)
class Operand:
    """A condition operand. ``numeric`` literals render without quotes."""

    text: str
    numeric: bool


@dataclass(frozen=True, slots=True)
class Clause:
    field: str
    symbol: str
    operand: Operand | None = None


@dataclass(frozen=True, slots=True)
class ActionCall:
    name: str
    # Insertion order of the source config is preserved.
    arguments: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class ScriptBlock:
    index: int
    title: str
    label: str
    rule_id: str
    triggers: tuple[str, ...]
    when: tuple[Clause, ...]
    then: tuple[ActionCall, ...]
    otherwise: tuple[ActionCall, ...]
    priority: int


@dataclass(frozen=True, slots=True)
class CompiledScript:
    name: str
    version: str
    blocks: tuple[ScriptBlock, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.blocks
