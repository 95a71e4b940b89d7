"""Shared enums for cognategov."""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class Decision(str, Enum):
    """Outcome of evaluating a proposed action."""

    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_APPROVAL = "require_approval"

    @property
    def restrictiveness(self) -> int:
        return _DECISION_RANK[self]


_DECISION_RANK = {Decision.ALLOW: 0, Decision.REQUIRE_APPROVAL: 1, Decision.DENY: 2}


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2, RiskLevel.CRITICAL: 3}


def most_severe(levels: Iterable[RiskLevel]) -> RiskLevel | None:
    """Return the highest risk in ``levels``; the first one wins ties."""
    best: RiskLevel | None = None
    for level in levels:
        if best is None or level.rank > best.rank:
            best = level
    return best
