"""Governance policies, their store and the evaluator."""

from .evaluator import PolicyEvaluator, build_facts, evaluate
from .models import (
    Approver,
    ApproverType,
    EscalationLevel,
    EscalationNotification,
    Policy,
    PolicyDecision,
    PolicyHit,
    PolicyScope,
    PolicyStatus,
    PolicyTrigger,
    PolicyTriggerType,
    ProposedAction,
    Threshold,
    TriggerLogic,
)
from .store import PolicyRevision, PolicyStore
from .thresholds import THRESHOLD_OPERATORS, check_threshold, compare

__all__ = (
    "Approver",
    "ApproverType",
    "EscalationLevel",
    "EscalationNotification",
    "Policy",
    "PolicyDecision",
    "PolicyEvaluator",
    "PolicyHit",
    "PolicyRevision",
    "PolicyScope",
    "PolicyStatus",
    "PolicyStore",
    "PolicyTrigger",
    "PolicyTriggerType",
    "ProposedAction",
    "THRESHOLD_OPERATORS",
    "Threshold",
    "TriggerLogic",
    "build_facts",
    "check_threshold",
    "compare",
    "evaluate",
)
