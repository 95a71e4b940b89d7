"""cognategov public API."""

from .approvals import (
    ApprovalRequest,
    ApprovalStatus,
    ApprovalWorkflow,
    BatchResult,
    EscalationScheduler,
    wait_for_resolution,
)
from .config import GovernanceConfig
from .engine import GovernanceEngine, RunOutcome, RunStatus, Submission
from .errors import (
    ApprovalTimeoutError,
    ConfigurationError,
    GovernanceError,
    IntegrityError,
    LedgerWriteError,
    NotFoundError,
    QueryError,
    StateTransitionError,
    ValidationError,
)
from .ledger import (
    EntryDraft,
    JSONLLedgerStorage,
    Ledger,
    LedgerEntry,
    LedgerFilter,
    LedgerSort,
    MemoryLedgerStorage,
    PageRequest,
    verify_chain,
)
from .policies import Policy, PolicyDecision, PolicyEvaluator, PolicyStore, ProposedAction, evaluate
from .rules import RuleSet, compile_rule_set, validate
from .types import Decision, RiskLevel

__all__ = (
    # Engine
    "GovernanceEngine",
    "GovernanceConfig",
    "Submission",
    "RunOutcome",
    "RunStatus",
    # Types
    "Decision",
    "RiskLevel",
    # Rules
    "RuleSet",
    "validate",
    "compile_rule_set",
    # Policies
    "Policy",
    "PolicyDecision",
    "PolicyEvaluator",
    "PolicyStore",
    "ProposedAction",
    "evaluate",
    # Approvals
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalWorkflow",
    "BatchResult",
    "EscalationScheduler",
    "wait_for_resolution",
    # Ledger
    "EntryDraft",
    "Ledger",
    "LedgerEntry",
    "LedgerFilter",
    "LedgerSort",
    "PageRequest",
    "MemoryLedgerStorage",
    "JSONLLedgerStorage",
    "verify_chain",
    # Errors
    "GovernanceError",
    "ValidationError",
    "QueryError",
    "StateTransitionError",
    "IntegrityError",
    "ConfigurationError",
    "NotFoundError",
    "LedgerWriteError",
    "ApprovalTimeoutError",
)
