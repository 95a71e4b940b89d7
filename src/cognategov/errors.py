"""Exception types for cognategov."""

from __future__ import annotations

from typing import Sequence


class GovernanceError(Exception):
    """Base exception for all cognategov errors."""


class ValidationError(GovernanceError):
    """Raised when rule, policy or query input is malformed.

    Recoverable: the author can fix the input. ``issues`` holds one message
    per offending field.
    """

    def __init__(self, message: str, issues: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.issues: tuple[str, ...] = tuple(issues)


class QueryError(ValidationError):
    """Raised when a ledger query filter, sort or page cannot be honoured."""


class StateTransitionError(GovernanceError):
    """Raised when an approval transition, or running an action, is not allowed from the current status."""

    def __init__(
        self, request_id: str, current_status: str, attempted: str, *, subject: str = "approval request"
    ) -> None:
        super().__init__(f"cannot {attempted} {subject} {request_id}: status is {current_status}")
        self.request_id = request_id
        self.current_status = current_status
        self.attempted = attempted


class IntegrityError(GovernanceError):
    """Raised when the ledger hash chain does not verify."""

    def __init__(self, reason: str, sequence: int | None = None) -> None:
        location = f" at sequence {sequence}" if sequence is not None else ""
        super().__init__(f"ledger integrity check failed{location}: {reason}")
        self.reason = reason
        self.sequence = sequence


class ConfigurationError(GovernanceError):
    """Raised when a policy references an undefined metric, operator or operand."""

    def __init__(self, message: str, policy_id: str | None = None) -> None:
        super().__init__(message)
        self.policy_id = policy_id


class NotFoundError(GovernanceError):
    """Raised when an approval request or ledger entry id is unknown."""


class LedgerWriteError(GovernanceError):
    """Raised when an append cannot be persisted."""


class ApprovalTimeoutError(GovernanceError):
    """Raised when waiting for an approval decision exceeds the caller's timeout."""


def sanitize_exception(exc: Exception) -> str:
    """Return a safe error message without filesystem paths."""
    if isinstance(exc, OSError):
        parts: list[str] = [exc.__class__.__name__]
        if exc.errno is not None:
            parts.append(f"errno={exc.errno}")
        if exc.strerror:
            parts.append(exc.strerror)
        return " ".join(parts).strip()
    return str(exc)
