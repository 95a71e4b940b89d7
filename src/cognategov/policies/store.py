"""In-memory, versioned policy store."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from ..errors import NotFoundError, ValidationError
from .models import Policy, PolicyScope, PolicyStatus

_logger = logging.getLogger(__name__)


class PolicyRevision(BaseModel):
    """One stored version of a policy. Revisions start at 1."""

    model_config = ConfigDict(frozen=True)

    revision: int
    policy: Policy
    recorded_at: datetime


class PolicyStore:
    """Holds the current revision of every policy plus its full history.

    Replacing a policy never discards the old one; ``history`` returns every
    revision in order.
    """

    def __init__(
        self,
        policies: Iterable[Policy] = (),
        *,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._history: dict[str, list[PolicyRevision]] = {}
        for policy in policies:
            self.upsert(policy)

    @classmethod
    def from_documents(cls, documents: Iterable[dict[str, Any]], **kwargs: Any) -> "PolicyStore":
        """Build a store from policy documents (camelCase or snake_case keys)."""
        policies: list[Policy] = []
        issues: list[str] = []
        for index, document in enumerate(documents, start=1):
            try:
                policies.append(Policy.model_validate(document))
            except PydanticValidationError as exc:
                for error in exc.errors():
                    location = ".".join(str(part) for part in error["loc"])
                    issues.append(f"Policy {index}: {location}: {error['msg']}")
        if issues:
            raise ValidationError(f"{len(issues)} invalid policy field(s)", issues)
        return cls(policies, **kwargs)

    @classmethod
    def load(cls, path: Path, **kwargs: Any) -> "PolicyStore":
        """Load a JSON file holding a list of policy documents."""
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("policies", [])
        if not isinstance(data, list):
            raise ValidationError("policy file must hold a list of policies")
        return cls.from_documents(data, **kwargs)

    def upsert(self, policy: Policy) -> PolicyRevision:
        """Store ``policy`` as the newest revision of its id."""
        with self._lock:
            revisions = self._history.setdefault(policy.id, [])
            record = PolicyRevision(
                revision=len(revisions) + 1,
                policy=policy,
                recorded_at=self._now(),
            )
            revisions.append(record)
        _logger.info("policy %s stored at revision %d", policy.id, record.revision)
        return record

    def set_status(self, policy_id: str, status: PolicyStatus) -> PolicyRevision:
        current = self.get(policy_id)
        return self.upsert(current.model_copy(update={"status": status}))

    def get(self, policy_id: str) -> Policy:
        with self._lock:
            revisions = self._history.get(policy_id)
            if not revisions:
                raise NotFoundError(f"policy not found: {policy_id}")
            return revisions[-1].policy

    def revision(self, policy_id: str) -> int:
        with self._lock:
            revisions = self._history.get(policy_id)
            if not revisions:
                raise NotFoundError(f"policy not found: {policy_id}")
            return revisions[-1].revision

    def history(self, policy_id: str) -> list[PolicyRevision]:
        with self._lock:
            revisions = self._history.get(policy_id)
            if not revisions:
                raise NotFoundError(f"policy not found: {policy_id}")
            return list(revisions)

    def all(self) -> list[Policy]:
        with self._lock:
            return [revisions[-1].policy for revisions in self._history.values()]

    def active(self) -> list[Policy]:
        return [policy for policy in self.all() if policy.is_active]

    def by_scope(self, scope: PolicyScope) -> list[Policy]:
        return [policy for policy in self.all() if scope in policy.scope]

    def by_tag(self, tag: str) -> list[Policy]:
        return [policy for policy in self.all() if tag in policy.tags]

    def requiring_approval(self) -> list[Policy]:
        return [policy for policy in self.active() if policy.approval_required]

    def __iter__(self) -> Iterator[Policy]:
        return iter(self.all())

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def __contains__(self, policy_id: object) -> bool:
        with self._lock:
            return policy_id in self._history
