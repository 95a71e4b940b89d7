"""The append-only, hash-chained governance ledger.

Appends are serialized by a single lock so sequence numbers and the hash
chain have one total order. Reads work on a snapshot of the storage and do
not take the lock. A broken chain is reported through :class:`IntegrityError`
and the registered alert callbacks; it is never repaired.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError

from ..errors import IntegrityError, NotFoundError, ValidationError
from .chain import find_chain_break, genesis_hash, seal
from .jcs import CanonicalizationError
from .models import (
    Annotation,
    EntryDraft,
    EventType,
    LedgerEntry,
    LedgerStats,
    ReviewStatus,
    Severity,
    Who,
)
from .query import LedgerFilter, LedgerPage, LedgerSort, PageRequest, run_query
from .signing import sign_content_hash
from .storage import LedgerStorage, MemoryLedgerStorage

_logger = logging.getLogger(__name__)

IntegrityAlert = Callable[[IntegrityError], None]

_REVIEW_TRANSITIONS: dict[ReviewStatus, frozenset[ReviewStatus]] = {
    ReviewStatus.PENDING: frozenset(
        {ReviewStatus.IN_REVIEW, ReviewStatus.RESOLVED, ReviewStatus.DISMISSED}
    ),
    ReviewStatus.IN_REVIEW: frozenset(
        {ReviewStatus.PENDING, ReviewStatus.RESOLVED, ReviewStatus.DISMISSED}
    ),
    ReviewStatus.RESOLVED: frozenset({ReviewStatus.IN_REVIEW}),
    ReviewStatus.DISMISSED: frozenset({ReviewStatus.IN_REVIEW}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Ledger:
    """Append-only ledger over a pluggable storage backend.

    Example:
        ledger = Ledger()
        entry = ledger.append(EntryDraft.for_event(
            EventType.RUN_COMPLETED,
            who=Who(type=ActorType.COGNATE, id="cog-1", name="Scout"),
            description="Posted weekly digest",
            trigger="schedule",
        ))
        ledger.verify()
    """

    def __init__(
        self,
        storage: LedgerStorage | None = None,
        *,
        now: Callable[[], datetime] | None = None,
        algorithm: str = "sha256",
        signing_key: Any | None = None,
        public_key: Any | None = None,
        default_page_size: int = 25,
        max_page_size: int = 500,
        on_integrity_error: Iterable[IntegrityAlert] = (),
        verify_on_open: bool = True,
    ) -> None:
        self.storage: LedgerStorage = storage if storage is not None else MemoryLedgerStorage()
        self.algorithm = algorithm
        genesis_hash(algorithm)  # rejects unsupported algorithms
        self.signing_key = signing_key
        self.public_key = public_key
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self._now = now or _utcnow
        self._lock = threading.Lock()
        self._alerts: list[IntegrityAlert] = list(on_integrity_error)
        if verify_on_open and len(self.storage):
            self.verify()

    def add_integrity_alert(self, callback: IntegrityAlert) -> None:
        self._alerts.append(callback)

    # -- writes -----------------------------------------------------------

    def append(self, draft: EntryDraft | Mapping[str, Any]) -> LedgerEntry:
        """Seal ``draft`` as the next entry in the chain and persist it."""
        if not isinstance(draft, EntryDraft):
            try:
                draft = EntryDraft.model_validate(draft)
            except PydanticValidationError as exc:
                issues = [
                    f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                    for err in exc.errors()
                ]
                raise ValidationError("invalid ledger entry", issues) from exc

        with self._lock:
            last = self.storage.last()
            sequence = last.sequence + 1 if last else 1
            previous_hash = last.crypto.content_hash if last else genesis_hash(self.algorithm)
            now = self._now()
            try:
                entry = seal(
                    draft,
                    sequence=sequence,
                    previous_hash=previous_hash,
                    now=now,
                    algorithm=self.algorithm,
                )
            except (CanonicalizationError, PydanticSerializationError) as exc:
                raise ValidationError(f"ledger entry cannot be hashed: {exc}") from exc
            if self.signing_key is not None:
                signature = sign_content_hash(self.signing_key, entry.crypto.content_hash)
                entry = entry.model_copy(
                    update={"crypto": entry.crypto.model_copy(update={"signature": signature})}
                )
            self.storage.append(entry)

        _logger.info(
            "ledger append seq=%d type=%s actor=%s:%s",
            entry.sequence,
            entry.what.type.value,
            entry.who.type.value,
            entry.who.id,
        )
        return entry

    def correct(
        self,
        original_id: str,
        *,
        who: Who,
        description: str,
        reasoning: str,
        result: Any = None,
        tags: Iterable[str] = (),
    ) -> LedgerEntry:
        """Append a correction that references ``original_id``. The original stays as is."""
        original = self.get(original_id)
        return self.append(
            EntryDraft.for_event(
                EventType.CORRECTION,
                who=who,
                description=description,
                trigger="correction",
                reasoning=reasoning,
                severity=Severity.NOTICE,
                result=result,
                where=original.where,
                tags=list(tags),
                references=[original.id],
            )
        )

    def flag(
        self,
        entry_id: str,
        *,
        flagged: bool = True,
        by: str | None = None,
        reason: str | None = None,
    ) -> LedgerEntry:
        with self._lock:
            current = self._annotation_for(entry_id)
            annotation = current.model_copy(
                update={
                    "is_flagged": flagged,
                    "flagged_by": by if flagged else None,
                    "flag_reason": reason if flagged else None,
                    "updated_at": self._now(),
                }
            )
            self.storage.put_annotation(annotation)
        _logger.info("ledger entry %s flagged=%s", entry_id, flagged)
        return self.get(entry_id)

    def set_review_status(
        self,
        entry_id: str,
        status: ReviewStatus | str,
        *,
        by: str | None = None,
        notes: str | None = None,
    ) -> LedgerEntry:
        try:
            target = ReviewStatus(status)
        except ValueError as exc:
            raise ValidationError(f"unknown review status: {status!r}") from exc
        with self._lock:
            current = self._annotation_for(entry_id)
            if target is not current.review_status:
                if target not in _REVIEW_TRANSITIONS[current.review_status]:
                    raise ValidationError(
                        f"cannot move ledger entry {entry_id} from "
                        f"{current.review_status.value} to {target.value}"
                    )
                annotation = current.model_copy(
                    update={
                        "review_status": target,
                        "reviewed_by": by,
                        "notes": notes if notes is not None else current.notes,
                        "updated_at": self._now(),
                    }
                )
                self.storage.put_annotation(annotation)
                _logger.info("ledger entry %s review status %s", entry_id, target.value)
        return self.get(entry_id)

    def _annotation_for(self, entry_id: str) -> Annotation:
        if not any(entry.id == entry_id for entry in self.storage.entries()):
            raise NotFoundError(f"ledger entry not found: {entry_id}")
        existing = self.storage.annotations().get(entry_id)
        if existing is not None:
            return existing
        return Annotation(entry_id=entry_id, updated_at=self._now())

    # -- reads ------------------------------------------------------------

    def entries(self) -> list[LedgerEntry]:
        """All entries in sequence order, with review annotations applied."""
        annotations = self.storage.annotations()
        return [_annotate(entry, annotations.get(entry.id)) for entry in self.storage.entries()]

    def get(self, entry_id: str) -> LedgerEntry:
        for entry in self.storage.entries():
            if entry.id == entry_id:
                return _annotate(entry, self.storage.annotations().get(entry_id))
        raise NotFoundError(f"ledger entry not found: {entry_id}")

    def recent(self, limit: int = 10) -> list[LedgerEntry]:
        """The newest ``limit`` entries, newest first."""
        if limit < 1:
            return []
        return list(reversed(self.entries()[-limit:]))

    def query(
        self,
        filter: LedgerFilter | Mapping[str, Any] | None = None,
        sort: LedgerSort | Mapping[str, Any] | None = None,
        page: PageRequest | Mapping[str, Any] | None = None,
    ) -> LedgerPage:
        if page is None:
            page = PageRequest(page_size=self.default_page_size)
        return run_query(self.entries(), filter, sort, page, max_page_size=self.max_page_size)

    def stats(self) -> LedgerStats:
        entries = self.entries()
        return LedgerStats(
            total=len(entries),
            flagged=sum(1 for entry in entries if entry.is_flagged),
            by_event_type=dict(Counter(entry.what.type.value for entry in entries)),
            by_severity=dict(Counter(entry.what.severity.value for entry in entries)),
            by_category=dict(Counter(entry.what.category.value for entry in entries)),
            by_actor_type=dict(Counter(entry.who.type.value for entry in entries)),
            by_review_status=dict(Counter(entry.review_status.value for entry in entries)),
        )

    def verify(self, *, public_key: Any | None = None) -> int:
        """Verify the whole chain. Returns the number of entries checked.

        On failure the alert callbacks are invoked and :class:`IntegrityError`
        is raised.
        """
        entries = self.storage.entries()
        found = find_chain_break(entries, public_key=public_key or self.public_key)
        if found is not None:
            error = IntegrityError(found.reason, found.sequence)
            _logger.error("%s", error)
            for callback in list(self._alerts):
                callback(error)
            raise error
        _logger.debug("ledger verified (%d entries)", len(entries))
        return len(entries)

    def __len__(self) -> int:
        return len(self.storage)


def _annotate(entry: LedgerEntry, annotation: Annotation | None) -> LedgerEntry:
    if annotation is None:
        return entry
    return entry.model_copy(
        update={"is_flagged": annotation.is_flagged, "review_status": annotation.review_status}
    )
