"""Storage backends for ledger entries and their review annotations.

Backends are not thread-safe on their own; :class:`~cognategov.ledger.Ledger`
serializes every write. Entries are only ever appended. Annotations are
replaced per entry id and never touch the entry records.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterator, Protocol

from pydantic import ValidationError as PydanticValidationError

from ..errors import IntegrityError, LedgerWriteError, sanitize_exception
from .jcs import CanonicalizationError, canonical_text
from .models import Annotation, LedgerEntry

_logger = logging.getLogger(__name__)


class LedgerStorage(Protocol):
    def entries(self) -> list[LedgerEntry]:
        """Snapshot of all entries in sequence order."""
        ...

    def last(self) -> LedgerEntry | None:
        ...

    def append(self, entry: LedgerEntry) -> None:
        ...

    def annotations(self) -> dict[str, Annotation]:
        ...

    def put_annotation(self, annotation: Annotation) -> None:
        ...

    def __len__(self) -> int:
        ...


class MemoryLedgerStorage:
    """Keeps everything in process memory. The default backend."""

    def __init__(self) -> None:
        self._entries: list[LedgerEntry] = []
        self._annotations: dict[str, Annotation] = {}

    def entries(self) -> list[LedgerEntry]:
        return list(self._entries)

    def last(self) -> LedgerEntry | None:
        return self._entries[-1] if self._entries else None

    def append(self, entry: LedgerEntry) -> None:
        self._entries.append(entry)

    def annotations(self) -> dict[str, Annotation]:
        return dict(self._annotations)

    def put_annotation(self, annotation: Annotation) -> None:
        self._annotations[annotation.entry_id] = annotation

    def __len__(self) -> int:
        return len(self._entries)


class JSONLLedgerStorage(MemoryLedgerStorage):
    """Append-only JSONL file: one canonical JSON entry per line, fsynced.

    Annotations go to a sidecar file next to the ledger
    (``<name>.annotations.jsonl``); the last line for an entry id wins.
    Existing files are loaded on construction; a line that does not parse or
    is not in canonical form raises :class:`IntegrityError`.
    """

    def __init__(self, path: Path | str, annotations_path: Path | str | None = None) -> None:
        super().__init__()
        self.path = Path(path)
        self.annotations_path = (
            Path(annotations_path)
            if annotations_path is not None
            else self.path.with_name(self.path.name + ".annotations.jsonl")
        )
        for entry in _read_entries(self.path):
            self._entries.append(entry)
        for annotation in _read_annotations(self.annotations_path):
            self._annotations[annotation.entry_id] = annotation
        _logger.debug("loaded %d ledger entries from %s", len(self._entries), self.path.name)

    def append(self, entry: LedgerEntry) -> None:
        line = canonical_text(entry.model_dump(mode="json", by_alias=True))
        _append_line(self.path, line)
        super().append(entry)

    def put_annotation(self, annotation: Annotation) -> None:
        line = canonical_text(annotation.model_dump(mode="json", by_alias=True))
        _append_line(self.annotations_path, line)
        super().put_annotation(annotation)


def _append_line(path: Path, line: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
            handle.flush()
            os.fsync(handle.fileno())
    except OSError as exc:
        raise LedgerWriteError(sanitize_exception(exc)) from exc


def _iter_lines(path: Path) -> Iterator[tuple[int, dict]]:
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as handle:
        for line_number, raw_line in enumerate(handle, start=1):
            line = raw_line.rstrip("\n")
            if not line:
                raise IntegrityError(f"empty line at {line_number}")
            try:
                data = json.loads(line)
            except json.JSONDecodeError as exc:
                raise IntegrityError(f"line {line_number} is not valid JSON") from exc
            if not isinstance(data, dict):
                raise IntegrityError(f"line {line_number} is not an object")
            try:
                canonical = canonical_text(data)
            except CanonicalizationError as exc:
                raise IntegrityError(f"line {line_number}: {exc}") from exc
            if canonical != line:
                raise IntegrityError(f"line {line_number} is not canonical")
            yield line_number, data


def _read_entries(path: Path) -> Iterator[LedgerEntry]:
    for line_number, data in _iter_lines(path):
        try:
            yield LedgerEntry.model_validate(data)
        except PydanticValidationError as exc:
            raise IntegrityError(
                f"line {line_number} is not a ledger entry ({exc.error_count()} errors)",
                sequence=data.get("sequence") if isinstance(data.get("sequence"), int) else None,
            ) from exc


def _read_annotations(path: Path) -> Iterator[Annotation]:
    for line_number, data in _iter_lines(path):
        try:
            yield Annotation.model_validate(data)
        except PydanticValidationError as exc:
            raise IntegrityError(f"annotation line {line_number} is invalid") from exc
