from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import FakeClock

from cognategov.errors import IntegrityError, LedgerWriteError
from cognategov.ledger import ActorType, EntryDraft, EventType, JSONLLedgerStorage, Ledger, ReviewStatus, Who


def _draft(description: str, status: str = "ok") -> EntryDraft:
    return EntryDraft.for_event(
        EventType.RUN_COMPLETED,
        who=Who(type=ActorType.COGNATE, id="cog-1", name="Scout"),
        description=description,
        trigger="schedule",
        status=status,
        result={"score": 0.87, "items": 3},
    )


def _write_sample_ledger(path: Path, clock: FakeClock) -> Ledger:
    ledger = Ledger(JSONLLedgerStorage(path), now=clock.now)
    ledger.append(_draft("first"))
    clock.advance(5)
    ledger.append(_draft("second"))
    return ledger


def _reopen(path: Path) -> Ledger:
    return Ledger(JSONLLedgerStorage(path))


def test_append_and_reopen_happy_path(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    written = _write_sample_ledger(path, clock)

    reopened = _reopen(path)

    assert len(reopened) == 2
    assert reopened.verify() == 2
    assert [e.crypto.content_hash for e in reopened.entries()] == [
        e.crypto.content_hash for e in written.entries()
    ]
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["crypto"]["previousHash"].startswith("sha256:000")


def test_appending_after_reopen_continues_the_chain(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    _write_sample_ledger(path, clock)

    reopened = Ledger(JSONLLedgerStorage(path), now=clock.now)
    third = reopened.append(_draft("third"))

    assert third.sequence == 3
    assert _reopen(path).verify() == 3


def test_tamper_detection_on_modified_line(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    _write_sample_ledger(path, clock)
    lines = path.read_text(encoding="utf-8").splitlines()
    lines[0] = lines[0].replace('"status":"ok"', '"status":"tampered"')
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    with pytest.raises(IntegrityError) as excinfo:
        _reopen(path)
    assert excinfo.value.sequence == 1
    assert excinfo.value.reason == "contentHash mismatch"


def test_deletion_breaks_chain(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    _write_sample_ledger(path, clock)
    lines = path.read_text(encoding="utf-8").splitlines()
    path.write_text(lines[1] + "\n", encoding="utf-8")

    with pytest.raises(IntegrityError, match="not sequence 1"):
        _reopen(path)


def test_reordering_is_rejected(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    _write_sample_ledger(path, clock)
    lines = path.read_text(encoding="utf-8").splitlines()
    lines[0], lines[1] = lines[1], lines[0]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    with pytest.raises(IntegrityError):
        _reopen(path)


def test_partial_line_is_rejected(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    _write_sample_ledger(path, clock)
    text = path.read_text(encoding="utf-8")
    path.write_text(text[:-5], encoding="utf-8")

    with pytest.raises(IntegrityError, match="not valid JSON"):
        JSONLLedgerStorage(path)


def test_non_canonical_line_is_rejected(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    _write_sample_ledger(path, clock)
    lines = path.read_text(encoding="utf-8").splitlines()
    lines[0] = json.dumps(json.loads(lines[0]), indent=None)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    with pytest.raises(IntegrityError, match="not canonical"):
        JSONLLedgerStorage(path)


def test_blank_line_is_rejected(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    _write_sample_ledger(path, clock)
    path.write_text(path.read_text(encoding="utf-8") + "\n", encoding="utf-8")

    with pytest.raises(IntegrityError, match="empty line"):
        JSONLLedgerStorage(path)


def test_verify_on_open_can_be_deferred(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    _write_sample_ledger(path, clock)
    lines = path.read_text(encoding="utf-8").splitlines()
    lines[1] = lines[1].replace('"description":"second"', '"description":"forged"')
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    ledger = Ledger(JSONLLedgerStorage(path), verify_on_open=False)

    assert len(ledger) == 2
    with pytest.raises(IntegrityError) as excinfo:
        ledger.verify()
    assert excinfo.value.sequence == 2


def test_annotations_persist_in_sidecar(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "ledger.jsonl"
    ledger = _write_sample_ledger(path, clock)
    entry_id = ledger.entries()[0].id

    ledger.flag(entry_id, by="auditor", reason="check")
    ledger.set_review_status(entry_id, ReviewStatus.IN_REVIEW, by="auditor")

    sidecar = tmp_path / "ledger.jsonl.annotations.jsonl"
    assert len(sidecar.read_text(encoding="utf-8").splitlines()) == 2
    reopened = _reopen(path)
    entry = reopened.get(entry_id)
    assert entry.is_flagged is True
    assert entry.review_status is ReviewStatus.IN_REVIEW
    assert reopened.verify() == 2


def test_write_failure_is_sanitized(tmp_path: Path, clock: FakeClock) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    ledger = Ledger(JSONLLedgerStorage(blocker / "ledger.jsonl"), now=clock.now)

    with pytest.raises(LedgerWriteError) as excinfo:
        ledger.append(_draft("first"))

    assert str(tmp_path) not in str(excinfo.value)
    assert len(ledger) == 0
