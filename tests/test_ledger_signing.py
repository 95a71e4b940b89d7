from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeClock

from cognategov.errors import IntegrityError
from cognategov.ledger import ActorType, EntryDraft, EventType, JSONLLedgerStorage, Ledger, Who
from cognategov.ledger.signing import (
    CRYPTO_AVAILABLE,
    generate_keypair,
    load_private_key,
    load_public_key,
    sign_content_hash,
    verify_content_hash,
)

pytestmark = pytest.mark.skipif(not CRYPTO_AVAILABLE, reason="cryptography not installed")


def _draft(description: str) -> EntryDraft:
    return EntryDraft.for_event(
        EventType.POLICY_TRIGGERED,
        who=Who(type=ActorType.SYSTEM, id="governance"),
        description=description,
        trigger="policy",
    )


def _keys():
    private_bytes, public_bytes = generate_keypair()
    return load_private_key(private_bytes), load_public_key(public_bytes)


def test_signature_verification_round_trip(tmp_path: Path, clock: FakeClock) -> None:
    private_key, public_key = _keys()

    ledger = Ledger(JSONLLedgerStorage(tmp_path / "ledger.jsonl"), now=clock.now, signing_key=private_key)
    first = ledger.append(_draft("one"))
    ledger.append(_draft("two"))

    assert first.crypto.signature
    assert ledger.verify(public_key=public_key) == 2
    reopened = Ledger(JSONLLedgerStorage(tmp_path / "ledger.jsonl"), public_key=public_key)
    assert reopened.verify() == 2


def test_missing_signature_fails(clock: FakeClock) -> None:
    _, public_key = _keys()
    ledger = Ledger(now=clock.now)
    ledger.append(_draft("unsigned"))

    with pytest.raises(IntegrityError, match="signature missing"):
        ledger.verify(public_key=public_key)


def test_tampered_signature_fails(tmp_path: Path, clock: FakeClock) -> None:
    private_key, public_key = _keys()
    path = tmp_path / "ledger.jsonl"
    Ledger(JSONLLedgerStorage(path), now=clock.now, signing_key=private_key).append(_draft("one"))

    text = path.read_text(encoding="utf-8")
    path.write_text(text.replace('"signature":"', '"signature":"AAAA'), encoding="utf-8")

    with pytest.raises(IntegrityError, match="signature invalid"):
        Ledger(JSONLLedgerStorage(path), public_key=public_key)


def test_signature_from_other_key_fails() -> None:
    private_key, _ = _keys()
    _, other_public = _keys()
    signature = sign_content_hash(private_key, "sha256:abc")

    assert not verify_content_hash(other_public, "sha256:abc", signature)
    assert not verify_content_hash(other_public, "sha256:abc", "not base64!")
