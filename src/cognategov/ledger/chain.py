"""Hash chain sealing and verification.

This is the single source of truth for ledger chain hashing. The content
hash covers the canonical JSON of the entry with ``crypto.contentHash``,
``crypto.signature``, ``isFlagged`` and ``reviewStatus`` removed. Review
annotations can therefore change without touching the chain.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from .jcs import CanonicalizationError, hex_digest
from .models import CryptoRecord, EntryDraft, LedgerEntry
from .signing import verify_content_hash

SUPPORTED_ALGORITHMS = ("sha256", "sha512")
GENESIS_HASH = "sha256:" + "0" * 64

_UNHASHED: dict[str, Any] = {
    "crypto": {"content_hash": True, "signature": True},
    "is_flagged": True,
    "review_status": True,
}


def genesis_hash(algorithm: str = "sha256") -> str:
    """The ``previousHash`` of the first entry."""
    _check_algorithm(algorithm)
    return f"{algorithm}:" + "0" * (hashlib.new(algorithm).digest_size * 2)


def hashed_payload(entry: LedgerEntry) -> dict[str, Any]:
    return entry.model_dump(mode="json", by_alias=True, exclude=_UNHASHED)


def content_hash(entry: LedgerEntry) -> str:
    """Recompute the content hash of ``entry`` from its fields."""
    algorithm = entry.crypto.algorithm
    _check_algorithm(algorithm)
    digest = hex_digest(hashed_payload(entry), algorithm)
    return f"{algorithm}:{digest}"


def seal(
    draft: EntryDraft,
    *,
    sequence: int,
    previous_hash: str,
    now: datetime,
    algorithm: str = "sha256",
) -> LedgerEntry:
    """Build the immutable entry for ``draft`` at position ``sequence``."""
    fields = draft.model_dump(exclude={"when"})
    unsealed = LedgerEntry(
        **fields,
        sequence=sequence,
        when=draft.when or now,
        crypto=CryptoRecord(
            content_hash="",
            previous_hash=previous_hash,
            algorithm=algorithm,
            hashed_at=now,
        ),
        created_at=now,
    )
    crypto = unsealed.crypto.model_copy(update={"content_hash": content_hash(unsealed)})
    return unsealed.model_copy(update={"crypto": crypto})


@dataclass(frozen=True, slots=True)
class ChainBreak:
    sequence: int | None
    index: int
    reason: str


def find_chain_break(
    entries: Sequence[LedgerEntry],
    *,
    from_genesis: bool = True,
    public_key: Any | None = None,
) -> ChainBreak | None:
    """Return the first inconsistency in ``entries``, or ``None`` if the chain holds.

    ``entries`` must be in sequence order. With ``from_genesis`` the first
    entry must be sequence 1 and link to the genesis hash; otherwise the
    slice is checked only against itself.
    """
    previous: LedgerEntry | None = None
    for index, entry in enumerate(entries):
        crypto = entry.crypto
        if crypto.algorithm not in SUPPORTED_ALGORITHMS:
            return ChainBreak(entry.sequence, index, f"unsupported algorithm {crypto.algorithm!r}")

        if previous is None:
            if from_genesis:
                if entry.sequence != 1:
                    return ChainBreak(entry.sequence, index, "first entry is not sequence 1")
                if crypto.previous_hash != genesis_hash(crypto.algorithm):
                    return ChainBreak(entry.sequence, index, "first entry does not link to genesis")
        else:
            if entry.sequence != previous.sequence + 1:
                return ChainBreak(
                    entry.sequence,
                    index,
                    f"sequence gap or reorder after {previous.sequence}",
                )
            if crypto.previous_hash != previous.crypto.content_hash:
                return ChainBreak(entry.sequence, index, "previousHash mismatch")

        try:
            expected = content_hash(entry)
        except CanonicalizationError as exc:
            return ChainBreak(entry.sequence, index, f"entry is not canonicalizable: {exc}")
        if expected != crypto.content_hash:
            return ChainBreak(entry.sequence, index, "contentHash mismatch")

        if public_key is not None:
            if crypto.signature is None:
                return ChainBreak(entry.sequence, index, "signature missing")
            if not verify_content_hash(public_key, crypto.content_hash, crypto.signature):
                return ChainBreak(entry.sequence, index, "signature invalid")

        previous = entry
    return None


def verify_chain(
    entries: Sequence[LedgerEntry],
    *,
    from_genesis: bool = True,
    public_key: Any | None = None,
) -> bool:
    """True when every entry's hash and link check out."""
    return find_chain_break(entries, from_genesis=from_genesis, public_key=public_key) is None


def _check_algorithm(algorithm: str) -> None:
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"unsupported hash algorithm: {algorithm!r}")
