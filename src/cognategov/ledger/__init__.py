"""Append-only, hash-chained audit ledger."""

from .chain import GENESIS_HASH, ChainBreak, content_hash, find_chain_break, genesis_hash, verify_chain
from .ledger import Ledger
from .models import (
    DEFAULT_CATEGORY,
    ActorType,
    Annotation,
    Approach,
    CryptoRecord,
    EntryDraft,
    EventCategory,
    EventType,
    Evidence,
    How,
    LedgerEntry,
    LedgerStats,
    ResourceUsage,
    ReviewStatus,
    Severity,
    TriggerRef,
    What,
    Where,
    Who,
    Why,
)
from .query import LedgerFilter, LedgerPage, LedgerSort, PageRequest, SortField, run_query
from .storage import JSONLLedgerStorage, LedgerStorage, MemoryLedgerStorage

__all__ = (
    "DEFAULT_CATEGORY",
    "GENESIS_HASH",
    "ActorType",
    "Annotation",
    "Approach",
    "ChainBreak",
    "CryptoRecord",
    "EntryDraft",
    "EventCategory",
    "EventType",
    "Evidence",
    "How",
    "JSONLLedgerStorage",
    "Ledger",
    "LedgerEntry",
    "LedgerFilter",
    "LedgerPage",
    "LedgerSort",
    "LedgerStats",
    "LedgerStorage",
    "MemoryLedgerStorage",
    "PageRequest",
    "ResourceUsage",
    "ReviewStatus",
    "Severity",
    "SortField",
    "TriggerRef",
    "What",
    "Where",
    "Who",
    "Why",
    "content_hash",
    "find_chain_break",
    "genesis_hash",
    "run_query",
    "verify_chain",
)
