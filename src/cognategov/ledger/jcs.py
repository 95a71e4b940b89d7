"""Canonical JSON used for ledger content hashes and JSONL lines.

Close to RFC 8785. Keys and strings are NFC-normalized and keys are sorted;
two keys that collide after normalization are an error. Numbers never use
an exponent, and binary floats are written from their shortest repr, so 0.1
hashes as "0.1". Aware datetimes become ISO 8601 text; naive ones are refused.
"""

from __future__ import annotations

import hashlib
import json
import math
import unicodedata
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

_SEPARATORS = (",", ":")


class CanonicalizationError(ValueError):
    """Raised when a value has no canonical JSON form."""


def canonical_text(value: Any) -> str:
    return _encode(value)


def canonical_bytes(value: Any) -> bytes:
    """Return canonical UTF-8 bytes for the given JSON-serializable value."""
    return _encode(value).encode("utf-8")


def hex_digest(value: Any, algorithm: str = "sha256") -> str:
    """Hex digest of the canonical bytes of ``value`` under ``algorithm``."""
    return hashlib.new(algorithm, canonical_bytes(value)).hexdigest()


def _encode(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return {None: "null", True: "true", False: "false"}[value]
    if isinstance(value, (int, float, Decimal)):
        return _encode_number(value)
    if isinstance(value, str):
        return _encode_string(value)
    if isinstance(value, Enum):
        return _encode(value.value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise CanonicalizationError("naive datetimes are rejected")
        return _encode_string(value.isoformat())
    if isinstance(value, date):
        return _encode_string(value.isoformat())
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(item) for item in value) + "]"
    if isinstance(value, Mapping):
        return _encode_object(value)
    raise CanonicalizationError(f"type {type(value).__name__} is not JSON-serializable")


def _encode_string(value: str) -> str:
    return json.dumps(unicodedata.normalize("NFC", value), ensure_ascii=False, separators=_SEPARATORS)


def _encode_object(value: Mapping[Any, Any]) -> str:
    members: dict[str, Any] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise CanonicalizationError("object keys must be strings")
        normalized = unicodedata.normalize("NFC", key)
        if normalized in members:
            raise CanonicalizationError(f"duplicate key after NFC normalization: {normalized!r}")
        members[normalized] = item
    return "{" + ",".join(f"{_encode_string(key)}:{_encode(members[key])}" for key in sorted(members)) + "}"


def _encode_number(value: int | float | Decimal) -> str:
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalizationError("NaN/Infinity are rejected")
        value = Decimal(repr(value))
    if not value.is_finite():
        raise CanonicalizationError("NaN/Infinity are rejected")
    # Covers -0 as well.
    if value == 0:
        return "0"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
