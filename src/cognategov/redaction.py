"""Secret redaction for action context before it reaches notices or the ledger.

Keys are compared after lowercasing and dropping ``_``, ``-`` and ``.``, so
``api_key``, ``apiKey`` and ``API-KEY`` are treated alike. Values are checked
against the shapes of common credentials (bearer headers, provider key
prefixes, JWTs and PEM blocks).
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

REDACTED = "[redacted]"

_SENSITIVE_KEY_TERMS = (
    "apikey",
    "token",
    "secret",
    "password",
    "passwd",
    "authorization",
    "bearer",
    "privatekey",
    "accesskey",
    "credential",
    "sessionid",
    "cookie",
    "jwt",
    "auth",
)

# Keys that contain a sensitive term but name a harmless concept.
_SAFE_KEYS = frozenset({"author", "authorid", "authorname", "tokens", "tokencount"})

_SECRET_VALUE_RE = re.compile(
    r"""^(?:
        (?:sk|rk)-\S+            # API keys
      | gh[pousr]_\S+ | github_pat_\S+
      | xox[abp]-\S+             # chat bot tokens
      | AKIA[0-9A-Z]{8,}         # cloud access key ids
      | bearer\s+\S+
      | [\w-]{8,}\.[\w-]{8,}\.[\w-]{4,}   # JWT-like
    )$""",
    re.IGNORECASE | re.VERBOSE,
)

_KEY_SEPARATORS = re.compile(r"[_\-.]")


def _normalize_key(key: str) -> str:
    return _KEY_SEPARATORS.sub("", key.lower())


def is_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized in _SAFE_KEYS:
        return False
    return any(term in normalized for term in _SENSITIVE_KEY_TERMS)


def is_sensitive_value(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    text = value.strip()
    return "-----BEGIN" in text or _SECRET_VALUE_RE.match(text) is not None


def redact_value(key: str | None, value: Any) -> Any:
    """Redact ``value`` while keeping safe primitives intact.

    The result is deterministic and JSON-serializable, and numbers keep
    their type so thresholds can still compare them. Values that are not
    JSON become a ``<type>`` placeholder.
    """
    if key is not None and is_sensitive_key(key):
        return REDACTED
    if value is None or isinstance(value, (bool, int, float, Decimal)):
        return value
    if isinstance(value, str):
        return REDACTED if is_sensitive_value(value) else value
    if isinstance(value, Enum):
        return redact_value(key, value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [redact_value(None, item) for item in value]
    if isinstance(value, Mapping) and all(isinstance(k, str) for k in value):
        return redact_mapping(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<bytes:{len(value)}>"
    return f"<{type(value).__name__}>"


def redact_mapping(values: Mapping[str, Any]) -> dict[str, Any]:
    return {k: redact_value(k, v) for k, v in values.items()}
