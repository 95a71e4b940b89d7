"""Predicates over an action's context for condition triggers and auto-approval.

Two predicate forms are accepted:

* structured: ``{"field": "data.contains_pii", "operator": "equals", "value": true}``,
  or ``{"all": [...]}`` / ``{"any": [...]}`` of those;
* a small expression language, for policies authored as text::

      threat_score >= 0.8 OR anomaly_score >= 0.9
      data.classification IN (financial, confidential) AND recipient.type = external
      recipient.domain NOT IN approved_domains

  ``AND`` binds tighter than ``OR``. A bare word on the right-hand side is
  looked up in the context and falls back to its own text, except directly
  after ``IN``, where it names a collection in the context; a collection
  the context lacks has no members, so ``x NOT IN missing`` holds.

Anything that cannot be understood raises :class:`ConfigurationError`.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Callable, Mapping

from ..errors import ConfigurationError

Predicate = Callable[[Mapping[str, Any]], bool]

_MISSING = object()

_OPERATOR_ALIASES: dict[str, str] = {
    "equals": "eq",
    "eq": "eq",
    "==": "eq",
    "=": "eq",
    "not_equals": "neq",
    "neq": "neq",
    "!=": "neq",
    "greater_than": "gt",
    "gt": "gt",
    ">": "gt",
    "gte": "gte",
    ">=": "gte",
    "less_than": "lt",
    "lt": "lt",
    "<": "lt",
    "lte": "lte",
    "<=": "lte",
    "contains": "contains",
    "not_contains": "not_contains",
    "matches": "matches",
    "exists": "exists",
    "not_exists": "not_exists",
    "in": "in",
    "not_in": "not_in",
}


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted ``path`` through nested mappings; return ``_MISSING`` if absent."""
    if path in context:
        return context[path]
    current: Any = context
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def apply_operator(operator: str, actual: Any, expected: Any) -> bool:
    canonical = _OPERATOR_ALIASES.get(operator)
    if canonical is None:
        raise ConfigurationError(f"unknown condition operator: {operator!r}")
    if canonical == "exists":
        return actual is not _MISSING and actual is not None
    if canonical == "not_exists":
        return actual is _MISSING or actual is None
    if actual is _MISSING:
        return False
    if canonical == "eq":
        return _loose_equal(actual, expected)
    if canonical == "neq":
        return not _loose_equal(actual, expected)
    if canonical in ("gt", "gte", "lt", "lte"):
        left, right = _number(actual), _number(expected)
        if left is None or right is None:
            return False
        if canonical == "gt":
            return left > right
        if canonical == "gte":
            return left >= right
        if canonical == "lt":
            return left < right
        return left <= right
    if canonical in ("contains", "not_contains"):
        found = _contains(actual, expected)
        return found if canonical == "contains" else not found
    if canonical == "matches":
        try:
            return re.search(str(expected), str(actual)) is not None
        except re.error as exc:
            raise ConfigurationError(f"invalid pattern {expected!r}: {exc}") from exc
    members = _collection(expected)
    found = any(_loose_equal(actual, member) for member in members)
    return found if canonical == "in" else not found


def structured_predicate(condition: Mapping[str, Any]) -> Predicate:
    """Build a predicate from a structured mapping."""
    if "all" in condition or "any" in condition:
        key = "all" if "all" in condition else "any"
        children = condition[key]
        if not isinstance(children, list):
            raise ConfigurationError(f"'{key}' must be a list of predicates")
        parts = [structured_predicate(child) for child in children]
        if key == "all":
            return lambda context: all(part(context) for part in parts)
        return lambda context: any(part(context) for part in parts)

    field = condition.get("field")
    if not isinstance(field, str) or not field.strip():
        raise ConfigurationError("condition predicate requires a 'field'")
    operator = str(condition.get("operator", "equals"))
    if operator not in _OPERATOR_ALIASES:
        raise ConfigurationError(f"unknown condition operator: {operator!r}")
    expected = condition.get("value")
    return lambda context: apply_operator(operator, resolve_path(context, field), expected)


def predicate_from_config(config: Mapping[str, Any]) -> Predicate:
    """Build the predicate of a condition trigger's config."""
    if "condition" in config or "expression" in config:
        text = config.get("condition", config.get("expression"))
        if not isinstance(text, str):
            raise ConfigurationError("condition expression must be a string")
        return compile_expression(text)
    return structured_predicate(config)


def matches_auto_approve(condition: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
    """Return True when every key of ``condition`` agrees with ``context``.

    A list value means "any of these". Nested ``field``/``operator`` or
    ``all``/``any`` mappings are evaluated as structured predicates.
    """
    if not condition:
        return False
    if "field" in condition or "all" in condition or "any" in condition:
        return structured_predicate(condition)(context)
    for key, expected in condition.items():
        actual = resolve_path(context, key)
        if actual is _MISSING:
            return False
        if isinstance(expected, list):
            if not any(_loose_equal(actual, member) for member in expected):
                return False
        elif not _loose_equal(actual, expected):
            return False
    return True


# ---------------------------------------------------------------------------
# Expression language
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<lparen>\() | (?P<rparen>\)) | (?P<comma>,) |
        (?P<op>>=|<=|!=|==|=|>|<) |
        (?P<string>"[^"]*"|'[^']*') |
        (?P<number>-?\d+(?:\.\d+)?(?![\w.])) |
        (?P<word>[A-Za-z_][\w.\-@]*)
    )""",
    re.VERBOSE,
)

_KEYWORDS = {"AND", "OR", "NOT", "IN", "CONTAINS", "MATCHES", "EXISTS"}


class _Ref:
    """A bare word: a context reference that falls back to its own text."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def value(self, context: Mapping[str, Any]) -> Any:
        lowered = self.name.lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        if lowered in ("null", "none"):
            return None
        resolved = resolve_path(context, self.name)
        if resolved is not _MISSING:
            return resolved
        return self.name

    def members(self, context: Mapping[str, Any]) -> Any:
        """Resolve the collection named after ``IN``; an absent one has no members."""
        resolved = resolve_path(context, self.name)
        return [] if resolved is _MISSING else resolved


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    position = 0
    stripped = text.rstrip()
    while position < len(stripped):
        match = _TOKEN_RE.match(stripped, position)
        if match is None or match.end() == position:
            raise ConfigurationError(f"cannot parse condition expression {text!r} at offset {position}")
        kind = match.lastgroup or ""
        token = match.group(kind)
        if kind == "word" and token.upper() in _KEYWORDS:
            kind, token = "keyword", token.upper()
        tokens.append((kind, token))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.index = 0

    def parse(self) -> Predicate:
        if not self.tokens:
            raise ConfigurationError("condition expression is empty")
        predicate = self._or()
        if self.index != len(self.tokens):
            self._fail(f"unexpected token {self.tokens[self.index][1]!r}")
        return predicate

    def _fail(self, message: str) -> None:
        raise ConfigurationError(f"cannot parse condition expression {self.text!r}: {message}")

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _take(self) -> tuple[str, str]:
        token = self._peek()
        if token is None:
            self._fail("unexpected end of expression")
        self.index += 1
        return token  # type: ignore[return-value]

    def _accept(self, kind: str, value: str | None = None) -> bool:
        token = self._peek()
        if token is not None and token[0] == kind and (value is None or token[1] == value):
            self.index += 1
            return True
        return False

    def _or(self) -> Predicate:
        parts = [self._and()]
        while self._accept("keyword", "OR"):
            parts.append(self._and())
        if len(parts) == 1:
            return parts[0]
        return lambda context: any(part(context) for part in parts)

    def _and(self) -> Predicate:
        parts = [self._clause()]
        while self._accept("keyword", "AND"):
            parts.append(self._clause())
        if len(parts) == 1:
            return parts[0]
        return lambda context: all(part(context) for part in parts)

    def _clause(self) -> Predicate:
        if self._accept("lparen"):
            inner = self._or()
            if not self._accept("rparen"):
                self._fail("missing ')'")
            return inner

        kind, field = self._take()
        if kind != "word":
            self._fail(f"expected a field name, got {field!r}")

        negate = self._accept("keyword", "NOT")
        kind, token = self._take()
        if kind == "keyword" and token == "IN":
            operator = "not_in" if negate else "in"
            if self._accept("lparen"):
                members = self._list()
                return lambda context: apply_operator(
                    operator,
                    resolve_path(context, field),
                    [_literal(member, context) for member in members],
                )
            kind, name = self._take()
            if kind != "word":
                self._fail("IN expects a list or a collection name")
            ref = _Ref(name)
            return lambda context: apply_operator(operator, resolve_path(context, field), ref.members(context))
        if kind == "keyword" and token in ("CONTAINS", "MATCHES"):
            operator = token.lower()
            if negate and operator == "contains":
                operator = "not_contains"
            elif negate:
                self._fail("NOT MATCHES is not supported")
            operand = self._operand()
            return lambda context: apply_operator(operator, resolve_path(context, field), _literal(operand, context))
        if kind == "keyword" and token == "EXISTS":
            operator = "not_exists" if negate else "exists"
            return lambda context: apply_operator(operator, resolve_path(context, field), None)
        if negate or kind != "op":
            self._fail(f"expected a comparison after {field!r}")
        operand = self._operand()
        return lambda context: apply_operator(token, resolve_path(context, field), _literal(operand, context))

    def _operand(self) -> Any:
        kind, token = self._take()
        if kind == "string":
            return token[1:-1]
        if kind == "number":
            return float(token) if "." in token else int(token)
        if kind == "word":
            return _Ref(token)
        self._fail(f"expected a value, got {token!r}")
        return None

    def _list(self) -> list[Any]:
        members = [self._operand()]
        while self._accept("comma"):
            members.append(self._operand())
        if not self._accept("rparen"):
            self._fail("missing ')' after list")
        return members


@lru_cache(maxsize=256)
def compile_expression(text: str) -> Predicate:
    """Parse a condition expression into a predicate over a context mapping."""
    return _Parser(text).parse()


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _literal(operand: Any, context: Mapping[str, Any]) -> Any:
    if isinstance(operand, _Ref):
        return operand.value(context)
    return operand


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _loose_equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        if isinstance(actual, str):
            return actual.strip().lower() == str(expected).lower()
        if isinstance(expected, str):
            return str(actual).lower() == expected.strip().lower()
        return actual == expected
    left, right = _number(actual), _number(expected)
    if left is not None and right is not None:
        return left == right
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, (list, tuple, set, frozenset)):
        return any(_loose_equal(member, expected) for member in actual)
    if isinstance(actual, Mapping):
        return expected in actual
    return False


def _collection(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    if value is None:
        return []
    return [value]
