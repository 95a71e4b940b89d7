"""Threshold comparison for policy metrics."""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Mapping

from ..errors import ConfigurationError
from .models import Threshold

THRESHOLD_OPERATORS: frozenset[str] = frozenset({"lt", "lte", "gt", "gte", "eq", "neq", "between"})


def compare(operator: str, actual: float, value: float | None, value_to: float | None = None) -> bool:
    """Compare ``actual`` against the threshold operands.

    ``between`` is inclusive at both ends and needs both bounds. Unknown
    operators and missing operands raise :class:`ConfigurationError`.
    """
    if operator not in THRESHOLD_OPERATORS:
        raise ConfigurationError(f"unknown threshold operator: {operator!r}")
    if value is None:
        raise ConfigurationError(f"threshold operator {operator!r} requires a value")
    if operator == "between":
        if value_to is None:
            raise ConfigurationError("threshold operator 'between' requires both value and valueTo")
        low, high = min(value, value_to), max(value, value_to)
        return low <= actual <= high
    if operator == "lt":
        return actual < value
    if operator == "lte":
        return actual <= value
    if operator == "gt":
        return actual > value
    if operator == "gte":
        return actual >= value
    if operator == "eq":
        return actual == value
    return actual != value


def metric_value(metric: str, *sources: Mapping[str, Any]) -> float | None:
    """Return the first numeric reading of ``metric`` across ``sources``, else None."""
    for source in sources:
        if metric not in source:
            continue
        return _as_number(source[metric])
    return None


def check_threshold(threshold: Threshold, *sources: Mapping[str, Any]) -> bool:
    """Return True when the metric is present and breaches ``threshold``.

    A metric that has no reading does not breach anything.
    """
    if not threshold.metric.strip():
        raise ConfigurationError("threshold metric must be a non-empty string")
    actual = metric_value(threshold.metric, *sources)
    if actual is None:
        return False
    return compare(threshold.operator, actual, threshold.value, threshold.value_to)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number
