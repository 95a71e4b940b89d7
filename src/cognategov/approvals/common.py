"""Shared approval constants, expiry computation and status checks."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from ..errors import StateTransitionError
from ..policies.models import Approver
from .models import ApprovalRequest, ApprovalStatus

SECONDS_PER_MINUTE = 60


def lowest_timeout_minutes(approvers: Iterable[Approver]) -> int | None:
    """Return the smallest configured approver timeout, or None when none is set."""
    timeouts = [approver.timeout_minutes for approver in approvers if approver.timeout_minutes]
    return min(timeouts) if timeouts else None


def expiry_for(
    approvers: Iterable[Approver],
    *,
    created_at: datetime,
    opened_mono: float,
    max_ttl_seconds: float | None = None,
) -> tuple[datetime | None, float | None]:
    """Return ``(expires_at, expires_mono)`` for a new request.

    The expiry follows the lowest approver timeout. ``max_ttl_seconds`` caps
    it when given; with no timeouts and no cap the request never expires.
    """
    minutes = lowest_timeout_minutes(approvers)
    ttl: float | None = minutes * SECONDS_PER_MINUTE if minutes is not None else None
    if max_ttl_seconds is not None:
        ttl = max_ttl_seconds if ttl is None else min(ttl, max_ttl_seconds)
    if ttl is None:
        return None, None
    return created_at + timedelta(seconds=ttl), opened_mono + ttl


def require_status(request: ApprovalRequest, attempted: str, *allowed: ApprovalStatus) -> None:
    """Raise :class:`StateTransitionError` unless ``request`` is in one of ``allowed``."""
    if request.status not in allowed:
        raise StateTransitionError(request.id, request.status.value, attempted)
