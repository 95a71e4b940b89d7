from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest


class FakeClock:
    """Wall clock and monotonic clock that only move when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)
        self._mono = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)
        self._mono += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def approval_policy(**overrides: Any) -> dict[str, Any]:
    """A policy document that requires approval for ``send_email`` actions."""
    data: dict[str, Any] = {
        "id": "pol-email",
        "name": "Outbound email",
        "riskLevel": "medium",
        "triggers": [{"type": "action", "config": {"actionTypes": ["send_email"]}}],
        "approvalRequired": True,
        "approvers": [{"type": "user", "id": "alice"}],
    }
    data.update(overrides)
    return data


def block_policy(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": "pol-delete",
        "name": "No deletes",
        "riskLevel": "critical",
        "triggers": [{"type": "action", "config": {"actionTypes": ["delete_records"]}}],
        "approvalRequired": False,
        "block": True,
    }
    data.update(overrides)
    return data
