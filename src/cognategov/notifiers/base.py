"""Notifier interface for approval requests."""

from __future__ import annotations

from typing import Protocol

from ..approvals.models import ApprovalNotice, NoticeKind


class Notifier(Protocol):
    """Protocol for notification implementations."""

    def notify(self, notice: ApprovalNotice) -> None:
        """Deliver ``notice`` to its recipients."""
        ...


class FanoutNotifier:
    """Delivers every notice to each wrapped notifier in order."""

    def __init__(self, *notifiers: Notifier) -> None:
        self.notifiers = list(notifiers)

    def notify(self, notice: ApprovalNotice) -> None:
        for notifier in self.notifiers:
            notifier.notify(notice)


__all__ = ("ApprovalNotice", "FanoutNotifier", "NoticeKind", "Notifier")
