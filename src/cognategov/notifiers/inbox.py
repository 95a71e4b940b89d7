"""In-memory approver inbox."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Callable
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from ..errors import NotFoundError
from ..types import RiskLevel
from .base import ApprovalNotice


class InboxPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"


def inbox_priority(risk: RiskLevel) -> InboxPriority:
    if risk is RiskLevel.CRITICAL:
        return InboxPriority.URGENT
    if risk is RiskLevel.HIGH:
        return InboxPriority.HIGH
    return InboxPriority.NORMAL


class InboxItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    recipient_id: str
    request_id: str
    kind: str
    title: str
    message: str
    priority: InboxPriority
    created_at: datetime
    read: bool = False


class InboxNotifier:
    """Keeps one inbox item per recipient per notice."""

    def __init__(self, *, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._items: list[InboxItem] = []

    def notify(self, notice: ApprovalNotice) -> None:
        request = notice.request
        title = f"Approval {notice.kind.value}: {request.subject or request.action_type or request.id}"
        created_at = self._now()
        with self._lock:
            for recipient in notice.recipients:
                self._items.append(
                    InboxItem(
                        id=str(uuid4()),
                        recipient_id=recipient.id,
                        request_id=request.id,
                        kind=notice.kind.value,
                        title=title,
                        message=notice.message,
                        priority=inbox_priority(request.risk_level),
                        created_at=created_at,
                    )
                )

    def items(self, recipient_id: str | None = None) -> list[InboxItem]:
        with self._lock:
            if recipient_id is None:
                return list(self._items)
            return [item for item in self._items if item.recipient_id == recipient_id]

    def unread(self, recipient_id: str) -> list[InboxItem]:
        return [item for item in self.items(recipient_id) if not item.read]

    def mark_read(self, item_id: str) -> InboxItem:
        with self._lock:
            for index, item in enumerate(self._items):
                if item.id == item_id:
                    updated = item.model_copy(update={"read": True})
                    self._items[index] = updated
                    return updated
        raise NotFoundError(f"inbox item not found: {item_id}")
