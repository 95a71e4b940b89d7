"""Notifiers package - delivering approval notices."""

from .base import ApprovalNotice, FanoutNotifier, NoticeKind, Notifier
from .console import ConsoleNotifier
from .inbox import InboxItem, InboxNotifier, InboxPriority, inbox_priority

__all__ = [
    "ApprovalNotice",
    "ConsoleNotifier",
    "FanoutNotifier",
    "InboxItem",
    "InboxNotifier",
    "InboxPriority",
    "NoticeKind",
    "Notifier",
    "inbox_priority",
]
