"""Background escalation timers and async waiting on approval decisions.

One asyncio task per pending request sleeps until the request's next
deadline (escalation level, approver fallback or expiry) and then asks the
workflow to advance it. Tasks are cancelled as soon as the request leaves
``pending``; a timer that still fires afterwards is ignored by the workflow.

Usage:
    scheduler = EscalationScheduler(workflow, poll_seconds=1.0)
    request = workflow.open_approval(decision)
    scheduler.schedule(request.id)      # inside a running event loop
    ...
    await scheduler.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..errors import ApprovalTimeoutError, GovernanceError
from .models import ApprovalEvent, ApprovalRequest
from .workflow import ApprovalWorkflow

_logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class EscalationScheduler:
    """Runs cancellable escalation timers keyed by request id."""

    def __init__(
        self,
        workflow: ApprovalWorkflow,
        *,
        poll_seconds: float = 1.0,
        auto_reconcile: bool = False,
        sleep: Sleep | None = None,
    ) -> None:
        if poll_seconds <= 0:
            raise ValueError("poll_seconds must be positive")
        self.workflow = workflow
        self.poll_seconds = poll_seconds
        self.auto_reconcile = auto_reconcile
        self._sleep = sleep or asyncio.sleep
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        workflow.add_listener(self._on_event)

    def schedule(self, request_id: str) -> asyncio.Task[None]:
        """Start the timer for ``request_id``. Must be called from a running loop."""
        existing = self._tasks.get(request_id)
        if existing is not None and not existing.done():
            return existing
        self._loop = asyncio.get_running_loop()
        task = self._loop.create_task(self._run(request_id), name=f"escalation:{request_id}")
        self._tasks[request_id] = task
        return task

    def cancel(self, request_id: str) -> bool:
        task = self._tasks.pop(request_id, None)
        if task is None or task.done():
            return False
        loop = self._loop
        if loop is not None and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                task.cancel()
            else:
                loop.call_soon_threadsafe(task.cancel)
        _logger.debug("escalation timer for %s cancelled", request_id)
        return True

    def active(self) -> list[str]:
        return [request_id for request_id, task in self._tasks.items() if not task.done()]

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _on_event(self, event: ApprovalEvent) -> None:
        if event.request.status.is_terminal:
            self.cancel(event.request.id)

    async def _run(self, request_id: str) -> None:
        workflow = self.workflow
        try:
            while True:
                deadline = workflow.next_deadline(request_id)
                if deadline is None:
                    if self.auto_reconcile:
                        workflow.reconcile_request(request_id)
                    return
                delay = deadline - workflow.monotonic()
                if delay > 0:
                    await self._sleep(min(delay, self.poll_seconds))
                    continue
                try:
                    workflow.advance_request(request_id)
                    if self.auto_reconcile:
                        workflow.reconcile_request(request_id)
                except GovernanceError:
                    _logger.exception("escalation of %s failed", request_id)
                    raise
                if not workflow.get(request_id).is_pending:
                    return
        finally:
            current = self._tasks.get(request_id)
            if current is not None and current is asyncio.current_task():
                del self._tasks[request_id]


async def wait_for_resolution(
    workflow: ApprovalWorkflow,
    request_id: str,
    *,
    poll_interval: float = 1.0,
    timeout: float = 300.0,
    sleep: Sleep | None = None,
) -> ApprovalRequest:
    """Wait, without holding a thread, until ``request_id`` is decided or expired.

    Returns the request snapshot at that point; check it with
    :meth:`ApprovalWorkflow.effective_status`. Raises
    :class:`ApprovalTimeoutError` after ``timeout`` seconds.
    """
    sleep = sleep or asyncio.sleep
    deadline = workflow.monotonic() + timeout
    while True:
        request = workflow.get(request_id)
        if not request.is_pending or workflow.is_expired(request):
            return request
        if workflow.monotonic() >= deadline:
            raise ApprovalTimeoutError(f"approval wait exceeded {timeout}s for request {request_id}")
        await sleep(poll_interval)
