"""Approval lifecycle: open, approve, reject, modify, rerun, escalate, expire.

Every transition on a request runs under that request's lock and checks the
current status first, so of two racing transitions exactly one wins and the
other raises :class:`StateTransitionError`. Requests are immutable snapshots;
each transition stores a new snapshot with ``version`` incremented.

Recorders receive each :class:`ApprovalEvent` under the request's lock before
the new snapshot is stored; if one raises, the request is left unchanged.
Listeners receive the event after the snapshot is stored.
Time-based work (escalation, approver fallback, expiry) is measured on the
injected monotonic clock.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from ..errors import NotFoundError, StateTransitionError, ValidationError
from ..policies.models import Approver, EscalationLevel, PolicyDecision
from ..types import Decision, RiskLevel
from .common import SECONDS_PER_MINUTE, expiry_for, require_status
from .models import (
    EXPIRED_REASON,
    ApprovalEvent,
    ApprovalNotice,
    ApprovalEventKind,
    ApprovalRequest,
    ApprovalStatus,
    Assignment,
    BatchItem,
    BatchResult,
    NoticeKind,
)

if TYPE_CHECKING:
    from ..notifiers.base import Notifier

_logger = logging.getLogger(__name__)

Listener = Callable[[ApprovalEvent], None]

SYSTEM_ACTOR = "system"


class ApprovalWorkflow:
    """Owns the approval request table and every transition on it."""

    def __init__(
        self,
        *,
        notifier: Notifier | None = None,
        now: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
        max_ttl_seconds: float | None = None,
    ) -> None:
        self.notifier = notifier
        self.max_ttl_seconds = max_ttl_seconds
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._monotonic = monotonic or time.monotonic
        self._requests: dict[str, ApprovalRequest] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._listeners: list[Listener] = []
        self._recorders: list[Listener] = []

    # ------------------------------------------------------------------
    # listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def add_recorder(self, recorder: Listener) -> None:
        """Register a callback that must succeed for a transition to take effect.

        Recorders run in transition order, under the request's lock and before
        the new snapshot is stored. An exception from a recorder leaves the
        request unchanged and propagates to the caller.
        """
        self._recorders.append(recorder)

    def remove_recorder(self, recorder: Listener) -> None:
        self._recorders.remove(recorder)

    def monotonic(self) -> float:
        return self._monotonic()

    # ------------------------------------------------------------------
    # creation and lookup
    # ------------------------------------------------------------------

    def open_approval(
        self,
        decision: PolicyDecision,
        approvers: Iterable[Approver] | None = None,
        *,
        subject: str = "",
        action_id: str | None = None,
        action_type: str | None = None,
        preview: Mapping[str, Any] | None = None,
        escalations: Iterable[EscalationLevel] | None = None,
    ) -> ApprovalRequest:
        """Open a pending request for a require-approval decision.

        ``approvers`` and ``escalations`` default to those of the governing
        policy carried on ``decision``. The request expires after the lowest
        approver timeout, or never when no approver has one.
        """
        if decision.effect is not Decision.REQUIRE_APPROVAL or decision.policy_id is None:
            raise ValidationError(f"cannot open an approval for a {decision.effect.value} decision")
        chosen = list(decision.approvers if approvers is None else approvers)
        levels = sorted(
            decision.escalations if escalations is None else escalations,
            key=lambda level: level.level,
        )
        created_at = self._now()
        opened = self._monotonic()
        expires_at, expires_mono = expiry_for(
            chosen,
            created_at=created_at,
            opened_mono=opened,
            max_ttl_seconds=self.max_ttl_seconds,
        )
        request = ApprovalRequest(
            action_id=action_id,
            action_type=action_type,
            subject=subject,
            preview=dict(preview or {}),
            policy_id=decision.policy_id,
            risk_level=decision.risk_level or RiskLevel.MEDIUM,
            created_at=created_at,
            opened_mono=opened,
            expires_at=expires_at,
            expires_mono=expires_mono,
            assignments=[
                Assignment(approver=approver, assigned_at=created_at, assigned_mono=opened)
                for approver in chosen
            ],
            escalations=levels,
        )
        event = self._event(ApprovalEventKind.REQUESTED, request, None, {"reason": decision.reason})
        self._record([event])
        with self._registry_lock:
            self._requests[request.id] = request
            self._locks[request.id] = threading.Lock()
        _logger.info(
            "approval %s opened for policy %s (risk=%s, approvers=%s)",
            request.id,
            request.policy_id,
            request.risk_level.value,
            ",".join(request.approver_ids) or "-",
        )
        self._publish(event)
        self._notify(NoticeKind.REQUESTED, request, chosen, decision.reason)
        return request

    def get(self, request_id: str) -> ApprovalRequest:
        with self._registry_lock:
            request = self._requests.get(request_id)
        if request is None:
            raise NotFoundError(f"approval request not found: {request_id}")
        return request

    def list_requests(self, status: ApprovalStatus | None = None) -> list[ApprovalRequest]:
        with self._registry_lock:
            requests = list(self._requests.values())
        if status is None:
            return requests
        return [request for request in requests if request.status is status]

    def pending(self) -> list[ApprovalRequest]:
        return self.list_requests(ApprovalStatus.PENDING)

    # ------------------------------------------------------------------
    # human transitions
    # ------------------------------------------------------------------

    def approve(
        self, request_id: str, *, approver_id: str | None = None, reason: str | None = None
    ) -> ApprovalRequest:
        """Move a pending request to approved.

        An approval given after the expiry time is still honoured: an explicit
        decision always beats the implicit expiry.
        """
        updated = self._transition(
            request_id,
            "approve",
            (ApprovalStatus.PENDING,),
            lambda current: {
                "status": ApprovalStatus.APPROVED,
                "decided_by": approver_id,
                "decided_at": self._now(),
                "resolution_reason": reason,
            },
            ApprovalEventKind.APPROVED,
            approver_id,
            lambda updated: {"reason": reason},
        )
        _logger.info("approval %s approved by %s", request_id, approver_id or "-")
        return updated

    def reject(
        self, request_id: str, reason: str | None = None, *, approver_id: str | None = None
    ) -> ApprovalRequest:
        updated = self._transition(
            request_id,
            "reject",
            (ApprovalStatus.PENDING,),
            lambda current: {
                "status": ApprovalStatus.REJECTED,
                "decided_by": approver_id,
                "decided_at": self._now(),
                "resolution_reason": reason,
            },
            ApprovalEventKind.REJECTED,
            approver_id,
            lambda updated: {"reason": reason},
        )
        _logger.info("approval %s rejected by %s: %s", request_id, approver_id or "-", reason or "-")
        return updated

    def modify(
        self,
        request_id: str,
        patch: Mapping[str, Any],
        *,
        approver_id: str | None = None,
        reason: str | None = None,
    ) -> ApprovalRequest:
        """Approve with changes. ``patch`` is merged over the request preview."""
        if not patch:
            raise ValidationError("modify requires a non-empty patch")
        changes = dict(patch)
        updated = self._transition(
            request_id,
            "modify",
            (ApprovalStatus.PENDING,),
            lambda current: {
                "status": ApprovalStatus.MODIFIED,
                "preview": {**current.preview, **changes},
                "patch": changes,
                "decided_by": approver_id,
                "decided_at": self._now(),
                "resolution_reason": reason,
            },
            ApprovalEventKind.MODIFIED,
            approver_id,
            lambda updated: {"patch": changes, "reason": reason},
        )
        _logger.info("approval %s modified by %s (%d field(s))", request_id, approver_id or "-", len(changes))
        return updated

    def rerun(self, request_id: str, *, requested_by: str | None = None) -> ApprovalRequest:
        """Ask the executor to run an approved action again. The status is unchanged."""
        updated = self._transition(
            request_id,
            "rerun",
            (ApprovalStatus.APPROVED,),
            lambda current: {"rerun_count": current.rerun_count + 1},
            ApprovalEventKind.RERUN,
            requested_by,
            lambda updated: {"rerunCount": updated.rerun_count},
        )
        _logger.info("approval %s rerun #%d requested", request_id, updated.rerun_count)
        return updated

    def batch_approve(
        self, request_ids: Iterable[str], *, approver_id: str | None = None, reason: str | None = None
    ) -> BatchResult:
        """Approve each id independently and report every outcome."""
        items: list[BatchItem] = []
        for request_id in request_ids:
            try:
                updated = self.approve(request_id, approver_id=approver_id, reason=reason)
            except StateTransitionError as exc:
                items.append(
                    BatchItem(
                        request_id=request_id,
                        ok=False,
                        status=ApprovalStatus(exc.current_status),
                        error=str(exc),
                    )
                )
            except NotFoundError as exc:
                items.append(BatchItem(request_id=request_id, ok=False, error=str(exc)))
            else:
                items.append(BatchItem(request_id=request_id, ok=True, status=updated.status))
        return BatchResult(items=items)

    # ------------------------------------------------------------------
    # time-based transitions
    # ------------------------------------------------------------------

    def advance(self, now_mono: float | None = None) -> list[ApprovalEvent]:
        """Apply due escalations and approver fallbacks to every pending request."""
        now_mono = self._monotonic() if now_mono is None else now_mono
        events: list[ApprovalEvent] = []
        for request in self.pending():
            events.extend(self.advance_request(request.id, now_mono))
        return events

    def advance_request(self, request_id: str, now_mono: float | None = None) -> list[ApprovalEvent]:
        """Apply due escalations and fallbacks to one request.

        Does nothing once the request has left ``pending``, so a timer that
        fires after a decision cannot change it. Escalation levels only ever
        increase.
        """
        now_mono = self._monotonic() if now_mono is None else now_mono
        with self._lock_for(request_id):
            current = self.get(request_id)
            if not current.is_pending:
                _logger.debug("ignoring timer for %s: status is %s", request_id, current.status.value)
                return []
            now_wall = self._now()
            updated = current
            changes: list[tuple[ApprovalEventKind, list[Approver], dict[str, Any], EscalationLevel | None]] = []

            for level in updated.escalations:
                if level.level <= updated.escalation_level:
                    continue
                if now_mono < updated.opened_mono + level.after_minutes * SECONDS_PER_MINUTE:
                    break
                assignments = [
                    Assignment(approver=approver, assigned_at=now_wall, assigned_mono=now_mono)
                    for approver in level.approvers
                ] or list(updated.assignments)
                updated = updated.model_copy(
                    update={"escalation_level": level.level, "assignments": assignments}
                )
                changes.append(
                    (
                        ApprovalEventKind.ESCALATED,
                        [assignment.approver for assignment in assignments],
                        {"level": level.level, "afterMinutes": level.after_minutes},
                        level,
                    )
                )

            replaced: list[Assignment] = []
            for assignment in updated.assignments:
                if not assignment.fallback_due(now_mono):
                    replaced.append(assignment)
                    continue
                original = assignment.approver
                fallback = Approver(type=original.type, id=original.fallback_id or "")
                replaced.append(
                    Assignment(
                        approver=fallback,
                        assigned_at=now_wall,
                        assigned_mono=now_mono,
                        via_fallback=True,
                        replaced_id=original.id,
                    )
                )
                changes.append(
                    (ApprovalEventKind.FALLBACK, [fallback], {"from": original.id, "to": fallback.id}, None)
                )
            if any(change[0] is ApprovalEventKind.FALLBACK for change in changes):
                updated = updated.model_copy(update={"assignments": replaced})

            if not changes:
                return []
            updated = updated.model_copy(update={"version": current.version + 1})
            events = [self._event(kind, updated, SYSTEM_ACTOR, detail) for kind, _, detail, _ in changes]
            self._record(events)
            self._store(updated)

        for (kind, recipients, detail, level), event in zip(changes, events):
            self._publish(event)
            if kind is ApprovalEventKind.ESCALATED:
                _logger.info("approval %s escalated to level %s", request_id, detail["level"])
                message = (level.notification.message if level and level.notification else None) or (
                    f"Escalated to level {detail['level']} after {detail['afterMinutes']} minute(s)"
                )
                channels = list(level.notification.channels) if level and level.notification else []
                self._notify(NoticeKind.ESCALATED, updated, recipients, message, channels)
            else:
                _logger.info("approval %s fell back from %s to %s", request_id, detail["from"], detail["to"])
                self._notify(
                    NoticeKind.FALLBACK,
                    updated,
                    recipients,
                    f"Approver {detail['from']} did not respond; reassigned to {detail['to']}",
                )
        return events

    def next_deadline(self, request_id: str) -> float | None:
        """Monotonic time of the next escalation, fallback or expiry, if any."""
        request = self.get(request_id)
        if not request.is_pending:
            return None
        deadlines: list[float] = []
        for level in request.escalations:
            if level.level > request.escalation_level:
                deadlines.append(request.opened_mono + level.after_minutes * SECONDS_PER_MINUTE)
                break
        for assignment in request.assignments:
            approver = assignment.approver
            if not assignment.via_fallback and approver.fallback_id and approver.timeout_minutes:
                deadlines.append(assignment.assigned_mono + approver.timeout_minutes * SECONDS_PER_MINUTE)
        if request.expires_mono is not None and request.expires_mono > self._monotonic():
            deadlines.append(request.expires_mono)
        return min(deadlines) if deadlines else None

    def is_expired(self, request: ApprovalRequest | str, now_mono: float | None = None) -> bool:
        if isinstance(request, str):
            request = self.get(request)
        if request.expires_mono is None:
            return False
        now_mono = self._monotonic() if now_mono is None else now_mono
        return now_mono >= request.expires_mono

    def effective_status(self, request: ApprovalRequest | str, now_mono: float | None = None) -> ApprovalStatus:
        """Status for execution purposes: an expired pending request counts as rejected.

        The stored status stays ``pending`` until :meth:`reconcile_expired`
        or an explicit transition.
        """
        if isinstance(request, str):
            request = self.get(request)
        if request.is_pending and self.is_expired(request, now_mono):
            return ApprovalStatus.REJECTED
        return request.status

    def is_executable(self, request: ApprovalRequest | str, now_mono: float | None = None) -> bool:
        return self.effective_status(request, now_mono).is_executable

    def reconcile_request(self, request_id: str, now_mono: float | None = None) -> ApprovalRequest | None:
        """Mark one expired pending request as rejected; return it, or None if not due."""
        now_mono = self._monotonic() if now_mono is None else now_mono
        with self._lock_for(request_id):
            current = self.get(request_id)
            if not current.is_pending or not self.is_expired(current, now_mono):
                return None
            updated = current.model_copy(
                update={
                    "status": ApprovalStatus.REJECTED,
                    "decided_by": SYSTEM_ACTOR,
                    "decided_at": self._now(),
                    "resolution_reason": EXPIRED_REASON,
                    "version": current.version + 1,
                }
            )
            event = self._event(ApprovalEventKind.EXPIRED, updated, SYSTEM_ACTOR, {"reason": EXPIRED_REASON})
            self._record([event])
            self._store(updated)
        _logger.info("approval %s rejected: expired", request_id)
        self._publish(event)
        return updated

    def reconcile_expired(self, now_mono: float | None = None) -> list[ApprovalRequest]:
        """Reject every pending request whose expiry has passed."""
        now_mono = self._monotonic() if now_mono is None else now_mono
        reconciled: list[ApprovalRequest] = []
        for request in self.pending():
            updated = self.reconcile_request(request.id, now_mono)
            if updated is not None:
                reconciled.append(updated)
        return reconciled

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _lock_for(self, request_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(request_id)
        if lock is None:
            raise NotFoundError(f"approval request not found: {request_id}")
        return lock

    def _transition(
        self,
        request_id: str,
        attempted: str,
        allowed: tuple[ApprovalStatus, ...],
        changes: Callable[[ApprovalRequest], dict[str, Any]],
        kind: ApprovalEventKind,
        actor_id: str | None,
        detail: Callable[[ApprovalRequest], dict[str, Any]],
    ) -> ApprovalRequest:
        with self._lock_for(request_id):
            current = self.get(request_id)
            require_status(current, attempted, *allowed)
            update = changes(current)
            update["version"] = current.version + 1
            updated = current.model_copy(update=update)
            event = self._event(kind, updated, actor_id, detail(updated))
            self._record([event])
            self._store(updated)
        self._publish(event)
        return updated

    def _event(
        self,
        kind: ApprovalEventKind,
        request: ApprovalRequest,
        actor_id: str | None,
        detail: dict[str, Any],
    ) -> ApprovalEvent:
        return ApprovalEvent(kind=kind, request=request, at=self._now(), actor_id=actor_id, detail=detail)

    def _record(self, events: list[ApprovalEvent]) -> None:
        for event in events:
            for recorder in list(self._recorders):
                recorder(event)

    def _store(self, request: ApprovalRequest) -> None:
        with self._registry_lock:
            self._requests[request.id] = request

    def _publish(self, event: ApprovalEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _notify(
        self,
        kind: NoticeKind,
        request: ApprovalRequest,
        recipients: list[Approver],
        message: str,
        channels: list[str] | None = None,
    ) -> None:
        if self.notifier is None or not recipients:
            return
        self.notifier.notify(
            ApprovalNotice(
                kind=kind,
                request=request,
                recipients=recipients,
                message=message,
                channels=channels or [],
            )
        )
