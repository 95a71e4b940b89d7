"""Governance engine: policy evaluation, approvals and the ledger wired together.

The engine is the surface an agent runtime talks to:

    engine = GovernanceEngine.from_config(GovernanceConfig(), policies=store)
    submission = engine.submit(ProposedAction(type="send_email", cognate_id="cog-1"))
    if submission.may_execute:
        ...run the action...
        engine.report_outcome(RunOutcome(action_id=submission.action.id, status="completed"))

Approval lifecycle changes reach the ledger through a workflow recorder, so
approvals, escalations and expiries made directly on the workflow are
recorded too. The entry is written before the new request status is stored;
a failed write leaves the request as it was.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ConfigDict

from .approvals.escalation import EscalationScheduler
from .approvals.models import ApprovalEvent, ApprovalEventKind, ApprovalRequest, BatchResult
from .approvals.workflow import SYSTEM_ACTOR, ApprovalWorkflow
from .config import GovernanceConfig
from .errors import IntegrityError, NotFoundError, StateTransitionError
from .ledger.ledger import Ledger
from .ledger.models import (
    ActorType,
    EntryDraft,
    EventType,
    LedgerEntry,
    Severity,
    TriggerRef,
    Where,
    Who,
)
from .ledger.signing import load_private_key_file, load_public_key_file
from .ledger.storage import JSONLLedgerStorage, LedgerStorage, MemoryLedgerStorage
from .notifiers.base import Notifier
from .policies.evaluator import PolicyEvaluator
from .policies.models import Policy, PolicyDecision, ProposedAction
from .policies.store import PolicyStore
from .redaction import redact_mapping, redact_value
from .rules.compiler import compile_rule_set, ensure_valid, lint
from .rules.models import RuleSet
from .types import Decision, RiskLevel

_logger = logging.getLogger(__name__)

_APPROVAL_EVENT_TYPES: dict[ApprovalEventKind, EventType] = {
    ApprovalEventKind.REQUESTED: EventType.APPROVAL_REQUESTED,
    ApprovalEventKind.APPROVED: EventType.APPROVAL_GRANTED,
    ApprovalEventKind.REJECTED: EventType.APPROVAL_REJECTED,
    ApprovalEventKind.MODIFIED: EventType.APPROVAL_MODIFIED,
    ApprovalEventKind.RERUN: EventType.RUN_RERUN_REQUESTED,
    ApprovalEventKind.ESCALATED: EventType.APPROVAL_ESCALATED,
    ApprovalEventKind.FALLBACK: EventType.APPROVAL_ESCALATED,
    ApprovalEventKind.EXPIRED: EventType.APPROVAL_EXPIRED,
}

_APPROVAL_SEVERITY: dict[ApprovalEventKind, Severity] = {
    ApprovalEventKind.REQUESTED: Severity.NOTICE,
    ApprovalEventKind.REJECTED: Severity.NOTICE,
    ApprovalEventKind.ESCALATED: Severity.WARNING,
    ApprovalEventKind.FALLBACK: Severity.WARNING,
    ApprovalEventKind.EXPIRED: Severity.WARNING,
}

_APPROVAL_DESCRIPTIONS: dict[ApprovalEventKind, str] = {
    ApprovalEventKind.REQUESTED: "Approval requested",
    ApprovalEventKind.APPROVED: "Approval granted",
    ApprovalEventKind.REJECTED: "Approval rejected",
    ApprovalEventKind.MODIFIED: "Approved with modifications",
    ApprovalEventKind.RERUN: "Rerun requested",
    ApprovalEventKind.ESCALATED: "Approval escalated",
    ApprovalEventKind.FALLBACK: "Approval reassigned to fallback approver",
    ApprovalEventKind.EXPIRED: "Approval expired",
}


class RunStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class RunOutcome(BaseModel):
    """What happened when the runtime executed an allowed or approved action."""

    model_config = ConfigDict(frozen=True)

    action_id: str
    status: RunStatus
    result: Any = None
    duration_ms: int | None = None
    error: str | None = None
    request_id: str | None = None


class Submission(BaseModel):
    """Result of :meth:`GovernanceEngine.submit`."""

    model_config = ConfigDict(frozen=True)

    action: ProposedAction
    decision: PolicyDecision
    request: ApprovalRequest | None = None
    entry: LedgerEntry | None = None

    @property
    def may_execute(self) -> bool:
        return self.decision.allowed


@dataclass(frozen=True)
class _TrackedAction:
    action: ProposedAction
    decision: PolicyDecision
    request_id: str | None = None


class GovernanceEngine:
    """Front door for agent runtimes, approvers and auditors."""

    def __init__(
        self,
        *,
        policies: PolicyStore | Iterable[Policy] | None = None,
        ledger: Ledger | None = None,
        workflow: ApprovalWorkflow | None = None,
        evaluator: PolicyEvaluator | None = None,
        scheduler: EscalationScheduler | None = None,
        redact_context: bool = True,
        max_tracked_actions: int = 10_000,
    ) -> None:
        if policies is None:
            policies = PolicyStore()
        elif not isinstance(policies, PolicyStore):
            policies = PolicyStore(policies)
        self.policies: PolicyStore = policies
        self.ledger = ledger if ledger is not None else Ledger()
        self.workflow = workflow if workflow is not None else ApprovalWorkflow()
        self.evaluator = evaluator if evaluator is not None else PolicyEvaluator()
        self.scheduler = scheduler
        self.redact_context = redact_context
        self.max_tracked_actions = max_tracked_actions
        # Oldest first; bounded by max_tracked_actions.
        self._actions: OrderedDict[str, _TrackedAction] = OrderedDict()
        self._actions_lock = threading.Lock()
        self._halted: IntegrityError | None = None
        self.workflow.add_recorder(self._record_approval_event)
        self.workflow.add_listener(self._forget_closed_request)
        self.ledger.add_integrity_alert(self._halt)

    @classmethod
    def from_config(
        cls,
        config: GovernanceConfig,
        *,
        policies: PolicyStore | Iterable[Policy] | None = None,
        notifier: Notifier | None = None,
        now: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
    ) -> "GovernanceEngine":
        storage: LedgerStorage = (
            JSONLLedgerStorage(config.ledger_path)
            if config.ledger_path is not None
            else MemoryLedgerStorage()
        )
        signing_key = (
            load_private_key_file(config.signing_key_path) if config.signing_key_path else None
        )
        public_key = load_public_key_file(config.public_key_path) if config.public_key_path else None
        ledger = Ledger(
            storage,
            now=now,
            algorithm=config.hash_algorithm,
            signing_key=signing_key,
            public_key=public_key,
            default_page_size=config.default_page_size,
            max_page_size=config.max_page_size,
        )
        workflow = ApprovalWorkflow(
            notifier=notifier,
            now=now,
            monotonic=monotonic,
            max_ttl_seconds=config.approval_max_ttl_seconds,
        )
        scheduler = EscalationScheduler(
            workflow, poll_seconds=config.escalation_poll_seconds, auto_reconcile=True
        )
        return cls(
            policies=policies,
            ledger=ledger,
            workflow=workflow,
            evaluator=PolicyEvaluator(now=now),
            scheduler=scheduler,
            redact_context=config.redact_context,
            max_tracked_actions=config.max_tracked_actions,
        )

    # -- decisioning ------------------------------------------------------

    @property
    def halted(self) -> bool:
        return self._halted is not None

    def submit(self, action: ProposedAction, context: Mapping[str, Any] | None = None) -> Submission:
        """Evaluate ``action`` and act on the decision.

        Deny records ``action_blocked``. Require-approval opens a request,
        which the workflow recorder writes as ``approval_requested``. Allow
        records ``policy_triggered`` when at least one policy hit, so
        non-blocking and auto-approved hits leave their rationale behind.
        Raises :class:`IntegrityError` while decisioning is halted.
        """
        if self._halted is not None:
            raise IntegrityError(
                f"automated decisioning halted: {self._halted.reason}", self._halted.sequence
            )

        decision = self.evaluator.evaluate(action, context, self.policies.active())
        self._track(_TrackedAction(action, decision))

        if decision.effect is Decision.DENY:
            entry = self.ledger.append(
                EntryDraft.for_event(
                    EventType.ACTION_BLOCKED,
                    who=_actor_for(action),
                    description=f"Blocked {action.type}: {decision.reason}",
                    trigger="policy",
                    reasoning=decision.reason,
                    severity=Severity.WARNING,
                    status="blocked",
                    result=self._decision_result(action, decision),
                    where=_where_for(action),
                    trigger_ref=TriggerRef(type="policy", id=decision.policy_id or ""),
                    tags=["policy", f"risk:{_risk(decision.risk_level)}"],
                )
            )
            return Submission(action=action, decision=decision, entry=entry)

        if decision.effect is Decision.REQUIRE_APPROVAL:
            preview = self._context_view(action.context)
            try:
                request = self.workflow.open_approval(
                    decision,
                    subject=action.description or action.type,
                    action_id=action.id,
                    action_type=action.type,
                    preview=preview,
                )
            except Exception:
                self._forget(action.id)
                raise
            self._track(_TrackedAction(action, decision, request.id))
            self._schedule(request.id)
            return Submission(action=action, decision=decision, request=self.workflow.get(request.id))

        if not decision.hits:
            return Submission(action=action, decision=decision)
        auto = [hit for hit in decision.hits if hit.auto_approved]
        governing = auto[0] if auto else decision.hits[0]
        entry = self.ledger.append(
            EntryDraft.for_event(
                EventType.POLICY_TRIGGERED,
                who=_actor_for(action),
                description=f"Auto-approved {action.type}" if auto else f"Allowed {action.type}",
                trigger="policy",
                reasoning=decision.reason,
                status="auto_approved" if auto else "allowed",
                result=self._decision_result(action, decision),
                where=_where_for(action),
                trigger_ref=TriggerRef(type="policy", id=governing.policy_id, name=governing.policy_name),
                tags=["policy", "auto-approved"] if auto else ["policy"],
            )
        )
        return Submission(action=action, decision=decision, entry=entry)

    # -- approvals --------------------------------------------------------

    def approve(self, request_id: str, *, approver_id: str | None = None, reason: str | None = None) -> ApprovalRequest:
        return self.workflow.approve(request_id, approver_id=approver_id, reason=reason)

    def reject(self, request_id: str, reason: str | None = None, *, approver_id: str | None = None) -> ApprovalRequest:
        return self.workflow.reject(request_id, reason, approver_id=approver_id)

    def modify(
        self,
        request_id: str,
        patch: Mapping[str, Any],
        *,
        approver_id: str | None = None,
        reason: str | None = None,
    ) -> ApprovalRequest:
        return self.workflow.modify(request_id, patch, approver_id=approver_id, reason=reason)

    def rerun(self, request_id: str, *, requested_by: str | None = None) -> ApprovalRequest:
        return self.workflow.rerun(request_id, requested_by=requested_by)

    def batch_approve(
        self, request_ids: Iterable[str], *, approver_id: str | None = None, reason: str | None = None
    ) -> BatchResult:
        return self.workflow.batch_approve(request_ids, approver_id=approver_id, reason=reason)

    def pending_approvals(self) -> list[ApprovalRequest]:
        return self.workflow.pending()

    def advance(self) -> int:
        """Apply due escalations and fallbacks. Returns the number of changes."""
        return len(self.workflow.advance())

    def reconcile_expired(self) -> list[ApprovalRequest]:
        """Reject expired pending requests; each is recorded as ``approval_expired``."""
        return self.workflow.reconcile_expired()

    # -- outcomes and rules ----------------------------------------------

    def report_outcome(self, outcome: RunOutcome) -> LedgerEntry:
        """Record the result of executing an action.

        The action must have been submitted here and either allowed, or
        approved through its own request (approved or modified, and not
        expired). Raises :class:`NotFoundError` for an unknown action and
        :class:`StateTransitionError` for one that may not run.
        """
        with self._actions_lock:
            tracked = self._actions.get(outcome.action_id)
        if tracked is None:
            raise NotFoundError(f"unknown action: {outcome.action_id}")
        request_id = self._executable_request(tracked, outcome.request_id)

        action = tracked.action
        completed = outcome.status is RunStatus.COMPLETED
        description = f"Completed {action.type}" if completed else f"Failed {action.type}: {outcome.error or 'unknown error'}"
        entry = self.ledger.append(
            EntryDraft.for_event(
                EventType.RUN_COMPLETED if completed else EventType.RUN_FAILED,
                who=_actor_for(action),
                description=description,
                trigger="approval" if request_id else "policy",
                reasoning=outcome.error or "",
                severity=Severity.INFO if completed else Severity.ERROR,
                status=outcome.status.value,
                result=redact_value("result", outcome.result) if self.redact_context else outcome.result,
                duration_ms=outcome.duration_ms,
                where=_where_for(action),
                trigger_ref=TriggerRef(type="approval", id=request_id) if request_id else None,
                tags=["run"],
            )
        )
        # An approved request can still be rerun, so its action stays known.
        if completed and request_id is None:
            self._forget(action.id)
        return entry

    def compile_rule_set(self, rule_set: RuleSet, *, author_id: str | None = None) -> str:
        """Validate and compile ``rule_set``; records ``rule_set_compiled``.

        Raises :class:`ValidationError` with per-field issues when invalid.
        """
        ensure_valid(rule_set)
        script = compile_rule_set(rule_set)
        warnings = lint(rule_set)
        self.ledger.append(
            EntryDraft.for_event(
                EventType.RULE_SET_COMPILED,
                who=Who(type=ActorType.USER, id=author_id) if author_id else _SYSTEM,
                description=f"Compiled rule-set {rule_set.name} v{rule_set.version}",
                trigger="manual",
                reasoning="; ".join(warnings),
                status="compiled",
                result={
                    "ruleSetId": rule_set.id,
                    "version": rule_set.version,
                    "enabledRules": len(rule_set.enabled_rules()),
                    "scriptHash": "sha256:" + hashlib.sha256(script.encode("utf-8")).hexdigest(),
                    "warnings": warnings,
                },
                trigger_ref=TriggerRef(type="rule_set", id=rule_set.id or rule_set.name, name=rule_set.name),
                tags=["rules", *rule_set.tags],
            )
        )
        return script

    # -- integrity --------------------------------------------------------

    def verify_ledger(self) -> int:
        """Verify the ledger chain. A failure halts :meth:`submit` until :meth:`resume`."""
        return self.ledger.verify()

    def resume(self, *, force: bool = False) -> None:
        """Lift a halt. Re-verifies the ledger first unless ``force`` is set."""
        if not force:
            self.ledger.verify()
        if self._halted is not None:
            _logger.warning("automated decisioning resumed%s", " (forced)" if force else "")
        self._halted = None

    def _halt(self, error: IntegrityError) -> None:
        self._halted = error
        _logger.critical("automated decisioning halted: %s", error)

    # -- internals --------------------------------------------------------

    def _schedule(self, request_id: str) -> None:
        if self.scheduler is None:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            _logger.debug("no running event loop; escalation for %s left to advance()", request_id)
            return
        self.scheduler.schedule(request_id)

    def _track(self, tracked: _TrackedAction) -> None:
        with self._actions_lock:
            self._actions[tracked.action.id] = tracked
            self._actions.move_to_end(tracked.action.id)
            while len(self._actions) > self.max_tracked_actions:
                evicted, _ = self._actions.popitem(last=False)
                _logger.debug("forgetting action %s: tracking limit reached", evicted)

    def _forget(self, action_id: str) -> None:
        with self._actions_lock:
            self._actions.pop(action_id, None)

    def _executable_request(self, tracked: _TrackedAction, claimed: str | None) -> str | None:
        """Return the request that lets ``tracked`` run, or None if it was allowed outright."""
        action_id = tracked.action.id
        if claimed is not None and claimed != tracked.request_id:
            raise StateTransitionError(
                claimed, "not linked to this action", f"report an outcome of action {action_id} via"
            )
        effect = tracked.decision.effect
        if effect is Decision.ALLOW:
            return None
        if effect is Decision.DENY or tracked.request_id is None:
            status = "denied" if effect is Decision.DENY else "awaiting approval"
            raise StateTransitionError(action_id, status, "report an outcome for", subject="action")
        status = self.workflow.effective_status(tracked.request_id)
        if not status.is_executable:
            raise StateTransitionError(tracked.request_id, status.value, "report an outcome for")
        return tracked.request_id

    def _forget_closed_request(self, event: ApprovalEvent) -> None:
        if event.kind in (ApprovalEventKind.REJECTED, ApprovalEventKind.EXPIRED) and event.request.action_id:
            self._forget(event.request.action_id)

    def _context_view(self, context: Mapping[str, Any]) -> dict[str, Any]:
        return redact_mapping(context) if self.redact_context else dict(context)

    def _decision_result(self, action: ProposedAction, decision: PolicyDecision) -> dict[str, Any]:
        return {
            "actionId": action.id,
            "actionType": action.type,
            "effect": decision.effect.value,
            "policyId": decision.policy_id,
            "riskLevel": _risk(decision.risk_level),
            "hits": [hit.policy_id for hit in decision.hits],
            "diagnostics": list(decision.diagnostics),
            "context": self._context_view(action.context),
        }

    def _record_approval_event(self, event: ApprovalEvent) -> None:
        request = event.request
        with self._actions_lock:
            tracked = self._actions.get(request.action_id) if request.action_id else None
        action = tracked.action if tracked is not None else None

        if event.kind is ApprovalEventKind.REQUESTED:
            who = _actor_for(action)
        elif event.actor_id and event.actor_id != SYSTEM_ACTOR:
            who = Who(type=ActorType.USER, id=event.actor_id)
        else:
            who = _SYSTEM

        result = request.summary()
        if event.kind is ApprovalEventKind.MODIFIED and request.patch is not None:
            result["patch"] = self._context_view(request.patch)
        if event.detail.get("level") is not None:
            result["escalationLevel"] = event.detail["level"]
        if event.kind is ApprovalEventKind.FALLBACK:
            result["fallback"] = {"from": event.detail.get("from"), "to": event.detail.get("to")}

        reason = event.detail.get("reason") or request.resolution_reason or ""
        subject = request.subject or request.action_type or request.id
        self.ledger.append(
            EntryDraft.for_event(
                _APPROVAL_EVENT_TYPES[event.kind],
                who=who,
                description=f"{_APPROVAL_DESCRIPTIONS[event.kind]}: {subject}",
                trigger="policy" if event.kind is ApprovalEventKind.REQUESTED else "approval",
                reasoning=str(reason),
                severity=_APPROVAL_SEVERITY.get(event.kind, Severity.INFO),
                status=request.status.value,
                result=result,
                where=_where_for(action) if action else None,
                trigger_ref=TriggerRef(type="policy", id=request.policy_id),
                when=event.at,
                tags=["approval", f"risk:{request.risk_level.value}"],
            )
        )


_SYSTEM = Who(type=ActorType.SYSTEM, id=SYSTEM_ACTOR, name="Governance engine")


def _actor_for(action: ProposedAction | None) -> Who:
    if action is None:
        return _SYSTEM
    if action.cognate_id:
        return Who(type=ActorType.COGNATE, id=action.cognate_id, name=action.cognate_name)
    if action.automation_id:
        return Who(type=ActorType.AUTOMATION, id=action.automation_id)
    if action.integration_id:
        return Who(type=ActorType.INTEGRATION, id=action.integration_id)
    if action.user_id:
        return Who(type=ActorType.USER, id=action.user_id)
    return _SYSTEM


def _where_for(action: ProposedAction) -> Where:
    return Where(
        space_id=action.space_id,
        space_name=action.space_name,
        project_id=action.project_id,
        project_name=action.project_name,
    )


def _risk(level: RiskLevel | None) -> str | None:
    return level.value if level is not None else None
