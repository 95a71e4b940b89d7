"""Policy evaluation: decide whether a proposed action runs, waits or is blocked.

Evaluation is synchronous and side-effect free apart from logging. A trigger
whose data is malformed is reported in ``PolicyDecision.diagnostics`` and
counts as not matched; the policy's other triggers still decide whether it
hits.

Precedence when several policies hit: deny, then require-approval, then allow.
Within the winning effect the highest risk level governs, and the earliest
policy in evaluation order wins ties.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone
from typing import Any, Callable, Iterable, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError as PydanticValidationError

from ..errors import ConfigurationError
from ..types import Decision
from .conditions import matches_auto_approve, predicate_from_config
from .models import (
    Policy,
    PolicyDecision,
    PolicyHit,
    PolicyTrigger,
    PolicyTriggerType,
    ProposedAction,
    Threshold,
    TriggerLogic,
)
from .thresholds import check_threshold

_logger = logging.getLogger(__name__)

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class _TriggerResult:
    __slots__ = ("matched", "label", "breached")

    def __init__(self, matched: bool, label: str, breached: list[str] | None = None) -> None:
        self.matched = matched
        self.label = label
        self.breached = breached or []


class PolicyEvaluator:
    """Evaluates proposed actions against policies."""

    def __init__(self, *, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or (lambda: datetime.now(timezone.utc))

    def evaluate(
        self,
        action: ProposedAction,
        context: Mapping[str, Any] | None = None,
        policies: Iterable[Policy] = (),
    ) -> PolicyDecision:
        """Return the decision for ``action`` under ``policies``.

        ``context`` supplements ``action.context``; keys given here win.
        """
        facts = build_facts(action, context)
        action_scopes = action.scopes()
        by_id: dict[str, Policy] = {}
        hits: list[PolicyHit] = []
        diagnostics: list[str] = []

        for policy in policies:
            if not policy.is_active:
                continue
            if not action_scopes.intersection(policy.scope):
                continue
            hit = self._match(policy, action, facts, diagnostics)
            if hit is not None:
                by_id[policy.id] = policy
                hits.append(hit)

        decision = _decide(hits, by_id, diagnostics)
        _logger.debug(
            "action %s (%s): %s via %s, %d hit(s)",
            action.id,
            action.type,
            decision.effect.value,
            decision.policy_id,
            len(hits),
        )
        return decision

    def _match(
        self,
        policy: Policy,
        action: ProposedAction,
        facts: Mapping[str, Any],
        diagnostics: list[str],
    ) -> PolicyHit | None:
        # A trigger that cannot be evaluated counts as not matched; the other
        # triggers of the policy still decide whether it hits.
        require_all = policy.trigger_logic is TriggerLogic.ALL
        results: list[_TriggerResult] = []
        for index, trigger in enumerate(policy.triggers):
            try:
                result = self._match_trigger(policy, trigger, action, facts)
            except ConfigurationError as exc:
                _diagnose(policy, f"trigger {index}", exc, diagnostics)
                result = _TriggerResult(False, trigger.type.value)
            results.append(result)
            if require_all and not result.matched:
                return None
            if not require_all and result.matched:
                break
        if not results or not any(result.matched for result in results):
            return None

        auto_approved = False
        if policy.approval_required and policy.auto_approve_conditions:
            try:
                auto_approved = any(
                    matches_auto_approve(condition, facts) for condition in policy.auto_approve_conditions
                )
            except ConfigurationError as exc:
                _diagnose(policy, "autoApproveConditions", exc, diagnostics)

        matched_results = [result for result in results if result.matched]
        return PolicyHit(
            policy_id=policy.id,
            policy_name=policy.name or policy.id,
            risk_level=policy.risk_level,
            approval_required=policy.approval_required,
            block=policy.block,
            matched_triggers=[result.label for result in matched_results],
            breached_thresholds=[item for result in matched_results for item in result.breached],
            auto_approved=auto_approved,
        )

    def _match_trigger(
        self,
        policy: Policy,
        trigger: PolicyTrigger,
        action: ProposedAction,
        facts: Mapping[str, Any],
    ) -> _TriggerResult:
        config = trigger.config
        kind = trigger.type

        if kind is PolicyTriggerType.ACTION:
            types = _string_list(config, "actionTypes", "action_types")
            return _TriggerResult(action.type in types or "*" in types, f"action:{action.type}")

        if kind is PolicyTriggerType.EVENT:
            types = _string_list(config, "eventTypes", "event_types")
            event = action.event_type or action.type
            return _TriggerResult(event in types or "*" in types, f"event:{event}")

        if kind is PolicyTriggerType.THRESHOLD:
            thresholds = _thresholds_for(policy, config)
            breached = [t.describe() for t in thresholds if check_threshold(t, action.metrics, facts)]
            metric = config.get("metric") or ",".join(t.metric for t in thresholds)
            return _TriggerResult(bool(breached), f"threshold:{metric}", breached)

        if kind is PolicyTriggerType.CONDITION:
            predicate = predicate_from_config(config)
            return _TriggerResult(predicate(facts), "condition")

        if kind is PolicyTriggerType.SCHEDULE:
            return _TriggerResult(self._schedule_hit(config, action), "schedule")

        if kind is PolicyTriggerType.MANUAL:
            return _TriggerResult(policy.id in action.policy_ids, "manual")

        raise ConfigurationError(f"unsupported trigger type: {kind!r}")

    def _schedule_hit(self, config: Mapping[str, Any], action: ProposedAction) -> bool:
        hours = config.get("businessHours", config.get("business_hours"))
        if not isinstance(hours, Mapping):
            raise ConfigurationError("schedule trigger requires businessHours")
        tz_name = str(hours.get("timezone", "UTC"))
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"unknown timezone: {tz_name!r}") from exc
        start = _parse_clock(hours.get("start", "00:00"))
        end = _parse_clock(hours.get("end", "23:59"))
        days = _weekday_list(hours.get("days", _WEEKDAYS))

        moment = action.occurred_at or self._now()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        local = moment.astimezone(tz)
        inside = _WEEKDAYS[local.weekday()][:3] in days and start <= local.time() < end

        hit_when = str(config.get("hitWhen", config.get("hit_when", "outside")))
        if hit_when not in ("outside", "inside"):
            raise ConfigurationError(f"schedule hitWhen must be 'outside' or 'inside', got {hit_when!r}")
        return inside if hit_when == "inside" else not inside


def evaluate(
    action: ProposedAction,
    context: Mapping[str, Any] | None = None,
    policies: Iterable[Policy] = (),
    *,
    now: Callable[[], datetime] | None = None,
) -> PolicyDecision:
    """Evaluate ``action`` with a throwaway :class:`PolicyEvaluator`."""
    return PolicyEvaluator(now=now).evaluate(action, context, policies)


def build_facts(action: ProposedAction, context: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Flatten an action into the mapping that predicates and metrics read from."""
    facts: dict[str, Any] = dict(action.metrics)
    facts.update(action.context)
    if context:
        facts.update(context)
    facts.setdefault("actionType", action.type)
    facts.setdefault(
        "action",
        {
            "id": action.id,
            "type": action.type,
            "description": action.description,
            "eventType": action.event_type,
            "spaceId": action.space_id,
            "projectId": action.project_id,
            "cognateId": action.cognate_id,
        },
    )
    return facts


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _decide(hits: list[PolicyHit], by_id: Mapping[str, Policy], diagnostics: list[str]) -> PolicyDecision:
    blocking = [hit for hit in hits if hit.effect is Decision.DENY]
    approval = [hit for hit in hits if hit.effect is Decision.REQUIRE_APPROVAL]

    if blocking:
        governing = _riskiest(blocking)
        return PolicyDecision(
            effect=Decision.DENY,
            reason=f"blocked by policy {governing.policy_name}",
            policy_id=governing.policy_id,
            risk_level=governing.risk_level,
            hits=hits,
            diagnostics=diagnostics,
        )

    if approval:
        governing = _riskiest(approval)
        policy = by_id[governing.policy_id]
        return PolicyDecision(
            effect=Decision.REQUIRE_APPROVAL,
            reason=f"approval required by policy {governing.policy_name}",
            policy_id=governing.policy_id,
            risk_level=governing.risk_level,
            hits=hits,
            approvers=list(policy.approvers),
            escalations=list(policy.escalations),
            diagnostics=diagnostics,
        )

    if not hits:
        reason = "no policy matched"
    elif any(hit.auto_approved for hit in hits):
        names = ", ".join(hit.policy_name for hit in hits if hit.auto_approved)
        reason = f"auto-approved by {names}"
    else:
        reason = "matched policies require no approval: " + ", ".join(hit.policy_name for hit in hits)
    return PolicyDecision(
        effect=Decision.ALLOW,
        reason=reason,
        risk_level=_riskiest(hits).risk_level if hits else None,
        hits=hits,
        diagnostics=diagnostics,
    )


def _diagnose(policy: Policy, where: str, exc: ConfigurationError, diagnostics: list[str]) -> None:
    exc.policy_id = exc.policy_id or policy.id
    _logger.warning("policy %s: %s ignored: %s", policy.id, where, exc)
    diagnostics.append(f"{policy.id}: {exc}")


def _riskiest(hits: list[PolicyHit]) -> PolicyHit:
    best = hits[0]
    for hit in hits[1:]:
        if hit.risk_level.rank > best.risk_level.rank:
            best = hit
    return best


def _string_list(config: Mapping[str, Any], *keys: str) -> list[str]:
    for key in keys:
        value = config.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            return [value]
        if isinstance(value, list) and value:
            return [str(item) for item in value]
    raise ConfigurationError(f"trigger requires a non-empty '{keys[0]}' list")


def _thresholds_for(policy: Policy, config: Mapping[str, Any]) -> list[Threshold]:
    metric = config.get("metric")
    if "operator" in config:
        if not metric:
            raise ConfigurationError("inline threshold requires a metric")
        try:
            inline = Threshold(
                metric=str(metric),
                operator=str(config["operator"]),
                value=config.get("value"),
                value_to=config.get("valueTo", config.get("value_to")),
            )
        except PydanticValidationError as exc:
            raise ConfigurationError(f"invalid inline threshold for {metric!r}") from exc
        return [inline]
    if metric:
        matching = [t for t in policy.thresholds if t.metric == metric]
        if not matching:
            raise ConfigurationError(f"threshold trigger references undefined metric: {metric!r}")
        return matching
    if not policy.thresholds:
        raise ConfigurationError("threshold trigger has no metric and the policy defines no thresholds")
    return list(policy.thresholds)


def _weekday_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)) or not value:
        raise ConfigurationError(f"schedule days must be a non-empty list, got {value!r}")
    known = {name[:3] for name in _WEEKDAYS}
    days = [str(day).lower()[:3] for day in value]
    unknown = [day for day, short in zip(value, days) if short not in known]
    if unknown:
        raise ConfigurationError(f"unknown schedule day(s): {unknown!r}")
    return days


def _parse_clock(value: Any) -> time:
    try:
        hour, minute = str(value).split(":", 1)
        return time(int(hour), int(minute))
    except ValueError as exc:
        raise ConfigurationError(f"invalid clock time: {value!r}") from exc
