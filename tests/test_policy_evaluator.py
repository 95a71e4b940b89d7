from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from conftest import FakeClock, approval_policy, block_policy

from cognategov.policies import Policy, PolicyEvaluator, ProposedAction, evaluate
from cognategov.types import Decision, RiskLevel


def _policy(data: dict[str, Any]) -> Policy:
    return Policy.model_validate(data)


def _action(action_type: str = "send_email", **extra: Any) -> ProposedAction:
    return ProposedAction.model_validate({"type": action_type, **extra})


def test_no_policies_allows() -> None:
    decision = evaluate(_action())
    assert decision.effect is Decision.ALLOW
    assert decision.reason == "no policy matched"
    assert decision.hits == []


def test_action_trigger_requires_approval() -> None:
    decision = evaluate(_action(), policies=[_policy(approval_policy())])

    assert decision.effect is Decision.REQUIRE_APPROVAL
    assert decision.policy_id == "pol-email"
    assert decision.risk_level is RiskLevel.MEDIUM
    assert [approver.id for approver in decision.approvers] == ["alice"]
    assert decision.hits[0].matched_triggers == ["action:send_email"]


def test_unrelated_action_is_allowed() -> None:
    decision = evaluate(_action("read_calendar"), policies=[_policy(approval_policy())])
    assert decision.effect is Decision.ALLOW


def test_block_policy_denies() -> None:
    decision = evaluate(_action("delete_records"), policies=[_policy(block_policy())])
    assert decision.effect is Decision.DENY
    assert decision.policy_id == "pol-delete"
    assert decision.reason == "blocked by policy No deletes"


def test_deny_beats_require_approval() -> None:
    policies = [
        _policy(approval_policy(triggers=[{"type": "action", "config": {"actionTypes": ["*"]}}])),
        _policy(block_policy()),
    ]
    decision = evaluate(_action("delete_records"), policies=policies)
    assert decision.effect is Decision.DENY
    assert len(decision.hits) == 2


def test_highest_risk_governs_and_first_wins_ties() -> None:
    policies = [
        _policy(approval_policy(id="low", riskLevel="low")),
        _policy(approval_policy(id="high-a", riskLevel="high", approvers=[{"id": "bob"}])),
        _policy(approval_policy(id="high-b", riskLevel="high", approvers=[{"id": "carol"}])),
    ]
    decision = evaluate(_action(), policies=policies)

    assert decision.policy_id == "high-a"
    assert decision.risk_level is RiskLevel.HIGH
    assert [approver.id for approver in decision.approvers] == ["bob"]


def test_threshold_trigger_and_missing_metric() -> None:
    policy = _policy(
        {
            "id": "pol-spend",
            "name": "Spend",
            "riskLevel": "high",
            "approvalRequired": True,
            "thresholds": [{"metric": "amount", "operator": "gt", "value": 1000}],
            "triggers": [{"type": "threshold", "config": {"metric": "amount"}}],
        }
    )

    breached = evaluate(_action("pay", metrics={"amount": 5000}), policies=[policy])
    under = evaluate(_action("pay", metrics={"amount": 10}), policies=[policy])
    absent = evaluate(_action("pay"), policies=[policy])

    assert breached.effect is Decision.REQUIRE_APPROVAL
    assert breached.hits[0].breached_thresholds == ["amount gt 1000.0"]
    assert under.effect is Decision.ALLOW
    assert absent.effect is Decision.ALLOW
    assert absent.diagnostics == []


def test_threshold_metric_can_come_from_context() -> None:
    policy = _policy(
        {
            "id": "pol-inline",
            "approvalRequired": True,
            "triggers": [{"type": "threshold", "config": {"metric": "rows", "operator": "gte", "value": 100}}],
        }
    )
    decision = evaluate(_action("export"), {"rows": "250"}, policies=[policy])
    assert decision.effect is Decision.REQUIRE_APPROVAL


def test_malformed_trigger_is_diagnosed_and_not_matched() -> None:
    broken = _policy(
        {
            "id": "pol-broken",
            "approvalRequired": True,
            "triggers": [{"type": "threshold", "config": {"metric": "undefined_metric"}}],
        }
    )
    working = _policy(approval_policy())

    decision = evaluate(_action(), policies=[broken, working])

    assert decision.effect is Decision.REQUIRE_APPROVAL
    assert decision.policy_id == "pol-email"
    assert len(decision.diagnostics) == 1
    assert decision.diagnostics[0].startswith("pol-broken: ")
    assert "undefined metric" in decision.diagnostics[0]


def test_unknown_threshold_operator_is_diagnosed() -> None:
    policy = _policy(
        {
            "id": "pol-op",
            "approvalRequired": True,
            "thresholds": [{"metric": "amount", "operator": "roughly", "value": 1}],
            "triggers": [{"type": "threshold"}],
        }
    )
    decision = evaluate(_action("pay", metrics={"amount": 1}), policies=[policy])
    assert decision.effect is Decision.ALLOW
    assert "unknown threshold operator" in decision.diagnostics[0]


def test_condition_trigger_uses_expression() -> None:
    policy = _policy(
        {
            "id": "pol-threat",
            "riskLevel": "critical",
            "block": True,
            "triggers": [{"type": "condition", "config": {"condition": "threat_score >= 0.8"}}],
        }
    )

    assert evaluate(_action("login"), {"threat_score": 0.9}, policies=[policy]).effect is Decision.DENY
    assert evaluate(_action("login"), {"threat_score": 0.2}, policies=[policy]).effect is Decision.ALLOW


def test_trigger_logic_all_needs_every_trigger() -> None:
    data = approval_policy(
        triggerLogic="all",
        triggers=[
            {"type": "action", "config": {"actionTypes": ["send_email"]}},
            {"type": "condition", "config": {"condition": "recipient.type = external"}},
        ],
    )
    policy = _policy(data)

    internal = evaluate(_action(), {"recipient": {"type": "internal"}}, policies=[policy])
    external = evaluate(_action(), {"recipient": {"type": "external"}}, policies=[policy])

    assert internal.effect is Decision.ALLOW
    assert external.effect is Decision.REQUIRE_APPROVAL
    assert external.hits[0].matched_triggers == ["action:send_email", "condition"]


def test_auto_approve_conditions_allow() -> None:
    policy = _policy(approval_policy(autoApproveConditions=[{"recipient.domain": ["example.com"]}]))

    decision = evaluate(_action(), {"recipient": {"domain": "example.com"}}, policies=[policy])

    assert decision.effect is Decision.ALLOW
    assert decision.hits[0].auto_approved is True
    assert decision.reason == "auto-approved by Outbound email"


def test_inactive_and_out_of_scope_policies_are_ignored() -> None:
    draft = _policy(approval_policy(id="draft", status="draft"))
    scoped = _policy(approval_policy(id="space-only", scope="space"))

    decision = evaluate(_action(), policies=[draft, scoped])
    in_space = evaluate(_action(spaceId="s-1"), policies=[draft, scoped])

    assert decision.effect is Decision.ALLOW
    assert in_space.policy_id == "space-only"


def test_event_and_manual_triggers() -> None:
    event_policy = _policy(
        approval_policy(id="ev", triggers=[{"type": "event", "config": {"eventTypes": ["ticket.closed"]}}])
    )
    manual_policy = _policy(approval_policy(id="manual", triggers=[{"type": "manual"}]))

    assert evaluate(_action("update", eventType="ticket.closed"), policies=[event_policy]).requires_approval
    assert not evaluate(_action("update"), policies=[event_policy]).requires_approval
    assert evaluate(_action("update", policyIds=["manual"]), policies=[manual_policy]).requires_approval
    assert not evaluate(_action("update"), policies=[manual_policy]).requires_approval


def test_schedule_trigger_outside_business_hours() -> None:
    clock = FakeClock(datetime(2026, 3, 2, 22, 0, tzinfo=timezone.utc))  # Monday evening
    policy = _policy(
        approval_policy(
            id="after-hours",
            triggers=[
                {
                    "type": "schedule",
                    "config": {"businessHours": {"start": "09:00", "end": "17:00", "days": ["mon", "tue"]}},
                }
            ],
        )
    )
    evaluator = PolicyEvaluator(now=clock.now)

    assert evaluator.evaluate(_action("deploy"), policies=[policy]).requires_approval
    during = _action("deploy", occurredAt="2026-03-02T10:30:00+00:00")
    assert evaluator.evaluate(during, policies=[policy]).allowed


def test_schedule_trigger_with_bad_timezone_is_diagnosed() -> None:
    policy = _policy(
        approval_policy(
            triggers=[{"type": "schedule", "config": {"businessHours": {"timezone": "Mars/Olympus"}}}]
        )
    )
    decision = evaluate(_action(), policies=[policy])
    assert decision.allowed
    assert "unknown timezone" in decision.diagnostics[0]


def test_evaluation_does_not_mutate_inputs() -> None:
    context = {"threat_score": 0.9}
    action = _action("login", context={"a": 1})
    evaluate(action, context, policies=[_policy(approval_policy())])
    assert context == {"threat_score": 0.9}
    assert action.context == {"a": 1}


def test_budget_cap_threshold_on_context_metric() -> None:
    policy = _policy(
        {
            "id": "budget-cap",
            "name": "Monthly AI budget",
            "riskLevel": "high",
            "approvalRequired": True,
            "approvers": [{"id": "finance"}],
            "thresholds": [{"metric": "monthly_ai_spend", "operator": "gte", "value": 8000}],
            "triggers": [{"type": "threshold", "config": {"metric": "monthly_ai_spend"}}],
        }
    )

    over = evaluate(_action("run_model"), {"monthly_ai_spend": 8500}, policies=[policy])
    under = evaluate(_action("run_model"), {"monthly_ai_spend": 7999}, policies=[policy])

    assert over.effect is Decision.REQUIRE_APPROVAL
    assert over.policy_id == "budget-cap"
    assert under.effect is Decision.ALLOW


def test_external_recipient_without_allow_list_requires_approval() -> None:
    condition = {"type": "condition", "config": {"condition": "recipient.domain NOT IN approved_domains"}}
    either = _policy(
        approval_policy(triggers=[{"type": "action", "config": {"actionTypes": ["send_email"]}}, condition])
    )
    both = _policy(
        approval_policy(
            id="pol-external",
            triggerLogic="all",
            triggers=[{"type": "action", "config": {"actionTypes": ["send_email"]}}, condition],
        )
    )
    context = {"recipient": {"domain": "evil.com"}}

    assert evaluate(_action(), context, policies=[either]).effect is Decision.REQUIRE_APPROVAL
    decision = evaluate(_action(), context, policies=[both])
    assert decision.effect is Decision.REQUIRE_APPROVAL
    assert decision.diagnostics == []

    allowed = evaluate(_action(), {**context, "approved_domains": ["evil.com"]}, policies=[both])
    assert allowed.effect is Decision.ALLOW


def test_broken_trigger_does_not_hide_a_matching_one() -> None:
    policy = _policy(
        approval_policy(
            triggers=[
                {"type": "threshold", "config": {"metric": "undefined_metric"}},
                {"type": "action", "config": {"actionTypes": ["send_email"]}},
            ]
        )
    )

    decision = evaluate(_action(), policies=[policy])

    assert decision.effect is Decision.REQUIRE_APPROVAL
    assert decision.hits[0].matched_triggers == ["action:send_email"]
    assert len(decision.diagnostics) == 1
    assert "undefined metric" in decision.diagnostics[0]


def test_broken_trigger_fails_an_all_policy() -> None:
    policy = _policy(
        approval_policy(
            triggerLogic="all",
            triggers=[
                {"type": "action", "config": {"actionTypes": ["send_email"]}},
                {"type": "condition", "config": {"condition": "amount >"}},
            ],
        )
    )

    decision = evaluate(_action(), policies=[policy])

    assert decision.effect is Decision.ALLOW
    assert decision.diagnostics[0].startswith("pol-email: ")


def test_malformed_auto_approve_condition_does_not_approve() -> None:
    policy = _policy(approval_policy(autoApproveConditions=[{"field": ""}]))

    decision = evaluate(_action(), policies=[policy])

    assert decision.effect is Decision.REQUIRE_APPROVAL
    assert decision.hits[0].auto_approved is False
    assert "requires a 'field'" in decision.diagnostics[0]


@pytest.mark.parametrize("days", ["mon", 5, [], ["someday"]])
def test_schedule_trigger_with_bad_days_is_diagnosed(days: object) -> None:
    policy = _policy(
        approval_policy(
            triggers=[{"type": "schedule", "config": {"businessHours": {"days": days}}}],
        )
    )
    decision = evaluate(_action(), policies=[policy])
    assert decision.allowed
    assert "schedule day" in decision.diagnostics[0]
