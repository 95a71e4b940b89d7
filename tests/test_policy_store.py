from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import FakeClock, approval_policy, block_policy

from cognategov.errors import ConfigurationError, NotFoundError, ValidationError
from cognategov.policies import Policy, PolicyScope, PolicyStatus, PolicyStore, Threshold, check_threshold, compare


def test_upsert_keeps_history(clock: FakeClock) -> None:
    store = PolicyStore(now=clock.now)
    first = store.upsert(Policy.model_validate(approval_policy()))
    clock.advance(60)
    second = store.upsert(Policy.model_validate(approval_policy(riskLevel="high")))

    assert (first.revision, second.revision) == (1, 2)
    assert store.revision("pol-email") == 2
    assert store.get("pol-email").risk_level.value == "high"
    assert [rev.policy.risk_level.value for rev in store.history("pol-email")] == ["medium", "high"]
    assert store.history("pol-email")[1].recorded_at > store.history("pol-email")[0].recorded_at


def test_set_status_creates_revision_and_hides_from_active() -> None:
    store = PolicyStore([Policy.model_validate(approval_policy()), Policy.model_validate(block_policy())])

    store.set_status("pol-email", PolicyStatus.DISABLED)

    assert store.revision("pol-email") == 2
    assert [policy.id for policy in store.active()] == ["pol-delete"]
    assert store.requiring_approval() == []
    assert len(store) == 2
    assert "pol-email" in store


def test_lookups_by_scope_and_tag() -> None:
    store = PolicyStore(
        [
            Policy.model_validate(approval_policy(scope=["space", "project"], tags=["email"])),
            Policy.model_validate(block_policy()),
        ]
    )
    assert [p.id for p in store.by_scope(PolicyScope.PROJECT)] == ["pol-email"]
    assert [p.id for p in store.by_tag("email")] == ["pol-email"]
    assert [p.id for p in store.by_scope(PolicyScope.GLOBAL)] == ["pol-delete"]


def test_unknown_policy_raises_not_found() -> None:
    store = PolicyStore()
    with pytest.raises(NotFoundError):
        store.get("nope")
    with pytest.raises(NotFoundError):
        store.history("nope")


def test_from_documents_collects_every_issue() -> None:
    with pytest.raises(ValidationError) as excinfo:
        PolicyStore.from_documents([approval_policy(), {"id": "", "triggers": []}])
    issues = excinfo.value.issues
    assert len(issues) == 2
    assert all(issue.startswith("Policy 2: ") for issue in issues)


def test_load_reads_policy_file(tmp_path: Path) -> None:
    path = tmp_path / "policies.json"
    path.write_text(json.dumps({"policies": [approval_policy(), block_policy()]}), encoding="utf-8")

    store = PolicyStore.load(path)

    assert sorted(policy.id for policy in store) == ["pol-delete", "pol-email"]


def test_escalation_levels_must_ascend() -> None:
    with pytest.raises(ValueError):
        Policy.model_validate(
            approval_policy(
                escalations=[
                    {"level": 2, "afterMinutes": 10},
                    {"level": 1, "afterMinutes": 5},
                ]
            )
        )


@pytest.mark.parametrize(
    ("operator", "actual", "expected"),
    [
        ("lt", 1, True),
        ("lte", 5, True),
        ("gt", 5, False),
        ("gte", 5, True),
        ("eq", 5, True),
        ("neq", 5, False),
    ],
)
def test_compare_operators(operator: str, actual: float, expected: bool) -> None:
    assert compare(operator, actual, 5) is expected


def test_between_is_inclusive_and_needs_both_bounds() -> None:
    assert compare("between", 10, 10, 20)
    assert compare("between", 20, 10, 20)
    assert not compare("between", 21, 10, 20)
    with pytest.raises(ConfigurationError, match="requires both value and valueTo"):
        compare("between", 15, 10)


def test_unknown_operator_and_missing_value_raise() -> None:
    with pytest.raises(ConfigurationError, match="unknown threshold operator"):
        compare("approx", 1, 1)
    with pytest.raises(ConfigurationError, match="requires a value"):
        compare("gt", 1, None)


def test_check_threshold_ignores_missing_or_non_numeric_metric() -> None:
    threshold = Threshold(metric="latency", operator="gt", value=200)
    assert check_threshold(threshold, {"latency": 250})
    assert not check_threshold(threshold, {})
    assert not check_threshold(threshold, {"latency": "slow"})
    assert not check_threshold(threshold, {"latency": True})
