"""Quickstart demo for cognategov."""

from __future__ import annotations

import os
from pathlib import Path

from cognategov import GovernanceConfig, GovernanceEngine, Policy, ProposedAction, RunOutcome
from cognategov.notifiers import ConsoleNotifier

POLICIES = [
    {
        "id": "budget-cap",
        "name": "Spend over budget",
        "riskLevel": "high",
        "triggers": [{"type": "threshold", "config": {"metric": "amount", "operator": "gte", "value": 8000}}],
        "approvalRequired": True,
        "approvers": [{"type": "user", "id": "finance-lead", "timeout": 60}],
    },
    {
        "id": "no-deletes",
        "name": "No record deletion",
        "riskLevel": "critical",
        "triggers": [{"type": "action", "config": {"actionTypes": ["delete_records"]}}],
        "block": True,
    },
]


def main() -> None:
    config = GovernanceConfig(ledger_path=Path("cognategov_ledger.jsonl"))
    engine = GovernanceEngine.from_config(
        config,
        policies=[Policy.model_validate(doc) for doc in POLICIES],
        notifier=ConsoleNotifier(),
    )

    print("Demo 1: small purchase (allowed)")
    small = engine.submit(ProposedAction(type="purchase", cognate_id="cog-buyer", metrics={"amount": 120}))
    print(f"  {small.decision.effect.value}: {small.decision.reason}")
    engine.report_outcome(RunOutcome(action_id=small.action.id, status="completed"))

    print("\nDemo 2: large purchase (requires approval)")
    large = engine.submit(
        ProposedAction(
            type="purchase",
            description="Annual analytics licence",
            cognate_id="cog-buyer",
            metrics={"amount": 9500},
        )
    )
    if large.request is not None:
        # Set COGNATEGOV_DEMO_APPROVE=1 to approve instead of reject.
        if os.getenv("COGNATEGOV_DEMO_APPROVE") == "1":
            engine.approve(large.request.id, approver_id="finance-lead")
        else:
            engine.reject(large.request.id, "over quarterly budget", approver_id="finance-lead")
        print(f"  request {large.request.id}: {engine.workflow.get(large.request.id).status.value}")

    print("\nDemo 3: record deletion (blocked)")
    blocked = engine.submit(ProposedAction(type="delete_records", cognate_id="cog-cleaner"))
    print(f"  {blocked.decision.effect.value}: {blocked.decision.reason}")

    print(f"\nLedger: {config.ledger_path} ({len(engine.ledger)} entries)")
    print(f"  cognategov verify {config.ledger_path}")


if __name__ == "__main__":
    main()
