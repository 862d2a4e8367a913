"""Tests for scenario schemas and replay."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from simulation import EventAction, LedgerEvent, Scenario, ScenarioRunner, run_scenario
from staking import CheckpointResult, CheckpointStalledError
from staking.state import Tranche, TrancheAmounts


def two_holder_scenario() -> dict:
    return {
        "start_time": 0,
        "rates": [{"start": 0, "rate": 30}],
        "rebalances": [{"timestamp": 5, "ratio_m": "2"}],
        "events": [
            {"timestamp": 0, "action": "deposit", "account": "alice", "tranche": "M", "amount": 100},
            {"timestamp": 0, "action": "deposit", "account": "bob", "tranche": "A", "amount": 75},
            {"timestamp": 10, "action": "claim", "account": "alice"},
            {"timestamp": 10, "action": "withdraw", "account": "bob", "tranche": "A", "amount": 500},
        ],
    }


def test_run_scenario_reports_balances_and_rewards() -> None:
    report = run_scenario(two_holder_scenario())

    assert report.final_time == 10
    assert report.version == 1
    assert report.total_supplies == TrancheAmounts(m=200, a=75)
    assert report.events_applied == 3

    alice = report.accounts["alice"]
    assert alice.claimed_reward == 175
    assert alice.claimable_reward == 0
    assert alice.available == TrancheAmounts(m=200)

    bob = report.accounts["bob"]
    assert bob.claimable_reward == 125
    assert bob.available == TrancheAmounts(a=75)


def test_failed_event_is_recorded_and_run_continues() -> None:
    report = run_scenario(two_holder_scenario())

    assert len(report.failures) == 1
    failure = report.failures[0]
    assert failure.index == 3
    assert failure.action == "withdraw"
    assert failure.timestamp == 10
    assert "Insufficient A balance" in failure.error


def test_report_payload_is_plain_data() -> None:
    payload = run_scenario(two_holder_scenario()).to_payload()

    assert payload["version"] == 1
    assert payload["total_supplies"] == {"m": 200, "a": 75, "b": 0}
    assert list(payload["accounts"]) == ["alice", "bob"]
    assert payload["accounts"]["alice"]["claimed_reward"] == 175
    assert payload["failures"][0]["action"] == "withdraw"


def test_end_time_extends_accrual() -> None:
    report = run_scenario(
        {
            "rates": [{"start": 0, "rate": 10}],
            "default_relative_weight": "0.5",
            "end_time": 20,
            "events": [
                {"timestamp": 0, "action": "deposit", "account": "alice", "tranche": "M", "amount": 100},
            ],
        }
    )

    assert report.final_time == 20
    assert report.accounts["alice"].claimable_reward == 100


def test_long_gap_is_settled_before_each_event() -> None:
    report = run_scenario(
        {
            "ledger": {"week_seconds": 10, "max_iterations": 2},
            "rates": [{"start": 0, "rate": 10}],
            "events": [
                {"timestamp": 0, "action": "deposit", "account": "alice", "tranche": "M", "amount": 100},
                {"timestamp": 100, "action": "claim", "account": "alice"},
                {"timestamp": 150, "action": "checkpoint"},
            ],
        }
    )

    assert report.failures == []
    assert report.accounts["alice"].claimed_reward == 1_000
    assert report.accounts["alice"].claimable_reward == 500


def test_stalled_checkpoint_aborts_the_run(monkeypatch) -> None:
    runner = ScenarioRunner(Scenario.model_validate(two_holder_scenario()))
    monkeypatch.setattr(
        runner.ledger,
        "checkpoint",
        lambda: CheckpointResult(converged=False, steps=0, timestamp=0, version=0),
    )

    with pytest.raises(CheckpointStalledError):
        runner.run()


def test_trading_and_refresh_events() -> None:
    runner = ScenarioRunner(
        Scenario.model_validate(
            {
                "rates": [{"start": 0, "rate": 10}],
                "rebalances": [{"timestamp": 5, "ratio_m": 2}],
                "events": [
                    {"timestamp": 0, "action": "deposit", "account": "alice", "tranche": "M", "amount": 100},
                    {"timestamp": 1, "action": "lock", "account": "alice", "tranche": "M", "amount": 50},
                    {
                        "timestamp": 6,
                        "action": "convert_and_unlock",
                        "account": "alice",
                        "amount_version": 0,
                        "amounts": {"m": 50},
                    },
                    {
                        "timestamp": 7,
                        "action": "rebalance_and_clear_trade",
                        "account": "bob",
                        "amount_version": 0,
                        "amounts": {"m": 10},
                    },
                    {"timestamp": 8, "action": "refresh", "account": "carol", "target_version": 1},
                ],
            }
        )
    )

    report = runner.run()

    assert report.failures == []
    assert report.accounts["alice"].available == TrancheAmounts(m=200)
    assert report.accounts["alice"].locked == TrancheAmounts()
    assert report.accounts["bob"].available == TrancheAmounts(m=20)
    assert runner.state.accounts["carol"].balance_version == 1
    assert report.total_supplies == TrancheAmounts(m=220)


def test_events_are_replayed_in_time_order() -> None:
    report = run_scenario(
        {
            "rates": [{"start": 0, "rate": 10}],
            "events": [
                {"timestamp": 5, "action": "withdraw", "account": "alice", "tranche": "M", "amount": 40},
                {"timestamp": 0, "action": "deposit", "account": "alice", "tranche": "M", "amount": 100},
            ],
        }
    )

    assert report.failures == []
    assert report.accounts["alice"].available == TrancheAmounts(m=60)


def test_event_schema_requires_fields_per_action() -> None:
    event = LedgerEvent.model_validate(
        {"timestamp": 0, "action": "deposit", "account": "a", "tranche": "B", "amount": 5}
    )
    assert event.action is EventAction.DEPOSIT
    assert event.tranche is Tranche.B

    with pytest.raises(ValidationError):
        LedgerEvent.model_validate({"timestamp": 0, "action": "deposit", "account": "a", "amount": 5})
    with pytest.raises(ValidationError):
        LedgerEvent.model_validate({"timestamp": 0, "action": "claim"})
    with pytest.raises(ValidationError):
        LedgerEvent.model_validate(
            {"timestamp": 0, "action": "convert_and_unlock", "account": "a", "amounts": {"m": 1}}
        )
    with pytest.raises(ValidationError):
        LedgerEvent.model_validate({"timestamp": 0, "action": "teleport", "account": "a"})


@pytest.mark.parametrize(
    "scenario",
    [
        {"rebalances": [{"timestamp": 5}, {"timestamp": 3}]},
        {"start_time": 10, "events": [{"timestamp": 5, "action": "checkpoint"}]},
        {"relative_weights": [{"start": 0, "weight": "1.5"}]},
        {"rebalances": [{"timestamp": 5, "ratio_m": "-1"}]},
        {"unknown_section": []},
        {"start_time": 10, "end_time": 5},
    ],
)
def test_scenario_schema_rejects(scenario: dict) -> None:
    with pytest.raises(ValidationError):
        Scenario.model_validate(scenario)
