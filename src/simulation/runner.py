"""Replay a scenario against an in-memory staking ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from oracles import (
    InMemoryRebalanceOracle,
    InMemoryRewardToken,
    RebalanceRatios,
    ScheduledRateOracle,
)
from simulation.schemas import EventAction, LedgerEvent, Scenario
from staking import fixed_point
from staking.config import build_ledger_config
from staking.errors import CheckpointStalledError, LedgerError
from staking.ledger import StakingLedger
from staking.state import LedgerState, Tranche, TrancheAmounts
from utils.logging_config import LogContext

LOGGER = logging.getLogger("tranche_staking.simulation")


@dataclass
class ScenarioClock:
    now: int = 0

    def __call__(self) -> int:
        return self.now


@dataclass(frozen=True)
class EventFailure:
    index: int
    timestamp: int
    action: str
    error: str


@dataclass(frozen=True)
class AccountReport:
    available: TrancheAmounts
    locked: TrancheAmounts
    claimable_reward: int
    claimed_reward: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "available": self.available.to_payload(),
            "locked": self.locked.to_payload(),
            "claimable_reward": self.claimable_reward,
            "claimed_reward": self.claimed_reward,
        }


@dataclass
class ScenarioReport:
    final_time: int
    version: int
    total_supplies: TrancheAmounts
    accounts: dict[str, AccountReport] = field(default_factory=dict)
    failures: list[EventFailure] = field(default_factory=list)
    events_applied: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "final_time": self.final_time,
            "version": self.version,
            "total_supplies": self.total_supplies.to_payload(),
            "accounts": {
                name: report.to_payload() for name, report in sorted(self.accounts.items())
            },
            "failures": [
                {
                    "index": failure.index,
                    "timestamp": failure.timestamp,
                    "action": failure.action,
                    "error": failure.error,
                }
                for failure in self.failures
            ],
            "events_applied": self.events_applied,
        }


class ScenarioRunner:
    """Drive a ledger through a scenario's events in timestamp order.

    Rebalances are published to the oracle as the clock reaches them. A
    ``LedgerError`` fails only the event that raised it; the run continues.
    """

    def __init__(self, scenario: Scenario) -> None:
        self.scenario = scenario
        self.clock = ScenarioClock(now=scenario.start_time)
        self.rebalance_oracle = InMemoryRebalanceOracle()
        self.rate_oracle = ScheduledRateOracle(
            rates=[(point.start, point.rate) for point in scenario.rates],
            relative_weights=[
                (point.start, fixed_point.to_fixed(point.weight))
                for point in scenario.relative_weights
            ],
            default_relative_weight=fixed_point.to_fixed(
                scenario.default_relative_weight
            ),
        )
        self.reward_token = InMemoryRewardToken()
        self.ledger = StakingLedger(
            self.rebalance_oracle,
            self.rate_oracle,
            self.reward_token,
            build_ledger_config(scenario.ledger),
            clock=self.clock,
        )
        self._pending_rebalances = [
            RebalanceRatios.from_decimals(
                item.timestamp,
                ratio_m=item.ratio_m,
                ratio_a2m=item.ratio_a2m,
                ratio_b2m=item.ratio_b2m,
                ratio_ab=item.ratio_ab,
            )
            for item in scenario.rebalances
        ]

    @property
    def state(self) -> LedgerState:
        return self.ledger.state

    def run(self) -> ScenarioReport:
        failures: list[EventFailure] = []
        applied = 0
        ordered = sorted(enumerate(self.scenario.events), key=lambda item: item[1].timestamp)
        for index, event in ordered:
            self._advance_clock(event.timestamp)
            with LogContext(action=event.action.value, account=event.account):
                try:
                    self._apply(event)
                except CheckpointStalledError:
                    raise
                except LedgerError as exc:
                    LOGGER.warning(
                        "Event %s (%s at %s) failed: %s",
                        index,
                        event.action.value,
                        event.timestamp,
                        exc,
                    )
                    failures.append(
                        EventFailure(
                            index=index,
                            timestamp=event.timestamp,
                            action=event.action.value,
                            error=str(exc),
                        )
                    )
                    continue
            applied += 1

        end_time = self.scenario.end_time
        if end_time is None:
            end_time = max([self.clock.now] + [r.timestamp for r in self.scenario.rebalances])
        self._advance_clock(max(end_time, self.clock.now))
        self._settle_global()
        return self._report(failures, applied)

    def _advance_clock(self, timestamp: int) -> None:
        self.clock.now = max(self.clock.now, timestamp)
        while self._pending_rebalances and self._pending_rebalances[0].timestamp <= self.clock.now:
            self.rebalance_oracle.publish(self._pending_rebalances.pop(0))

    def _settle_global(self) -> None:
        result = self.ledger.checkpoint()
        while not result.converged:
            if result.steps == 0:
                raise CheckpointStalledError(
                    f"Global checkpoint made no progress at {result.timestamp}"
                )
            result = self.ledger.checkpoint()

    def _apply(self, event: LedgerEvent) -> None:
        ledger = self.ledger
        action = event.action
        account = event.account or ""
        if action == EventAction.CHECKPOINT:
            self._settle_global()
            return
        # Long idle gaps may need more than one bounded checkpoint first.
        self._settle_global()
        tranche = Tranche(event.tranche) if event.tranche is not None else None
        if action == EventAction.DEPOSIT:
            ledger.deposit(tranche, event.amount, account)
        elif action == EventAction.WITHDRAW:
            ledger.withdraw(tranche, event.amount, account)
        elif action == EventAction.LOCK:
            ledger.lock(tranche, account, event.amount)
        elif action == EventAction.UNLOCK:
            ledger.unlock(tranche, account, event.amount)
        elif action == EventAction.TRADE_AVAILABLE:
            ledger.trade_available(tranche, account, event.amount)
        elif action == EventAction.TRADE_LOCKED:
            ledger.trade_locked(tranche, account, event.amount)
        elif action == EventAction.CLEAR_TRADE:
            ledger.rebalance_and_clear_trade(
                account, _amounts(event), int(event.amount_version or 0)
            )
        elif action == EventAction.CONVERT_AND_UNLOCK:
            ledger.convert_and_unlock(
                account, _amounts(event), int(event.amount_version or 0)
            )
        elif action == EventAction.CLAIM:
            ledger.claim_rewards(account)
        elif action == EventAction.REFRESH:
            ledger.refresh_balance(account, event.target_version)
        else:
            raise ValueError(f"Unsupported scenario action: {action}")

    def _report(self, failures: list[EventFailure], applied: int) -> ScenarioReport:
        ledger = self.ledger
        names = sorted(
            set(ledger.state.accounts)
            | {event.account for event in self.scenario.events if event.account}
        )
        accounts: dict[str, AccountReport] = {}
        for name in names:
            accounts[name] = AccountReport(
                available=TrancheAmounts(
                    m=ledger.available_balance_of(Tranche.M, name),
                    a=ledger.available_balance_of(Tranche.A, name),
                    b=ledger.available_balance_of(Tranche.B, name),
                ),
                locked=TrancheAmounts(
                    m=ledger.locked_balance_of(Tranche.M, name),
                    a=ledger.locked_balance_of(Tranche.A, name),
                    b=ledger.locked_balance_of(Tranche.B, name),
                ),
                claimable_reward=ledger.claimable_rewards(name),
                claimed_reward=self.reward_token.balance_of(name),
            )
        return ScenarioReport(
            final_time=self.clock.now,
            version=ledger.state.total_supply_version,
            total_supplies=ledger.total_supplies(),
            accounts=accounts,
            failures=failures,
            events_applied=applied,
        )


def run_scenario(scenario: Scenario | dict[str, Any]) -> ScenarioReport:
    if not isinstance(scenario, Scenario):
        scenario = Scenario.model_validate(scenario)
    return ScenarioRunner(scenario).run()


def _amounts(event: LedgerEvent) -> TrancheAmounts:
    amounts = event.amounts
    if amounts is None:
        return TrancheAmounts()
    return TrancheAmounts(m=amounts.m, a=amounts.a, b=amounts.b)
