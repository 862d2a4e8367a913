"""Tests for the staking ledger facade."""

from __future__ import annotations

import pytest

from oracles import (
    InMemoryRebalanceOracle,
    InMemoryRewardToken,
    RebalanceRatios,
    ScheduledRateOracle,
)
from staking import (
    ArithmeticOverflowError,
    CheckpointPendingError,
    InsufficientBalanceError,
    InvalidVersionError,
    LedgerConfig,
    StakingLedger,
    Tranche,
    TrancheAmounts,
)
from staking.fixed_point import MAX_UINT256, UNIT

WEEK = 7 * 86400


class FakeClock:
    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class FailingRewardToken:
    def mint(self, account: str, amount: int) -> None:
        raise RuntimeError("mint rejected")


def build_ledger(
    *,
    rates: list[tuple[int, int]] | None = None,
    relative_weights: list[tuple[int, int]] | None = None,
    config: LedgerConfig | None = None,
    start: int = 0,
    reward_token=None,
) -> tuple[StakingLedger, InMemoryRebalanceOracle, InMemoryRewardToken, FakeClock]:
    clock = FakeClock(start)
    rebalances = InMemoryRebalanceOracle()
    schedule = ScheduledRateOracle(
        rates=rates if rates is not None else [(0, 10)],
        relative_weights=relative_weights or [],
    )
    token = reward_token if reward_token is not None else InMemoryRewardToken()
    ledger = StakingLedger(rebalances, schedule, token, config, clock=clock)
    return ledger, rebalances, token, clock


def test_fresh_ledger_starts_at_clock() -> None:
    ledger, _, _, _ = build_ledger(rates=[(0, 10), (500, 20)], start=1_000)

    assert ledger.state.checkpoint_timestamp == 1_000
    assert ledger.state.rate == 20
    assert ledger.rebalance_version() == 0


def test_single_depositor_earns_full_emission() -> None:
    ledger, _, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")

    clock.now = 5

    assert ledger.claimable_rewards("alice") == 50
    assert ledger.total_supply(Tranche.M) == 100
    assert ledger.balance_of(Tranche.M, "alice") == 100


def test_rewards_split_by_weight_across_rebalance() -> None:
    ledger, rebalances, _, clock = build_ledger(rates=[(0, 30)])
    ledger.deposit(Tranche.M, 100, "alice")
    ledger.deposit(Tranche.A, 75, "bob")
    rebalances.publish(RebalanceRatios.from_decimals(5, ratio_m=2))

    clock.now = 10

    assert ledger.claimable_rewards("alice") == 175
    assert ledger.claimable_rewards("bob") == 125
    assert ledger.available_balance_of(Tranche.M, "alice") == 200
    assert ledger.available_balance_of(Tranche.A, "bob") == 75
    assert ledger.total_supplies() == TrancheAmounts(m=200, a=75)

    ledger.refresh_balance("alice")

    record = ledger.state.accounts["alice"]
    assert record.balance_version == 1
    assert record.claimable_reward == 175
    assert ledger.state.historical_integrals == [75 * 10**25]


def test_rate_change_at_week_boundary() -> None:
    ledger, _, _, clock = build_ledger(rates=[(0, 10), (WEEK, 20)])
    ledger.deposit(Tranche.M, 100, "alice")

    clock.now = WEEK + 10

    assert ledger.claimable_rewards("alice") == 10 * WEEK + 200


def test_relative_weight_scales_emission() -> None:
    ledger, _, _, clock = build_ledger(
        rates=[(0, 10), (WEEK, 20)],
        relative_weights=[(0, UNIT), (WEEK, UNIT // 4)],
    )
    ledger.deposit(Tranche.M, 100, "alice")

    clock.now = WEEK + 10

    assert ledger.claimable_rewards("alice") == 10 * WEEK + 50


def test_zero_weight_period_is_not_allocated() -> None:
    ledger, _, _, clock = build_ledger()
    clock.now = 100
    ledger.deposit(Tranche.M, 100, "alice")

    clock.now = 110

    assert ledger.claimable_rewards("alice") == 100


def test_deposit_then_withdraw_at_same_time_earns_nothing() -> None:
    ledger, _, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "bob")
    clock.now = 20

    ledger.deposit(Tranche.M, 50, "alice")
    ledger.withdraw(Tranche.M, 50, "alice")

    assert ledger.claimable_rewards("alice") == 0
    assert ledger.balance_of(Tranche.M, "alice") == 0
    assert ledger.total_supply(Tranche.M) == 100
    assert ledger.claimable_rewards("bob") == 200


def test_claimable_is_monotonic_over_time() -> None:
    ledger, rebalances, _, clock = build_ledger(
        rates=[(0, 10), (40, 3)], config=LedgerConfig(week_seconds=20)
    )
    ledger.deposit(Tranche.M, 100, "alice")
    ledger.deposit(Tranche.B, 30, "bob")
    rebalances.publish(RebalanceRatios.from_decimals(33, ratio_b2m="0.5", ratio_ab="0.5"))

    observed = []
    for now in range(0, 120, 7):
        clock.now = now
        observed.append(ledger.claimable_rewards("alice"))

    assert observed == sorted(observed)


def test_rewards_never_exceed_emission() -> None:
    ledger, _, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")
    ledger.deposit(Tranche.B, 33, "bob")

    for now in (7, 13, 99):
        clock.now = now
        total = ledger.claimable_rewards("alice") + ledger.claimable_rewards("bob")
        emitted = 10 * now
        assert emitted - 2 <= total <= emitted


def test_rebalance_conserves_supply() -> None:
    ledger, rebalances, _, clock = build_ledger()
    for tranche, amount in ((Tranche.M, 100), (Tranche.A, 40), (Tranche.B, 20)):
        ledger.deposit(tranche, amount, "alice")
    for tranche, amount in ((Tranche.M, 10), (Tranche.A, 60), (Tranche.B, 80)):
        ledger.deposit(tranche, amount, "bob")
    rebalances.publish(
        RebalanceRatios.from_decimals(
            5, ratio_m=2, ratio_a2m="0.5", ratio_b2m="0.5", ratio_ab="0.5"
        )
    )

    clock.now = 10

    alice = [ledger.balance_of(tranche, "alice") for tranche in Tranche]
    bob = [ledger.balance_of(tranche, "bob") for tranche in Tranche]
    assert alice == [230, 20, 10]
    assert bob == [90, 30, 40]
    assert ledger.total_supplies() == TrancheAmounts(m=320, a=50, b=50)
    assert ledger.total_reward_weight() == TrancheAmounts(m=320, a=50, b=50).weight()


def test_flooring_rebalance_keeps_account_sum_within_total() -> None:
    ledger, rebalances, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 1, "alice")
    ledger.deposit(Tranche.M, 1, "bob")
    rebalances.publish(RebalanceRatios.from_decimals(5, ratio_m="1.5"))
    clock.now = 10

    # The aggregate rounds 2 * 1.5 once; each account rounds 1 * 1.5 down.
    assert ledger.total_supply(Tranche.M) == 3
    assert ledger.balance_of(Tranche.M, "alice") == 1
    assert ledger.balance_of(Tranche.M, "bob") == 1


def test_rounding_gap_is_bounded_per_account_and_rebalance() -> None:
    ledger, rebalances, _, clock = build_ledger()
    accounts = ("alice", "bob", "carol")
    for account in accounts:
        ledger.deposit(Tranche.M, 1, account)
        ledger.deposit(Tranche.A, 3, account)
        ledger.deposit(Tranche.B, 5, account)
    rebalances.publish(RebalanceRatios.from_decimals(5, ratio_m="1.5", ratio_ab="0.5"))
    rebalances.publish(
        RebalanceRatios.from_decimals(
            8, ratio_m="1.5", ratio_a2m="0.3", ratio_b2m="0.7", ratio_ab="0.5"
        )
    )
    clock.now = 10
    for account in accounts:
        ledger.refresh_balance(account)

    total = ledger.total_supplies()
    held = {
        tranche: sum(ledger.balance_of(tranche, account) for account in accounts)
        for tranche in Tranche
    }
    bound = len(accounts) * ledger.rebalance_version()
    for tranche in Tranche:
        assert held[tranche] <= total.get(tranche)
    # M sums three floored terms per account, A and B one each.
    assert total.m - held[Tranche.M] < 3 * bound
    assert total.a - held[Tranche.A] < bound
    assert total.b - held[Tranche.B] < bound

    for account in accounts:
        for tranche in Tranche:
            amount = ledger.balance_of(tranche, account)
            if amount:
                ledger.withdraw(tranche, amount, account)
    assert ledger.total_supply(Tranche.M) == total.m - held[Tranche.M]


def test_mutations_leave_other_accounts_untouched() -> None:
    ledger, rebalances, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "bob")
    other = ledger.state.accounts["bob"]
    bob_before = other.to_payload()
    history = ledger.state.historical_integrals
    rebalances.publish(RebalanceRatios.from_decimals(5, ratio_m=2))
    clock.now = 10

    ledger.deposit(Tranche.M, 50, "alice")
    assert ledger.claim_rewards("alice") == 0
    assert ledger.claimable_rewards("bob") == 100
    alice_before = ledger.state.accounts["alice"].to_payload()
    with pytest.raises(InsufficientBalanceError):
        ledger.withdraw(Tranche.M, 500, "alice")

    assert ledger.state.accounts["bob"] is other
    assert other.to_payload() == bob_before
    assert ledger.state.historical_integrals is history
    assert ledger.state.accounts["alice"].to_payload() == alice_before
    assert ledger.balance_of(Tranche.M, "bob") == 200


def test_claim_mints_and_resets() -> None:
    ledger, _, token, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")
    clock.now = 5

    assert ledger.claim_rewards("alice") == 50
    assert ledger.claim_rewards("alice") == 0
    assert token.balance_of("alice") == 50
    assert token.total_minted == 50
    assert ledger.claimable_rewards("alice") == 0


def test_claim_with_nothing_accrued_mints_nothing() -> None:
    ledger, _, token, _ = build_ledger()

    assert ledger.claim_rewards("carol") == 0
    assert token.balances == {}
    assert "carol" not in ledger.state.accounts


def test_failed_mint_rolls_back_claim() -> None:
    ledger, _, _, clock = build_ledger(reward_token=FailingRewardToken())
    ledger.deposit(Tranche.M, 100, "alice")
    clock.now = 5
    before = ledger.state.to_payload()

    with pytest.raises(RuntimeError):
        ledger.claim_rewards("alice")

    assert ledger.state.to_payload() == before
    assert ledger.claimable_rewards("alice") == 50


def test_insufficient_balance_rolls_back() -> None:
    ledger, _, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")
    clock.now = 5
    before = ledger.state.to_payload()

    with pytest.raises(InsufficientBalanceError):
        ledger.withdraw(Tranche.M, 150, "alice")
    with pytest.raises(InsufficientBalanceError):
        ledger.withdraw(Tranche.A, 1, "alice")

    assert ledger.state.to_payload() == before


def test_amount_validation() -> None:
    ledger, _, _, _ = build_ledger()

    with pytest.raises(ValueError):
        ledger.deposit(Tranche.M, 0, "alice")
    with pytest.raises(ValueError):
        ledger.lock(Tranche.M, "alice", -5)
    with pytest.raises(TypeError):
        ledger.deposit(Tranche.M, True, "alice")  # type: ignore[arg-type]


def test_overflowing_deposit_is_rejected() -> None:
    ledger, _, _, _ = build_ledger()
    ledger.deposit(Tranche.M, 1, "alice")
    before = ledger.state.to_payload()

    with pytest.raises(ArithmeticOverflowError):
        ledger.deposit(Tranche.M, MAX_UINT256, "alice")
    with pytest.raises(ArithmeticOverflowError):
        ledger.deposit(Tranche.A, MAX_UINT256 + 1, "bob")

    assert ledger.state.to_payload() == before


def test_version_argument_must_match_rebalance_count() -> None:
    ledger, rebalances, _, clock = build_ledger()
    rebalances.publish(RebalanceRatios.from_decimals(5, ratio_m=2))
    clock.now = 10

    with pytest.raises(InvalidVersionError):
        ledger.deposit(Tranche.M, 10, "alice", version=0)

    ledger.deposit(Tranche.M, 10, "alice", version=1)
    with pytest.raises(InvalidVersionError):
        ledger.withdraw(Tranche.M, 10, "alice", version=2)
    assert ledger.balance_of(Tranche.M, "alice") == 10


def test_refresh_balance_to_intermediate_version() -> None:
    ledger, rebalances, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")
    rebalances.publish(RebalanceRatios.from_decimals(5, ratio_m=2))
    rebalances.publish(RebalanceRatios.from_decimals(8, ratio_m=2))
    clock.now = 10

    ledger.refresh_balance("alice", 1)

    record = ledger.state.accounts["alice"]
    assert record.balance_version == 1
    assert record.available == TrancheAmounts(m=200)
    assert record.claimable_reward == 80

    with pytest.raises(InvalidVersionError):
        ledger.refresh_balance("alice", 0)
    with pytest.raises(InvalidVersionError):
        ledger.refresh_balance("alice", 3)

    ledger.refresh_balance("alice")

    record = ledger.state.accounts["alice"]
    assert record.balance_version == 2
    assert record.available == TrancheAmounts(m=400)
    assert ledger.claimable_rewards("alice") == 100


def test_refresh_balance_is_idempotent() -> None:
    ledger, rebalances, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")
    rebalances.publish(RebalanceRatios.from_decimals(5, ratio_m=2))
    clock.now = 10

    ledger.refresh_balance("alice")
    once = ledger.state.to_payload()
    ledger.refresh_balance("alice")

    assert ledger.state.to_payload() == once


def test_views_do_not_mutate_state() -> None:
    ledger, rebalances, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")
    ledger.lock(Tranche.M, "alice", 40)
    rebalances.publish(RebalanceRatios.from_decimals(20, ratio_m=2))
    clock.now = 50
    before = ledger.state.to_payload()

    assert ledger.rebalance_version() == 1
    assert ledger.available_balance_of(Tranche.M, "alice") == 120
    assert ledger.locked_balance_of(Tranche.M, "alice") == 80
    assert ledger.balance_of(Tranche.M, "alice") == 200
    assert ledger.reward_weight_of("alice") == 200
    assert ledger.claimable_rewards("alice") == 500
    assert ledger.total_supply(Tranche.M) == 200
    assert ledger.claimable_rewards("nobody") == 0

    assert ledger.state.to_payload() == before
    assert ledger.state.total_supply_version == 0
    assert "nobody" not in ledger.state.accounts


def test_locked_funds_keep_earning() -> None:
    ledger, _, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")
    ledger.lock(Tranche.M, "alice", 100)

    clock.now = 5

    assert ledger.available_balance_of(Tranche.M, "alice") == 0
    assert ledger.locked_balance_of(Tranche.M, "alice") == 100
    assert ledger.reward_weight_of("alice") == 100
    assert ledger.claimable_rewards("alice") == 50


def test_lock_unlock_round_trip() -> None:
    ledger, _, _, _ = build_ledger()
    ledger.deposit(Tranche.A, 30, "alice")

    ledger.lock(Tranche.A, "alice", 30)
    with pytest.raises(InsufficientBalanceError):
        ledger.lock(Tranche.A, "alice", 1)
    with pytest.raises(InsufficientBalanceError):
        ledger.unlock(Tranche.A, "alice", 31)
    ledger.unlock(Tranche.A, "alice", 30)

    assert ledger.available_balance_of(Tranche.A, "alice") == 30
    assert ledger.locked_balance_of(Tranche.A, "alice") == 0
    assert ledger.total_supply(Tranche.A) == 30


def test_trading_moves_funds_out_of_supply() -> None:
    ledger, _, _, _ = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")

    ledger.trade_available(Tranche.M, "alice", 30)
    ledger.lock(Tranche.M, "alice", 20)
    ledger.trade_locked(Tranche.M, "alice", 20)

    assert ledger.available_balance_of(Tranche.M, "alice") == 50
    assert ledger.locked_balance_of(Tranche.M, "alice") == 0
    assert ledger.total_supply(Tranche.M) == 50
    with pytest.raises(InsufficientBalanceError):
        ledger.trade_locked(Tranche.M, "alice", 1)
    with pytest.raises(InsufficientBalanceError):
        ledger.trade_available(Tranche.M, "alice", 51)


def test_trade_proceeds_are_converted_into_current_version() -> None:
    ledger, rebalances, _, clock = build_ledger()
    ledger.deposit(Tranche.M, 100, "alice")
    ledger.lock(Tranche.M, "alice", 50)
    rebalances.publish(RebalanceRatios.from_decimals(5, ratio_m=2))
    clock.now = 10

    unlocked = ledger.convert_and_unlock("alice", TrancheAmounts(m=50), 0)
    credited = ledger.rebalance_and_clear_trade("bob", TrancheAmounts(m=10, a=4), 0)

    assert unlocked == TrancheAmounts(m=100)
    assert credited == TrancheAmounts(m=20, a=4)
    assert ledger.available_balance_of(Tranche.M, "alice") == 200
    assert ledger.locked_balance_of(Tranche.M, "alice") == 0
    assert ledger.available_balance_of(Tranche.M, "bob") == 20
    assert ledger.total_supplies() == TrancheAmounts(m=220, a=4)

    with pytest.raises(InvalidVersionError):
        ledger.rebalance_and_clear_trade("bob", TrancheAmounts(m=1), 2)
    with pytest.raises(InsufficientBalanceError):
        ledger.convert_and_unlock("alice", TrancheAmounts(m=1), 1)


def test_mutation_waits_for_global_checkpoint() -> None:
    ledger, _, _, clock = build_ledger(
        config=LedgerConfig(week_seconds=10, max_iterations=2)
    )
    ledger.deposit(Tranche.M, 100, "alice")
    clock.now = 100

    with pytest.raises(CheckpointPendingError) as exc_info:
        ledger.deposit(Tranche.M, 100, "alice")
    assert isinstance(exc_info.value, InvalidVersionError)
    assert ledger.state.checkpoint_timestamp == 0
    assert ledger.claimable_rewards("alice") == 1_000

    calls = 1
    result = ledger.checkpoint()
    while not result.converged:
        calls += 1
        result = ledger.checkpoint()

    assert calls == 5
    assert ledger.state.checkpoint_timestamp == 100
    ledger.deposit(Tranche.M, 100, "alice")
    assert ledger.balance_of(Tranche.M, "alice") == 200
    assert ledger.claimable_rewards("alice") == 1_000
