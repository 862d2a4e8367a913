"""Staking ledger facade: checkpoint globally, settle the account, then mutate."""

from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Callable, TypeVar

from .account_checkpoint import AccountCheckpoint
from .collaborators import (
    RateWeightOracle,
    RebalanceOracle,
    RewardToken,
    rebalance_amounts,
)
from .config import LedgerConfig
from .errors import CheckpointPendingError, InvalidVersionError
from .global_checkpoint import CheckpointResult, GlobalCheckpoint
from .state import AccountState, LedgerState, Tranche, TrancheAmounts

LOGGER = logging.getLogger("tranche_staking.ledger")

T = TypeVar("T")


class StakingLedger:
    """Three-tranche staking ledger accruing a shared reward stream.

    Every mutating call brings the global integral up to ``now``, settles the
    account into the current rebalance version, and only then changes
    balances. The global fields and the accounts a call names are snapshotted
    first and restored if it raises, so a failing call commits nothing.
    Views run the same projection and always restore.

    Example:
        ledger = StakingLedger(rebalances, schedule, reward_token)
        ledger.deposit(Tranche.M, 100, "alice")
        ledger.claim_rewards("alice")
    """

    def __init__(
        self,
        rebalance_oracle: RebalanceOracle,
        rate_oracle: RateWeightOracle,
        reward_token: RewardToken,
        config: LedgerConfig | None = None,
        *,
        state: LedgerState | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.config = config or LedgerConfig()
        self.rebalance_oracle = rebalance_oracle
        self.rate_oracle = rate_oracle
        self.reward_token = reward_token
        self._clock = clock or (lambda: int(time.time()))
        self._global = GlobalCheckpoint(rebalance_oracle, rate_oracle, self.config)
        self._accounts = AccountCheckpoint(rebalance_oracle)
        self._lock = Lock()
        if state is None:
            start = self._clock()
            state = LedgerState(
                rate=rate_oracle.rate(start),
                checkpoint_timestamp=start,
            )
        self.state = state

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def checkpoint(self) -> CheckpointResult:
        """Advance the global integral; partial progress is kept."""

        def run(state: LedgerState) -> CheckpointResult:
            return self._global.advance(
                state, self._clock(), self.rebalance_oracle.rebalance_count()
            )

        return self._transact(run)

    def deposit(
        self,
        tranche: Tranche,
        amount: int,
        recipient: str,
        version: int | None = None,
    ) -> None:
        _require_positive(amount)

        def run(state: LedgerState) -> None:
            record = self._settle_current(state, recipient, version)
            record.available = record.available.add(tranche, amount)
            state.total_supplies = state.total_supplies.add(tranche, amount)
            LOGGER.info("Deposited %s %s for %s.", amount, Tranche(tranche).value, recipient)

        self._transact(run, recipient)

    def withdraw(
        self,
        tranche: Tranche,
        amount: int,
        account: str,
        version: int | None = None,
    ) -> None:
        _require_positive(amount)

        def run(state: LedgerState) -> None:
            record = self._settle_current(state, account, version)
            record.available = record.available.subtract(tranche, amount)
            state.total_supplies = state.total_supplies.subtract(tranche, amount)
            LOGGER.info("Withdrew %s %s for %s.", amount, Tranche(tranche).value, account)

        self._transact(run, account)

    def lock(self, tranche: Tranche, account: str, amount: int) -> None:
        """Reserve available funds, e.g. for a pending order. Locked funds keep earning."""
        _require_positive(amount)

        def run(state: LedgerState) -> None:
            record = self._settle_current(state, account)
            record.available = record.available.subtract(tranche, amount)
            record.locked = record.locked.add(tranche, amount)

        self._transact(run, account)

    def unlock(self, tranche: Tranche, account: str, amount: int) -> None:
        _require_positive(amount)

        def run(state: LedgerState) -> None:
            record = self._settle_current(state, account)
            record.locked = record.locked.subtract(tranche, amount)
            record.available = record.available.add(tranche, amount)

        self._transact(run, account)

    def trade_available(self, tranche: Tranche, account: str, amount: int) -> None:
        """Move available funds out of the ledger to a trading venue."""
        _require_positive(amount)

        def run(state: LedgerState) -> None:
            record = self._settle_current(state, account)
            record.available = record.available.subtract(tranche, amount)
            state.total_supplies = state.total_supplies.subtract(tranche, amount)

        self._transact(run, account)

    def trade_locked(self, tranche: Tranche, account: str, amount: int) -> None:
        """Move locked funds out of the ledger after a matched order."""
        _require_positive(amount)

        def run(state: LedgerState) -> None:
            record = self._settle_current(state, account)
            record.locked = record.locked.subtract(tranche, amount)
            state.total_supplies = state.total_supplies.subtract(tranche, amount)

        self._transact(run, account)

    def rebalance_and_clear_trade(
        self, account: str, amounts: TrancheAmounts, amount_version: int
    ) -> TrancheAmounts:
        """Credit settled trade proceeds expressed in ``amount_version``.

        Returns the credited amounts in the current version.
        """

        def run(state: LedgerState) -> TrancheAmounts:
            record = self._settle_current(state, account)
            converted = self._convert(amounts, amount_version, state.total_supply_version)
            record.available = record.available + converted
            state.total_supplies = state.total_supplies + converted
            return converted

        return self._transact(run, account)

    def convert_and_unlock(
        self, account: str, amounts: TrancheAmounts, amount_version: int
    ) -> TrancheAmounts:
        """Unlock amounts that were locked in ``amount_version``.

        Returns the unlocked amounts in the current version.
        """

        def run(state: LedgerState) -> TrancheAmounts:
            record = self._settle_current(state, account)
            converted = self._convert(amounts, amount_version, state.total_supply_version)
            record.locked = record.locked.subtract_all(converted)
            record.available = record.available + converted
            return converted

        return self._transact(run, account)

    def claim_rewards(self, account: str) -> int:
        def run(state: LedgerState) -> int:
            if account not in state.accounts:
                # Nothing can have accrued; do not create a record.
                self._checkpoint_or_fail(state)
                return 0
            record = self._settle_current(state, account)
            amount = record.claimable_reward
            record.claimable_reward = 0
            if amount > 0:
                self.reward_token.mint(account, amount)
                LOGGER.info("Claimed %s reward for %s.", amount, account)
            return amount

        return self._transact(run, account)

    def refresh_balance(self, account: str, target_version: int | None = None) -> None:
        """Settle ``account`` into ``target_version`` (default: the current version)."""

        def run(state: LedgerState) -> None:
            rebalance_count = self._checkpoint_or_fail(state)
            target = rebalance_count if target_version is None else target_version
            if target < 0 or target > rebalance_count:
                raise InvalidVersionError(
                    f"Target version {target} out of bounds (rebalance count {rebalance_count})"
                )
            current = state.peek_account(account).balance_version
            if target < current:
                raise InvalidVersionError(
                    f"Cannot move {account} back from version {current} to {target}"
                )
            self._accounts.settle(state, account, target)

        self._transact(run, account)

    # ------------------------------------------------------------------
    # Views (projected to now, then rolled back)
    # ------------------------------------------------------------------

    def rebalance_version(self) -> int:
        return self.rebalance_oracle.rebalance_count()

    def total_supplies(self) -> TrancheAmounts:
        return self._view(lambda state: state.total_supplies)

    def total_supply(self, tranche: Tranche) -> int:
        return self.total_supplies().get(tranche)

    def total_reward_weight(self) -> int:
        return self._view(lambda state: state.total_weight())

    def available_balance_of(self, tranche: Tranche, account: str) -> int:
        return self._view(
            lambda state: state.peek_account(account).available.get(tranche), account
        )

    def locked_balance_of(self, tranche: Tranche, account: str) -> int:
        return self._view(
            lambda state: state.peek_account(account).locked.get(tranche), account
        )

    def balance_of(self, tranche: Tranche, account: str) -> int:
        return self._view(
            lambda state: state.peek_account(account).total().get(tranche), account
        )

    def reward_weight_of(self, account: str) -> int:
        return self._view(
            lambda state: state.peek_account(account).total().weight(), account
        )

    def claimable_rewards(self, account: str) -> int:
        return self._view(
            lambda state: state.peek_account(account).claimable_reward, account
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transact(self, operation: Callable[[LedgerState], T], *accounts: str) -> T:
        """Run ``operation`` on the live state; restore what it may touch on failure.

        Only the global fields and ``accounts`` are snapshotted, so the cost
        does not depend on how many other accounts the ledger holds.
        """
        with self._lock:
            snapshot = self.state.snapshot(*accounts)
            try:
                return operation(self.state)
            except BaseException:
                self.state.restore(snapshot)
                raise

    def _view(self, read: Callable[[LedgerState], T], account: str | None = None) -> T:
        with self._lock:
            state = self.state
            snapshot = state.snapshot(*(() if account is None else (account,)))
            try:
                self._global.advance_until_converged(
                    state, self._clock(), self.rebalance_oracle.rebalance_count()
                )
                if account is not None and account in state.accounts:
                    self._accounts.settle(state, account, state.total_supply_version)
                return read(state)
            finally:
                state.restore(snapshot)

    def _checkpoint_or_fail(self, state: LedgerState) -> int:
        rebalance_count = self.rebalance_oracle.rebalance_count()
        result = self._global.advance(state, self._clock(), rebalance_count)
        if not result.converged:
            raise CheckpointPendingError(
                f"Global checkpoint reached {result.timestamp} (version {result.version}) "
                "but not the current time; call checkpoint() again"
            )
        return rebalance_count

    def _settle_current(
        self, state: LedgerState, account: str, version: int | None = None
    ) -> AccountState:
        rebalance_count = self._checkpoint_or_fail(state)
        if version is not None and version != rebalance_count:
            raise InvalidVersionError(
                f"Amounts quoted in version {version}, ledger is at {rebalance_count}"
            )
        self._accounts.settle(state, account, rebalance_count)
        return state.account(account)

    def _convert(
        self, amounts: TrancheAmounts, from_version: int, to_version: int
    ) -> TrancheAmounts:
        if from_version < 0 or from_version > to_version:
            raise InvalidVersionError(
                f"Amount version {from_version} out of bounds (current {to_version})"
            )
        converted = amounts
        for version in range(from_version, to_version):
            converted = rebalance_amounts(self.rebalance_oracle, converted, version)
        return converted


def _require_positive(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise TypeError(f"amount must be an int, got: {type(amount).__name__}")
    if amount <= 0:
        raise ValueError(f"amount must be positive, got: {amount}")
