"""Settle one account against the global integral, replaying missed rebalances."""

from __future__ import annotations

import logging

from . import fixed_point
from .collaborators import RebalanceOracle, rebalance_amounts
from .errors import InvalidVersionError
from .state import LedgerState

LOGGER = logging.getLogger("tranche_staking.account_checkpoint")


class AccountCheckpoint:
    def __init__(self, rebalance_oracle: RebalanceOracle) -> None:
        self.rebalance_oracle = rebalance_oracle

    def settle(self, state: LedgerState, account: str, target_version: int) -> int:
        """Bring ``account`` to ``target_version`` and accrue its rewards.

        Rewards for each closed version use the balances the account held in
        that version against ``historical_integrals[v]``; balances are then
        rebalanced into ``v + 1`` and the baseline restarts at zero. The final
        period accrues against the integral of ``target_version`` itself,
        which is the live integral when the target is the ledger's current
        version. Returns the reward accrued by this call.
        """
        if target_version > state.total_supply_version:
            raise InvalidVersionError(
                f"Cannot settle {account} to version {target_version}; "
                f"global state is at version {state.total_supply_version}"
            )
        record = state.account(account)
        if record.balance_version > target_version:
            return 0

        current_integral = state.version_integral(target_version)
        if (
            record.user_integral == current_integral
            and record.balance_version == target_version
        ):
            return 0

        available = record.available
        locked = record.locked
        baseline = record.user_integral
        accrued = 0
        for version in range(record.balance_version, target_version):
            weight = (available + locked).weight()
            closing = state.historical_integral(version)
            accrued = fixed_point.add(
                accrued,
                fixed_point.multiply_decimal_precise(
                    weight, fixed_point.sub(closing, baseline)
                ),
            )
            if not available.is_zero():
                available = rebalance_amounts(self.rebalance_oracle, available, version)
            if not locked.is_zero():
                locked = rebalance_amounts(self.rebalance_oracle, locked, version)
            baseline = 0

        weight = (available + locked).weight()
        accrued = fixed_point.add(
            accrued,
            fixed_point.multiply_decimal_precise(
                weight, fixed_point.sub(current_integral, baseline)
            ),
        )

        record.claimable_reward = fixed_point.add(record.claimable_reward, accrued)
        record.user_integral = current_integral
        if record.balance_version != target_version:
            LOGGER.debug(
                "Migrated %s balances from version %s to %s.",
                account,
                record.balance_version,
                target_version,
            )
            record.available = available
            record.locked = locked
            record.balance_version = target_version
        return accrued
