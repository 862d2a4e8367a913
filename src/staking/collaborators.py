"""Collaborator interfaces consumed by the ledger."""

from __future__ import annotations

from typing import Protocol

from .state import TrancheAmounts


class RebalanceOracle(Protocol):
    def rebalance_count(self) -> int:
        """Return the number of rebalances that have happened so far."""

    def rebalance_timestamp(self, version: int) -> int:
        """Return the time of the rebalance that moves ``version`` to ``version + 1``."""

    def apply_rebalance(
        self, amount_m: int, amount_a: int, amount_b: int, version: int
    ) -> tuple[int, int, int]:
        """Express a balance in ``version`` as the equivalent balance in ``version + 1``."""


class RateWeightOracle(Protocol):
    def rate(self, timestamp: int) -> int:
        """Return the global reward emission per second for the week at ``timestamp``."""

    def relative_weight(self, fund: str, timestamp: int) -> int:
        """Return the fund's UNIT-scaled share of the emission for the week at ``timestamp``."""


class RewardToken(Protocol):
    def mint(self, account: str, amount: int) -> None:
        """Mint ``amount`` reward tokens to ``account``."""


def rebalance_amounts(
    oracle: RebalanceOracle, amounts: TrancheAmounts, version: int
) -> TrancheAmounts:
    """Express ``amounts`` held in ``version`` as amounts in ``version + 1``."""
    amount_m, amount_a, amount_b = oracle.apply_rebalance(
        amounts.m, amounts.a, amounts.b, version
    )
    return TrancheAmounts(m=amount_m, a=amount_a, b=amount_b)
