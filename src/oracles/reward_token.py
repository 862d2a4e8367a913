"""In-memory reward token."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

LOGGER = logging.getLogger("tranche_staking.reward_token")


@dataclass
class InMemoryRewardToken:
    balances: dict[str, int] = field(default_factory=dict)
    total_minted: int = 0

    def mint(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Mint amount must be non-negative, got: {amount}")
        self.balances[account] = self.balances.get(account, 0) + amount
        self.total_minted += amount
        LOGGER.debug("Minted %s reward to %s.", amount, account)

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)
