"""Ratio-based rebalance oracle."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from staking import fixed_point
from staking.errors import InvalidVersionError
from staking.fixed_point import UNIT

LOGGER = logging.getLogger("tranche_staking.rebalance")


@dataclass(frozen=True)
class RebalanceRatios:
    """One rebalance, with UNIT-scaled conversion ratios.

    M absorbs the A and B value above the reset point (``ratio_a2m``,
    ``ratio_b2m``) and is rescaled by ``ratio_m``; A and B are both rescaled
    by ``ratio_ab``.
    """

    timestamp: int
    ratio_m: int = UNIT
    ratio_a2m: int = 0
    ratio_b2m: int = 0
    ratio_ab: int = UNIT

    def __post_init__(self) -> None:
        if self.timestamp < 0:
            raise ValueError(f"timestamp must be non-negative, got: {self.timestamp}")
        for name in ("ratio_m", "ratio_a2m", "ratio_b2m", "ratio_ab"):
            fixed_point.checked(getattr(self, name))

    @classmethod
    def from_decimals(
        cls,
        timestamp: int,
        *,
        ratio_m: Decimal | int | str = 1,
        ratio_a2m: Decimal | int | str = 0,
        ratio_b2m: Decimal | int | str = 0,
        ratio_ab: Decimal | int | str = 1,
    ) -> "RebalanceRatios":
        return cls(
            timestamp=timestamp,
            ratio_m=fixed_point.to_fixed(ratio_m),
            ratio_a2m=fixed_point.to_fixed(ratio_a2m),
            ratio_b2m=fixed_point.to_fixed(ratio_b2m),
            ratio_ab=fixed_point.to_fixed(ratio_ab),
        )

    def apply(self, amount_m: int, amount_a: int, amount_b: int) -> tuple[int, int, int]:
        new_m = fixed_point.add(
            fixed_point.add(
                fixed_point.multiply_decimal(amount_m, self.ratio_m),
                fixed_point.multiply_decimal(amount_a, self.ratio_a2m),
            ),
            fixed_point.multiply_decimal(amount_b, self.ratio_b2m),
        )
        new_a = fixed_point.multiply_decimal(amount_a, self.ratio_ab)
        new_b = fixed_point.multiply_decimal(amount_b, self.ratio_ab)
        return new_m, new_a, new_b


class InMemoryRebalanceOracle:
    """Rebalance history published in order by the fund."""

    def __init__(self, rebalances: list[RebalanceRatios] | None = None) -> None:
        self.rebalances: list[RebalanceRatios] = []
        for ratios in rebalances or []:
            self.publish(ratios)

    def publish(self, ratios: RebalanceRatios) -> int:
        """Record a rebalance and return the version it creates."""
        if self.rebalances and ratios.timestamp < self.rebalances[-1].timestamp:
            raise ValueError(
                f"Rebalance at {ratios.timestamp} precedes the previous one "
                f"at {self.rebalances[-1].timestamp}"
            )
        self.rebalances.append(ratios)
        LOGGER.info(
            "Published rebalance %s at %s.", len(self.rebalances), ratios.timestamp
        )
        return len(self.rebalances)

    def rebalance_count(self) -> int:
        return len(self.rebalances)

    def rebalance_timestamp(self, version: int) -> int:
        return self._get(version).timestamp

    def apply_rebalance(
        self, amount_m: int, amount_a: int, amount_b: int, version: int
    ) -> tuple[int, int, int]:
        return self._get(version).apply(amount_m, amount_a, amount_b)

    def _get(self, version: int) -> RebalanceRatios:
        if version < 0 or version >= len(self.rebalances):
            raise InvalidVersionError(
                f"Unknown rebalance version {version} (count {len(self.rebalances)})"
            )
        return self.rebalances[version]
