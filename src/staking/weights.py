"""Reward weight of a tranche balance."""

from __future__ import annotations

from . import fixed_point

REWARD_WEIGHT_M = 3
REWARD_WEIGHT_A = 4
REWARD_WEIGHT_B = 2


def reward_weight(amount_m: int, amount_a: int, amount_b: int) -> int:
    """Return ``(3M + 4A + 2B) / 3`` with M as the unit of weight.

    Global and per-account checkpoints both use this, so an account's share
    of the integral stays consistent with the total.
    """
    total = fixed_point.add(
        fixed_point.add(amount_m * REWARD_WEIGHT_M, amount_a * REWARD_WEIGHT_A),
        amount_b * REWARD_WEIGHT_B,
    )
    return total // REWARD_WEIGHT_M
