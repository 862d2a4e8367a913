"""Deterministic in-memory collaborators for the staking ledger."""

from .rate_schedule import ScheduledRateOracle, StepSchedule
from .rebalance import InMemoryRebalanceOracle, RebalanceRatios
from .reward_token import InMemoryRewardToken

__all__ = [
    "InMemoryRebalanceOracle",
    "InMemoryRewardToken",
    "RebalanceRatios",
    "ScheduledRateOracle",
    "StepSchedule",
]
