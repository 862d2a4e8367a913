"""Step-function reward rate and relative weight schedules."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Iterable

from staking.fixed_point import UNIT


@dataclass
class StepSchedule:
    """Piecewise-constant value: each point applies from its start onwards."""

    points: list[tuple[int, int]] = field(default_factory=list)
    default: int = 0

    def __post_init__(self) -> None:
        self.points = sorted(self.points)
        for start, value in self.points:
            if value < 0:
                raise ValueError(f"Schedule value must be non-negative at {start}, got: {value}")

    def set(self, start: int, value: int) -> None:
        if value < 0:
            raise ValueError(f"Schedule value must be non-negative, got: {value}")
        self.points = sorted(
            [point for point in self.points if point[0] != start] + [(start, value)]
        )

    def value_at(self, timestamp: int) -> int:
        index = bisect_right([start for start, _ in self.points], timestamp)
        if index == 0:
            return self.default
        return self.points[index - 1][1]


class ScheduledRateOracle:
    """Rate/weight oracle backed by step schedules.

    Relative weights are UNIT-scaled fractions; funds without their own
    schedule fall back to ``default_relative_weight``.
    """

    def __init__(
        self,
        rates: Iterable[tuple[int, int]] = (),
        relative_weights: Iterable[tuple[int, int]] = (),
        *,
        default_relative_weight: int = UNIT,
        fund_weights: dict[str, StepSchedule] | None = None,
    ) -> None:
        if not (0 <= default_relative_weight <= UNIT):
            raise ValueError(
                f"default_relative_weight must be within [0, {UNIT}], got: {default_relative_weight}"
            )
        self.rates = StepSchedule(list(rates))
        self.relative_weights = StepSchedule(
            list(relative_weights), default=default_relative_weight
        )
        self.fund_weights = dict(fund_weights or {})

    def rate(self, timestamp: int) -> int:
        return self.rates.value_at(timestamp)

    def relative_weight(self, fund: str, timestamp: int) -> int:
        schedule = self.fund_weights.get(fund, self.relative_weights)
        return schedule.value_at(timestamp)
