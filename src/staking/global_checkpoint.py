"""Advance the global reward integral across week and rebalance boundaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from . import fixed_point
from .collaborators import RateWeightOracle, RebalanceOracle, rebalance_amounts
from .config import LedgerConfig
from .errors import CheckpointStalledError, InvalidVersionError
from .state import LedgerState

LOGGER = logging.getLogger("tranche_staking.global_checkpoint")


@dataclass(frozen=True)
class CheckpointResult:
    converged: bool
    steps: int
    timestamp: int
    version: int


def end_of_week(timestamp: int, week: int, offset: int = 0) -> int:
    """Return the first weekly boundary strictly after ``timestamp``."""
    return ((timestamp + week - offset) // week) * week + offset


class GlobalCheckpoint:
    """Integrate ``rate * relative_weight / total_weight`` over time.

    Each step ends at the earliest of the next week boundary, the next pending
    rebalance and ``now``. Crossing a rebalance closes the current version's
    integral into ``historical_integrals``, restarts the integral at zero and
    re-expresses the total supplies in the new version. A call performs at most
    ``max_iterations`` steps and reports whether it reached ``now``.
    """

    def __init__(
        self,
        rebalance_oracle: RebalanceOracle,
        rate_oracle: RateWeightOracle,
        config: LedgerConfig,
    ) -> None:
        self.rebalance_oracle = rebalance_oracle
        self.rate_oracle = rate_oracle
        self.config = config

    def end_of_week(self, timestamp: int) -> int:
        return end_of_week(
            timestamp, self.config.week_seconds, self.config.week_offset_seconds
        )

    def advance(
        self,
        state: LedgerState,
        now: int,
        rebalance_count: int,
        *,
        max_iterations: int | None = None,
    ) -> CheckpointResult:
        timestamp = state.checkpoint_timestamp
        version = state.total_supply_version
        if rebalance_count < version:
            raise InvalidVersionError(
                f"Rebalance count {rebalance_count} is behind ledger version {version}"
            )
        if timestamp >= now and version >= rebalance_count:
            return CheckpointResult(
                converged=True, steps=0, timestamp=timestamp, version=version
            )

        budget = self.config.max_iterations if max_iterations is None else max_iterations
        week = self.config.week_seconds
        fund = self.config.fund_id
        end_week = self.end_of_week(timestamp)
        relative_weight = self.rate_oracle.relative_weight(fund, end_week - week)
        rate = state.rate
        integral = state.inv_total_weight_integral
        supplies = state.total_supplies
        weight = supplies.weight()
        rebalance_at = self._next_rebalance(version, rebalance_count, timestamp, now)

        steps = 0
        while steps < budget and (timestamp < now or version < rebalance_count):
            end = min(end_week, now if rebalance_at is None else rebalance_at)
            end = max(end, timestamp)
            if weight > 0 and end > timestamp:
                emitted = fixed_point.multiply_decimal(
                    fixed_point.mul(rate, end - timestamp), relative_weight
                )
                integral = fixed_point.add(
                    integral, fixed_point.divide_decimal_precise(emitted, weight)
                )

            if rebalance_at is not None and end == rebalance_at:
                state.historical_integrals.append(integral)
                integral = 0
                supplies = rebalance_amounts(self.rebalance_oracle, supplies, version)
                version += 1
                weight = supplies.weight()
                LOGGER.info(
                    "Crossed rebalance into version %s at %s (total weight %s).",
                    version,
                    end,
                    weight,
                )
                rebalance_at = self._next_rebalance(version, rebalance_count, end, now)

            if end == end_week:
                rate = self.rate_oracle.rate(end_week)
                relative_weight = self.rate_oracle.relative_weight(fund, end_week)
                end_week += week
                LOGGER.debug(
                    "Crossed week boundary at %s (rate %s, relative weight %s).",
                    end,
                    rate,
                    relative_weight,
                )

            timestamp = end
            steps += 1

        state.rate = rate
        state.checkpoint_timestamp = timestamp
        state.inv_total_weight_integral = integral
        state.total_supplies = supplies
        state.total_supply_version = version

        converged = timestamp >= now and version >= rebalance_count
        if not converged:
            LOGGER.warning(
                "Global checkpoint stopped after %s steps at %s (target %s, version %s/%s).",
                steps,
                timestamp,
                now,
                version,
                rebalance_count,
            )
        return CheckpointResult(
            converged=converged, steps=steps, timestamp=timestamp, version=version
        )

    def advance_until_converged(
        self,
        state: LedgerState,
        now: int,
        rebalance_count: int,
        *,
        max_iterations: int | None = None,
    ) -> CheckpointResult:
        """Repeat ``advance`` until it reaches ``now`` and ``rebalance_count``."""
        result = self.advance(
            state, now, rebalance_count, max_iterations=max_iterations
        )
        while not result.converged:
            if result.steps == 0:
                raise CheckpointStalledError(
                    f"Global checkpoint made no progress at {result.timestamp} "
                    f"(target {now}, version {result.version}/{rebalance_count})"
                )
            result = self.advance(
                state, now, rebalance_count, max_iterations=max_iterations
            )
        return result

    def _next_rebalance(
        self, version: int, rebalance_count: int, timestamp: int, now: int
    ) -> int | None:
        if version >= rebalance_count:
            return None
        # Rebalances behind the cursor are crossed immediately, future ones at now.
        at = self.rebalance_oracle.rebalance_timestamp(version)
        return max(min(at, now), timestamp)
