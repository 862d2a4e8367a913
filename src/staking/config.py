"""Ledger settings."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from utils.config_validator import ConfigValidationError, validate_ledger_config

WEEK = 7 * 86400
DEFAULT_MAX_ITERATIONS = 500


@dataclass(frozen=True)
class LedgerConfig:
    week_seconds: int = WEEK
    week_offset_seconds: int = 0
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    fund_id: str = "fund"

    def __post_init__(self) -> None:
        # A zero step budget or week length would stall every checkpoint.
        validate_ledger_config(asdict(self))


def build_ledger_config(raw: dict[str, Any] | None) -> LedgerConfig:
    """Validate a settings mapping and build a ``LedgerConfig``."""
    if raw is None:
        return LedgerConfig()
    if not isinstance(raw, dict):
        raise ConfigValidationError("ledger settings must be a mapping")
    validate_ledger_config(raw)
    return LedgerConfig(
        week_seconds=raw.get("week_seconds", WEEK),
        week_offset_seconds=raw.get("week_offset_seconds", 0),
        max_iterations=raw.get("max_iterations", DEFAULT_MAX_ITERATIONS),
        fund_id=str(raw.get("fund_id", "fund")).strip(),
    )
