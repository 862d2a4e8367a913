"""Configuration validation utilities for the tranche staking ledger."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

EVENT_ACTIONS = {
    "deposit",
    "withdraw",
    "lock",
    "unlock",
    "trade_available",
    "trade_locked",
    "rebalance_and_clear_trade",
    "convert_and_unlock",
    "claim",
    "refresh",
    "checkpoint",
}
TRANCHES = {"M", "A", "B"}
REBALANCE_RATIOS = ("ratio_m", "ratio_a2m", "ratio_b2m", "ratio_ab")


class ConfigValidationError(ValueError):
    """Raised when configuration validation fails."""


def validate_non_negative_decimal(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a non-negative decimal value."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    decimal_value = _as_decimal(config, field)
    if decimal_value < 0:
        raise ConfigValidationError(
            f"{field} must be non-negative, got: {decimal_value}"
        )


def validate_fraction(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a fraction between 0 and 1."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    decimal_value = _as_decimal(config, field)
    if not (Decimal("0") <= decimal_value <= Decimal("1")):
        raise ConfigValidationError(
            f"{field} must be between 0 and 1, got: {decimal_value}"
        )


def validate_positive_integer(
    config: dict[str, Any], field: str, *, required: bool = True, minimum: int = 1
) -> None:
    """Validate that a field is a positive integer."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    value = config[field]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigValidationError(
            f"{field} must be an integer, got: {type(value).__name__}"
        )

    if value < minimum:
        raise ConfigValidationError(f"{field} must be >= {minimum}, got: {value}")


def validate_non_negative_integer(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is an integer >= 0."""
    validate_positive_integer(config, field, required=required, minimum=0)


def validate_choice(
    config: dict[str, Any], field: str, choices: set[str], *, required: bool = True
) -> None:
    """Validate that a field is one of the allowed choices."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    value = config[field]
    if not isinstance(value, str):
        raise ConfigValidationError(
            f"{field} must be a string, got: {type(value).__name__}"
        )

    if value not in choices:
        choices_str = ", ".join(sorted(choices))
        raise ConfigValidationError(
            f"{field} must be one of [{choices_str}], got: {value}"
        )


def validate_ledger_config(config: dict[str, Any]) -> None:
    """Validate the ``ledger`` settings section."""
    validate_positive_integer(config, "week_seconds", required=False)
    validate_non_negative_integer(config, "week_offset_seconds", required=False)
    validate_positive_integer(config, "max_iterations", required=False)
    if "fund_id" in config and (
        not isinstance(config["fund_id"], str) or not config["fund_id"].strip()
    ):
        raise ConfigValidationError("fund_id must be a non-empty string")
    week = config.get("week_seconds", 7 * 86400)
    offset = config.get("week_offset_seconds", 0)
    if offset >= week:
        raise ConfigValidationError(
            f"week_offset_seconds must be less than week_seconds ({week}), got: {offset}"
        )


def validate_config(config: dict[str, Any]) -> None:
    """
    Validate a scenario/ledger configuration file.

    Args:
        config: Configuration dictionary

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a dictionary")

    if not config:
        raise ConfigValidationError("Configuration cannot be empty")

    ledger = config.get("ledger", {})
    if not isinstance(ledger, dict):
        raise ConfigValidationError("ledger must be a mapping")
    validate_ledger_config(ledger)

    validate_non_negative_integer(config, "start_time", required=False)
    validate_fraction(config, "default_relative_weight", required=False)
    for section in ("rates", "relative_weights", "rebalances", "events"):
        if section in config and not isinstance(config[section], list):
            raise ConfigValidationError(f"{section} must be a list")

    for point in _entries(config, "rates"):
        validate_non_negative_integer(point, "start")
        validate_non_negative_integer(point, "rate")
    for point in _entries(config, "relative_weights"):
        validate_non_negative_integer(point, "start")
        validate_fraction(point, "weight")
    for rebalance in _entries(config, "rebalances"):
        validate_non_negative_integer(rebalance, "timestamp")
        for field in REBALANCE_RATIOS:
            validate_non_negative_decimal(rebalance, field, required=False)
    for event in _entries(config, "events"):
        validate_non_negative_integer(event, "timestamp")
        validate_choice(event, "action", EVENT_ACTIONS)
        if event.get("tranche") is not None:
            validate_choice(event, "tranche", TRANCHES)


def _entries(config: dict[str, Any], section: str) -> list[dict[str, Any]]:
    entries = config.get(section, [])
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigValidationError(f"{section}[{index}] must be a mapping")
    return entries


def _as_decimal(config: dict[str, Any], field: str) -> Decimal:
    value = config[field]
    try:
        decimal_value = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ConfigValidationError(
            f"{field} must be a valid number, got: {value}"
        ) from exc
    if not decimal_value.is_finite():
        raise ConfigValidationError(f"{field} must be a finite number, got: {value}")
    return decimal_value
