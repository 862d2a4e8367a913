"""CLI entry point for the tranche staking ledger."""

from __future__ import annotations

import argparse
import importlib.util
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from simulation.runner import ScenarioReport, ScenarioRunner
from simulation.schemas import Scenario
from staking.fixed_point import HIGH_PRECISION_UNIT, from_fixed
from staking.state import LedgerState
from utils.config_validator import ConfigValidationError, validate_config
from utils.logging_config import setup_logging

LOGGER = logging.getLogger("tranche_staking.cli")

SUPPORTED_FORMATS = (".json", ".toml", ".yaml", ".yml")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="tranche staking ledger CLI")
    parser.add_argument(
        "--version", action="version", version="tranche-staking 0.1.0"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser(
        "simulate", help="Replay a scenario file against a fresh ledger."
    )
    simulate_parser.add_argument(
        "--config", required=True, help="Path to JSON/TOML/YAML scenario file."
    )
    simulate_parser.add_argument(
        "--state-out",
        help="Optional path to write the final ledger state as JSON.",
    )
    simulate_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON instead of text.",
    )
    simulate_parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    simulate_parser.add_argument(
        "--structured-logs",
        action="store_true",
        help="Emit JSON log lines on stderr.",
    )
    simulate_parser.set_defaults(handler=run_simulate)

    inspect_parser = subparsers.add_parser(
        "inspect", help="Summarise a saved ledger state."
    )
    inspect_parser.add_argument(
        "--state", required=True, help="Path to a ledger state JSON file."
    )
    inspect_parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    inspect_parser.add_argument(
        "--structured-logs",
        action="store_true",
        help="Emit JSON log lines on stderr.",
    )
    inspect_parser.set_defaults(handler=run_inspect)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if hasattr(args, "handler"):
        return args.handler(args)
    parser.print_help()
    return 1


def run_simulate(args: argparse.Namespace) -> int:
    configure_logging(args.log_level, structured=args.structured_logs)
    try:
        config_path = Path(args.config).expanduser()
        config = load_config(config_path)
        try:
            validate_config(config)
            scenario = Scenario.model_validate(config)
        except (ConfigValidationError, ValidationError) as exc:
            LOGGER.error("Scenario validation failed: %s", exc)
            return 2

        runner = ScenarioRunner(scenario)
        report = runner.run()
        if args.state_out:
            state_path = Path(args.state_out).expanduser()
            runner.state.save(state_path)
            LOGGER.info("Saved ledger state to %s", state_path)

        if args.json:
            print(json.dumps(report.to_payload(), indent=2, sort_keys=True))
        else:
            print(format_report(report))
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error during simulation: %s", exc)
        return 3
    return 0


def run_inspect(args: argparse.Namespace) -> int:
    configure_logging(args.log_level, structured=args.structured_logs)
    try:
        state_path = Path(args.state).expanduser()
        if not state_path.exists():
            raise FileNotFoundError(f"State file not found: {state_path}.")
        state = LedgerState.load(state_path)
        print(format_state(state))
    except json.JSONDecodeError as exc:
        LOGGER.error("Invalid JSON in state file %s: %s", args.state, exc)
        return 2
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error while inspecting state: %s", exc)
        return 3
    return 0


def configure_logging(level: str, *, structured: bool = False) -> None:
    """Send ledger logs to stderr so stdout carries only the report."""
    setup_logging(level=level, structured=structured)


def format_report(report: ScenarioReport) -> str:
    supplies = report.total_supplies
    lines = [
        f"Final time: {report.final_time}",
        f"Rebalance version: {report.version}",
        f"Total supply: M={supplies.m} A={supplies.a} B={supplies.b}",
        f"Events applied: {report.events_applied}",
    ]
    for name, account in sorted(report.accounts.items()):
        available = account.available
        locked = account.locked
        lines.append(
            f"  {name}: available M={available.m} A={available.a} B={available.b}"
            f" | locked M={locked.m} A={locked.a} B={locked.b}"
            f" | claimable={account.claimable_reward} claimed={account.claimed_reward}"
        )
    if report.failures:
        lines.append(f"Failed events: {len(report.failures)}")
        for failure in report.failures:
            lines.append(
                f"  #{failure.index} {failure.action} at {failure.timestamp}: {failure.error}"
            )
    return "\n".join(lines)


def format_state(state: LedgerState) -> str:
    supplies = state.total_supplies
    lines = [
        f"Checkpoint timestamp: {state.checkpoint_timestamp}",
        f"Rebalance version: {state.total_supply_version}",
        f"Rate: {state.rate}",
        f"Total supply: M={supplies.m} A={supplies.a} B={supplies.b}",
        f"Total weight: {state.total_weight()}",
        "Integral (reward per weight): "
        f"{from_fixed(state.inv_total_weight_integral, HIGH_PRECISION_UNIT)}",
        f"Closed versions: {len(state.historical_integrals)}",
        f"Accounts: {len(state.accounts)}",
    ]
    for name, record in sorted(state.accounts.items()):
        lines.append(
            f"  {name}: version={record.balance_version}"
            f" weight={record.total().weight()}"
            f" claimable={record.claimable_reward}"
        )
    return "\n".join(lines)


def load_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}. Ensure the path is correct and readable."
        )
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_FORMATS:
        supported = ", ".join(SUPPORTED_FORMATS)
        raise ValueError(
            f"Unsupported config format '{suffix}'. Supported formats: {supported}."
        )
    try:
        if suffix == ".json":
            data = json.loads(config_path.read_text(encoding="utf-8"))
        elif suffix == ".toml":
            data = load_toml(config_path)
        else:
            data = load_yaml(config_path)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config file {config_path}: {exc}. Validate the file format."
        ) from exc
    except (RuntimeError, ValueError):
        raise
    except Exception as exc:
        raise RuntimeError(
            f"Failed to parse config file {config_path}: {exc}."
        ) from exc
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {config_path} must contain a JSON/TOML/YAML object mapping."
        )
    return data


def load_toml(config_path: Path) -> dict[str, Any]:
    if sys.version_info >= (3, 11):
        import tomllib  # type: ignore[attr-defined]

        return tomllib.loads(config_path.read_text(encoding="utf-8"))
    if importlib.util.find_spec("tomli") is None:
        raise RuntimeError(
            "TOML config parsing requires Python 3.11+ or the 'tomli' package. Install tomli or use JSON/YAML."
        )
    import tomli  # type: ignore[import-not-found]

    return tomli.loads(config_path.read_text(encoding="utf-8"))


def load_yaml(config_path: Path) -> dict[str, Any]:
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"YAML config file {config_path} must contain a mapping at the top level."
        )
    return data


if __name__ == "__main__":
    sys.exit(main())
