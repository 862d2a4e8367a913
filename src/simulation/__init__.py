"""Scenario replay for the staking ledger."""

from .runner import ScenarioReport, ScenarioRunner, run_scenario
from .schemas import EventAction, LedgerEvent, Scenario

__all__ = [
    "EventAction",
    "LedgerEvent",
    "Scenario",
    "ScenarioReport",
    "ScenarioRunner",
    "run_scenario",
]
