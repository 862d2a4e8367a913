"""Pydantic schemas for ledger scenario files."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from staking.state import Tranche


class EventAction(str, Enum):
    """Ledger operation replayed by a scenario event."""

    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    LOCK = "lock"
    UNLOCK = "unlock"
    TRADE_AVAILABLE = "trade_available"
    TRADE_LOCKED = "trade_locked"
    CLEAR_TRADE = "rebalance_and_clear_trade"
    CONVERT_AND_UNLOCK = "convert_and_unlock"
    CLAIM = "claim"
    REFRESH = "refresh"
    CHECKPOINT = "checkpoint"


ACCOUNT_ACTIONS = {action for action in EventAction if action != EventAction.CHECKPOINT}
TRANCHE_ACTIONS = {
    EventAction.DEPOSIT,
    EventAction.WITHDRAW,
    EventAction.LOCK,
    EventAction.UNLOCK,
    EventAction.TRADE_AVAILABLE,
    EventAction.TRADE_LOCKED,
}
AMOUNTS_ACTIONS = {EventAction.CLEAR_TRADE, EventAction.CONVERT_AND_UNLOCK}


class RatePoint(BaseModel):
    """Reward emission per second applying from ``start``."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    rate: int = Field(ge=0)


class WeightPoint(BaseModel):
    """Fund relative weight (fraction of the emission) applying from ``start``."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    weight: Decimal

    @field_validator("weight", mode="before")
    @classmethod
    def validate_weight(cls, v: Any) -> Decimal:
        try:
            value = Decimal(str(v))
        except (ValueError, TypeError, ArithmeticError) as e:
            raise ValueError(f"Invalid relative weight: {v}") from e
        if not (Decimal("0") <= value <= Decimal("1")):
            raise ValueError("Relative weight must be between 0 and 1")
        return value


class RebalanceSpec(BaseModel):
    """Rebalance with decimal conversion ratios."""

    model_config = ConfigDict(frozen=True)

    timestamp: int = Field(ge=0)
    ratio_m: Decimal = Decimal("1")
    ratio_a2m: Decimal = Decimal("0")
    ratio_b2m: Decimal = Decimal("0")
    ratio_ab: Decimal = Decimal("1")

    @field_validator("ratio_m", "ratio_a2m", "ratio_b2m", "ratio_ab", mode="before")
    @classmethod
    def validate_ratio(cls, v: Any) -> Decimal:
        try:
            value = Decimal(str(v))
        except (ValueError, TypeError, ArithmeticError) as e:
            raise ValueError(f"Invalid rebalance ratio: {v}") from e
        if value < 0:
            raise ValueError("Rebalance ratio cannot be negative")
        return value


class AmountsSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    m: int = Field(0, ge=0)
    a: int = Field(0, ge=0)
    b: int = Field(0, ge=0)


class LedgerEvent(BaseModel):
    """One timestamped call against the ledger."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    timestamp: int = Field(ge=0)
    action: EventAction
    account: str | None = None
    tranche: Tranche | None = None
    amount: int = Field(0, ge=0)
    target_version: int | None = Field(None, ge=0)
    amount_version: int | None = Field(None, ge=0)
    amounts: AmountsSpec | None = None

    @model_validator(mode="after")
    def validate_fields_for_action(self) -> "LedgerEvent":
        if self.action in ACCOUNT_ACTIONS and not self.account:
            raise ValueError(f"{self.action.value} requires an account")
        if self.action in TRANCHE_ACTIONS:
            if self.tranche is None:
                raise ValueError(f"{self.action.value} requires a tranche")
            if self.amount <= 0:
                raise ValueError(f"{self.action.value} requires a positive amount")
        if self.action in AMOUNTS_ACTIONS:
            if self.amounts is None or self.amount_version is None:
                raise ValueError(
                    f"{self.action.value} requires amounts and amount_version"
                )
        return self


class Scenario(BaseModel):
    """A complete, replayable ledger scenario."""

    model_config = ConfigDict(extra="forbid")

    start_time: int = Field(0, ge=0)
    end_time: int | None = Field(None, ge=0)
    ledger: dict[str, Any] = Field(default_factory=dict)
    rates: list[RatePoint] = Field(default_factory=list)
    relative_weights: list[WeightPoint] = Field(default_factory=list)
    default_relative_weight: Decimal = Decimal("1")
    rebalances: list[RebalanceSpec] = Field(default_factory=list)
    events: list[LedgerEvent] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_ordering(self) -> "Scenario":
        timestamps = [item.timestamp for item in self.rebalances]
        if timestamps != sorted(timestamps):
            raise ValueError("rebalances must be sorted by timestamp")
        for item in self.rebalances:
            if item.timestamp < self.start_time:
                raise ValueError("rebalances cannot precede start_time")
        for event in self.events:
            if event.timestamp < self.start_time:
                raise ValueError("events cannot precede start_time")
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time cannot precede start_time")
        if not (Decimal("0") <= self.default_relative_weight <= Decimal("1")):
            raise ValueError("default_relative_weight must be between 0 and 1")
        return self
