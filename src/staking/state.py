"""Authoritative ledger state: global accrual fields plus per-account records."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

from . import fixed_point
from .errors import InsufficientBalanceError, InvalidVersionError
from .weights import reward_weight


class Tranche(str, Enum):
    """Tranche kind."""

    M = "M"
    A = "A"
    B = "B"


@dataclass(frozen=True)
class TrancheAmounts:
    m: int = 0
    a: int = 0
    b: int = 0

    def __post_init__(self) -> None:
        for value in (self.m, self.a, self.b):
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(f"Tranche amounts must be ints, got: {value!r}")
            if value < 0:
                raise ValueError(f"Tranche amounts must be non-negative, got: {value}")
            fixed_point.checked(value)

    def get(self, tranche: Tranche) -> int:
        return getattr(self, _FIELD_BY_TRANCHE[Tranche(tranche)])

    def add(self, tranche: Tranche, amount: int) -> "TrancheAmounts":
        name = _FIELD_BY_TRANCHE[Tranche(tranche)]
        return _replace(self, name, fixed_point.add(getattr(self, name), amount))

    def subtract(self, tranche: Tranche, amount: int) -> "TrancheAmounts":
        name = _FIELD_BY_TRANCHE[Tranche(tranche)]
        current = getattr(self, name)
        if amount > current:
            raise InsufficientBalanceError(Tranche(tranche).value, amount, current)
        return _replace(self, name, current - amount)

    def subtract_all(self, other: "TrancheAmounts") -> "TrancheAmounts":
        result = self
        for tranche in Tranche:
            result = result.subtract(tranche, other.get(tranche))
        return result

    def __add__(self, other: "TrancheAmounts") -> "TrancheAmounts":
        return TrancheAmounts(
            m=fixed_point.add(self.m, other.m),
            a=fixed_point.add(self.a, other.a),
            b=fixed_point.add(self.b, other.b),
        )

    def is_zero(self) -> bool:
        return self.m == 0 and self.a == 0 and self.b == 0

    def as_tuple(self) -> tuple[int, int, int]:
        return self.m, self.a, self.b

    def weight(self) -> int:
        return reward_weight(self.m, self.a, self.b)

    def to_payload(self) -> dict[str, int]:
        return {"m": self.m, "a": self.a, "b": self.b}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TrancheAmounts":
        return cls(
            m=int(payload.get("m", 0)),
            a=int(payload.get("a", 0)),
            b=int(payload.get("b", 0)),
        )


_FIELD_BY_TRANCHE = {Tranche.M: "m", Tranche.A: "a", Tranche.B: "b"}


def _replace(amounts: TrancheAmounts, name: str, value: int) -> TrancheAmounts:
    values = {"m": amounts.m, "a": amounts.a, "b": amounts.b}
    values[name] = value
    return TrancheAmounts(**values)


@dataclass
class AccountState:
    available: TrancheAmounts = field(default_factory=TrancheAmounts)
    locked: TrancheAmounts = field(default_factory=TrancheAmounts)
    balance_version: int = 0
    user_integral: int = 0
    claimable_reward: int = 0

    def total(self) -> TrancheAmounts:
        return self.available + self.locked

    def to_payload(self) -> dict[str, Any]:
        return {
            "available": self.available.to_payload(),
            "locked": self.locked.to_payload(),
            "balance_version": self.balance_version,
            "user_integral": self.user_integral,
            "claimable_reward": self.claimable_reward,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AccountState":
        return cls(
            available=TrancheAmounts.from_payload(payload.get("available", {})),
            locked=TrancheAmounts.from_payload(payload.get("locked", {})),
            balance_version=int(payload.get("balance_version", 0)),
            user_integral=int(payload.get("user_integral", 0)),
            claimable_reward=int(payload.get("claimable_reward", 0)),
        )


@dataclass
class LedgerState:
    """Global accrual state and the per-account records it settles against.

    ``historical_integrals[v]`` is the closing integral of version ``v``; its
    length always equals ``total_supply_version`` after a global checkpoint.
    """

    rate: int = 0
    total_supplies: TrancheAmounts = field(default_factory=TrancheAmounts)
    total_supply_version: int = 0
    checkpoint_timestamp: int = 0
    inv_total_weight_integral: int = 0
    historical_integrals: list[int] = field(default_factory=list)
    accounts: dict[str, AccountState] = field(default_factory=dict)

    def account(self, account: str) -> AccountState:
        """Return the account record, creating an empty one if needed."""
        record = self.accounts.get(account)
        if record is None:
            record = AccountState()
            self.accounts[account] = record
        return record

    def peek_account(self, account: str) -> AccountState:
        """Return the account record without inserting a missing one."""
        return self.accounts.get(account) or AccountState()

    def historical_integral(self, version: int) -> int:
        if version < 0 or version >= len(self.historical_integrals):
            raise InvalidVersionError(
                f"No historical integral for version {version} "
                f"(closed versions: {len(self.historical_integrals)})"
            )
        return self.historical_integrals[version]

    def version_integral(self, version: int) -> int:
        """Integral of ``version``'s epoch: live for the current version, closing otherwise."""
        if version == self.total_supply_version:
            return self.inv_total_weight_integral
        return self.historical_integral(version)

    def total_weight(self) -> int:
        return self.total_supplies.weight()

    def clone(self) -> "LedgerState":
        return copy.deepcopy(self)

    def snapshot(self, *accounts: str) -> "LedgerSnapshot":
        """Capture the global fields and the named accounts, nothing else.

        ``historical_integrals`` is append-only, so only its length is kept.
        """
        return LedgerSnapshot(
            rate=self.rate,
            total_supplies=self.total_supplies,
            total_supply_version=self.total_supply_version,
            checkpoint_timestamp=self.checkpoint_timestamp,
            inv_total_weight_integral=self.inv_total_weight_integral,
            history_length=len(self.historical_integrals),
            accounts={
                name: _copy_record(self.accounts.get(name)) for name in accounts
            },
        )

    def restore(self, snapshot: "LedgerSnapshot") -> None:
        self.rate = snapshot.rate
        self.total_supplies = snapshot.total_supplies
        self.total_supply_version = snapshot.total_supply_version
        self.checkpoint_timestamp = snapshot.checkpoint_timestamp
        self.inv_total_weight_integral = snapshot.inv_total_weight_integral
        del self.historical_integrals[snapshot.history_length :]
        for name, saved in snapshot.accounts.items():
            record = self.accounts.get(name)
            if saved is None:
                self.accounts.pop(name, None)
            elif record is None:
                self.accounts[name] = saved
            else:
                for item in fields(AccountState):
                    setattr(record, item.name, getattr(saved, item.name))

    def to_payload(self) -> dict[str, Any]:
        return {
            "rate": self.rate,
            "total_supplies": self.total_supplies.to_payload(),
            "total_supply_version": self.total_supply_version,
            "checkpoint_timestamp": self.checkpoint_timestamp,
            "inv_total_weight_integral": self.inv_total_weight_integral,
            "historical_integrals": list(self.historical_integrals),
            "accounts": {
                name: record.to_payload() for name, record in self.accounts.items()
            },
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "LedgerState":
        state = cls(
            rate=int(payload.get("rate", 0)),
            total_supplies=TrancheAmounts.from_payload(
                payload.get("total_supplies", {})
            ),
            total_supply_version=int(payload.get("total_supply_version", 0)),
            checkpoint_timestamp=int(payload.get("checkpoint_timestamp", 0)),
            inv_total_weight_integral=int(payload.get("inv_total_weight_integral", 0)),
            historical_integrals=[
                int(item) for item in payload.get("historical_integrals", [])
            ],
            accounts={
                str(name): AccountState.from_payload(record)
                for name, record in payload.get("accounts", {}).items()
            },
        )
        if len(state.historical_integrals) != state.total_supply_version:
            raise ValueError(
                "Corrupt ledger state: historical_integrals length "
                f"{len(state.historical_integrals)} != version {state.total_supply_version}"
            )
        return state

    def save(self, path: str | Path) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = self.to_payload()
        target.write_text(
            json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
        )

    @classmethod
    def load(cls, path: str | Path) -> "LedgerState":
        target = Path(path)
        if not target.exists():
            return cls()
        payload = json.loads(target.read_text(encoding="utf-8"))
        return cls.from_payload(payload)


@dataclass(frozen=True)
class LedgerSnapshot:
    """What one ledger call can change; ``None`` marks an absent account."""

    rate: int
    total_supplies: TrancheAmounts
    total_supply_version: int
    checkpoint_timestamp: int
    inv_total_weight_integral: int
    history_length: int
    accounts: dict[str, AccountState | None]


def _copy_record(record: AccountState | None) -> AccountState | None:
    # Fields are ints and frozen amounts, so a shallow copy is independent.
    return None if record is None else copy.copy(record)
