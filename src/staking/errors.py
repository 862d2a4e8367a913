"""Exception types raised by the staking ledger."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger failures. The failing call commits nothing."""


class InsufficientBalanceError(LedgerError, ValueError):
    """Raised when a withdrawal, lock or trade exceeds the funds on hand."""

    def __init__(self, tranche: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient {tranche} balance: requested {requested}, available {available}"
        )
        self.tranche = tranche
        self.requested = requested
        self.available = available


class ArithmeticOverflowError(LedgerError, ArithmeticError):
    """Raised when a fixed-point operation leaves the accumulator range."""


class InvalidVersionError(LedgerError, ValueError):
    """Raised when a rebalance version is out of bounds for the request."""


class CheckpointPendingError(InvalidVersionError):
    """Raised when the global checkpoint could not reach the current time.

    Call ``StakingLedger.checkpoint()`` until it converges, then retry.
    """


class CheckpointStalledError(LedgerError, RuntimeError):
    """Raised when a global checkpoint pass makes no progress toward ``now``."""
