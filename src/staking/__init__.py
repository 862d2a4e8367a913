"""Multi-tranche staking ledger with lazily settled reward accrual."""

from .config import LedgerConfig, build_ledger_config
from .errors import (
    ArithmeticOverflowError,
    CheckpointPendingError,
    CheckpointStalledError,
    InsufficientBalanceError,
    InvalidVersionError,
    LedgerError,
)
from .global_checkpoint import CheckpointResult, GlobalCheckpoint
from .account_checkpoint import AccountCheckpoint
from .ledger import StakingLedger
from .state import AccountState, LedgerState, Tranche, TrancheAmounts
from .weights import reward_weight

__all__ = [
    "AccountCheckpoint",
    "AccountState",
    "ArithmeticOverflowError",
    "CheckpointPendingError",
    "CheckpointStalledError",
    "CheckpointResult",
    "GlobalCheckpoint",
    "InsufficientBalanceError",
    "InvalidVersionError",
    "LedgerConfig",
    "LedgerError",
    "LedgerState",
    "StakingLedger",
    "Tranche",
    "TrancheAmounts",
    "build_ledger_config",
    "reward_weight",
]
