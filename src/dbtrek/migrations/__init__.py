"""Database migration system."""

from .errors import (
    DuplicateNameError,
    ExecutionError,
    InsufficientHistoryError,
    InvalidNameError,
    InvalidScriptError,
    LedgerInconsistencyError,
    MigrationError,
    MigrationLockError,
    SkeletonExistsError,
)
from .generator import create_migration
from .ledger import DEFAULT_LEDGER_TABLE, LedgerEntry, MigrationLedger
from .lock import MigrationLock
from .registry import MigrationRegistry, load_registry
from .runner import FORWARD, REVERSE, LedgerState, MigrationRunner, RunResult
from .unit import MigrationUnit, split_statements, validate_name

__all__ = [
    # Units and registry
    "MigrationUnit",
    "MigrationRegistry",
    "load_registry",
    "validate_name",
    "split_statements",
    # Ledger and lock
    "DEFAULT_LEDGER_TABLE",
    "LedgerEntry",
    "MigrationLedger",
    "MigrationLock",
    # Runner
    "FORWARD",
    "REVERSE",
    "LedgerState",
    "MigrationRunner",
    "RunResult",
    # Generator
    "create_migration",
    # Errors
    "MigrationError",
    "InvalidNameError",
    "DuplicateNameError",
    "InvalidScriptError",
    "LedgerInconsistencyError",
    "InsufficientHistoryError",
    "ExecutionError",
    "SkeletonExistsError",
    "MigrationLockError",
]
