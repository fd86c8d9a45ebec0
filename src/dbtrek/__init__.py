"""dbtrek: ordered, ledger-tracked schema migrations for relational databases."""

__version__ = "0.1.0"

from .migrations import (
    MigrationLedger,
    MigrationRegistry,
    MigrationRunner,
    MigrationUnit,
    create_migration,
)

__all__ = [
    "MigrationUnit",
    "MigrationRegistry",
    "MigrationLedger",
    "MigrationRunner",
    "create_migration",
    "__version__",
]
