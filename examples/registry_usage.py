#!/usr/bin/env python3
"""
Example usage of dbtrek as a library.

This file demonstrates:
- Building an explicit migration registry
- Applying pending migrations and inspecting status
- Rolling back the most recent migrations
- Handling a failing migration
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dbtrek import MigrationRegistry, MigrationRunner, MigrationUnit
from dbtrek.database.connection import DatabaseManager
from dbtrek.migrations.errors import ExecutionError
from dbtrek.utils.logging import LogLevel, setup_logging

registry = MigrationRegistry(
    [
        MigrationUnit(
            name="create_users_table",
            forward_script="""
                CREATE TABLE users (
                    id INTEGER PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE
                );
            """,
            reverse_script="DROP TABLE users;",
        ),
        MigrationUnit(
            name="create_companies_table",
            forward_script="""
                CREATE TABLE companies (id INTEGER PRIMARY KEY, name TEXT NOT NULL);
                CREATE INDEX ix_companies_name ON companies (name);
            """,
            reverse_script="""
                DROP INDEX ix_companies_name;
                DROP TABLE companies;
            """,
        ),
    ]
)


def main():
    """Walk through a migrate up / status / down cycle."""
    setup_logging(log_level=LogLevel.INFO)

    print("dbtrek Registry Demo")
    print("=" * 50)

    with DatabaseManager("sqlite://") as db_manager:
        runner = MigrationRunner(registry, db_manager.engine)

        print("\n1. Applying pending migrations...")
        result = runner.apply()
        print(f"   Applied: {', '.join(result.units)}")

        print("\n2. Status")
        status = runner.status()
        print(f"   Current: {status['current']}")
        print(f"   Applied: {status['applied_count']}  Pending: {status['pending_count']}")

        print("\n3. Rolling back one migration...")
        result = runner.rollback(1)
        print(f"   Reverted: {', '.join(result.units)}")

        print("\n4. Appending a broken migration...")
        broken = registry.extend(
            [MigrationUnit("add_broken_column", "ALTER TABLE missing ADD COLUMN x TEXT")]
        )
        try:
            MigrationRunner(broken, db_manager.engine).apply()
        except ExecutionError as e:
            print(f"   {e.message}")
            print(f"   Applied before the failure: {', '.join(e.completed) or '(none)'}")

        print(f"\n   Ledger now holds: {sorted(runner.ledger.applied_names())}")


if __name__ == "__main__":
    main()
