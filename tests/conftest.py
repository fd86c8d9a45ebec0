"""
Pytest configuration and shared fixtures for dbtrek tests.
"""

import logging
import sys
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dbtrek.database.connection import DatabaseManager
from dbtrek.migrations.registry import MigrationRegistry
from dbtrek.migrations.unit import MigrationUnit


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers installed by setup_logging during a test."""
    root = logging.getLogger()
    level = root.level

    yield

    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def temp_workspace() -> Generator[Path, None, None]:
    """Create a temporary workspace directory."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine configured like the CLI configures it."""
    with DatabaseManager("sqlite://") as db_manager:
        yield db_manager.engine


@pytest.fixture
def file_engine(temp_workspace: Path) -> Generator[Engine, None, None]:
    """File-backed SQLite engine."""
    with DatabaseManager(f"sqlite:///{temp_workspace / 'test.db'}") as db_manager:
        yield db_manager.engine


@pytest.fixture
def abc_registry() -> MigrationRegistry:
    """Three units creating and dropping one table each."""
    return MigrationRegistry(
        [
            MigrationUnit(
                "create_a",
                "CREATE TABLE a (id INTEGER PRIMARY KEY)",
                "DROP TABLE a",
            ),
            MigrationUnit(
                "create_b",
                "CREATE TABLE b (id INTEGER PRIMARY KEY)",
                "DROP TABLE b",
            ),
            MigrationUnit(
                "create_c",
                "CREATE TABLE c (id INTEGER PRIMARY KEY)",
                "DROP TABLE c",
            ),
        ]
    )


@pytest.fixture
def table_names():
    """Return a helper listing the tables present in a database."""

    def _table_names(engine: Engine) -> set[str]:
        return set(inspect(engine).get_table_names())

    return _table_names
