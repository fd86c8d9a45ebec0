"""Configuration, registry and runner construction for CLI commands."""

import sys
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import click

from ..config.loader import TrekConfig, load_config
from ..database.connection import DatabaseManager
from ..migrations.registry import MigrationRegistry, load_registry
from ..migrations.runner import MigrationRunner
from ..utils.logging import setup_logging


def get_config(ctx: click.Context) -> TrekConfig:
    """Load configuration once per invocation and configure logging from it."""
    obj = ctx.ensure_object(dict)
    if obj.get("loaded_config") is None:
        config = load_config(
            obj.get("config"), obj.get("profile"), obj.get("cli_overrides")
        )

        log_level = config.log_level
        if obj.get("verbose"):
            log_level = "DEBUG"
        elif obj.get("quiet"):
            log_level = "ERROR"

        setup_logging(
            log_level=log_level,
            log_file=Path(config.log_file).expanduser() if config.log_file else None,
            enable_structured=config.structured_logging,
        )
        obj["loaded_config"] = config
    return obj["loaded_config"]


def build_registry(config: TrekConfig) -> MigrationRegistry:
    """Registry from the configured module reference or migrations directory."""
    if config.registry:
        # Registry modules usually live in the project being migrated
        cwd = str(Path.cwd())
        if cwd not in sys.path:
            sys.path.insert(0, cwd)
        return load_registry(config.registry)
    return MigrationRegistry.from_directory(Path(config.migrations_dir).expanduser())


@contextmanager
def open_runner(ctx: click.Context) -> Generator[MigrationRunner, None, None]:
    """Yield a runner bound to the configured database, disposing it afterwards."""
    config = get_config(ctx)
    registry = build_registry(config)

    with DatabaseManager(
        config.resolved_database_url(), echo=config.echo_sql
    ) as db_manager:
        yield MigrationRunner(registry, db_manager.engine, config.ledger_table)
