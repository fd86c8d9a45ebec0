"""Migration skeleton generation command."""

from pathlib import Path

import click

from ..migrations.generator import create_migration
from .runtime import get_config
from .utils import error_handler, format_output, success_message


@click.command()
@click.argument("name")
@click.option(
    "--dir",
    "migrations_dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory to write the migration into (default: migrations_dir setting)",
)
@click.pass_context
@error_handler
def generate(ctx: click.Context, name: str, migrations_dir: Path | None) -> None:
    """Create an empty migration file named NAME (snake_case)."""
    if migrations_dir is None:
        migrations_dir = Path(get_config(ctx).migrations_dir).expanduser()

    path = create_migration(name, migrations_dir)

    format_output(
        ctx,
        {"name": name, "path": str(path)},
        lambda data: success_message(f"Created migration {data['path']}"),
    )
