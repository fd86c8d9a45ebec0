"""Main CLI entry point for dbtrek."""

import click

from .. import __version__
from .generate import generate
from .migrate import migrate


@click.group()
@click.version_option(version=__version__, prog_name="dbtrek")
@click.option("--config", "-c", help="Configuration file path")
@click.option("--profile", "-p", help="Configuration profile to use")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
# Configuration override flags
@click.option("--database-url", help="Override database_url setting")
@click.option("--migrations-dir", help="Override migrations_dir setting")
@click.option("--registry", help="Override registry setting (package.module:name)")
@click.option("--log-level", help="Override log_level setting")
@click.pass_context
def main(
    ctx: click.Context,
    config: str | None,
    profile: str | None,
    verbose: bool,
    quiet: bool,
    json: bool,
    database_url: str | None,
    migrations_dir: str | None,
    registry: str | None,
    log_level: str | None,
) -> None:
    """dbtrek - ordered, ledger-tracked database schema migrations.

    Migrations are applied strictly in registry order and recorded in a
    ledger table inside the target database.

    Use commands to organize functionality:
    - generate: Create an empty migration file
    - migrate: Apply, roll back and inspect migrations
    """
    if verbose and quiet:
        raise click.UsageError("Cannot use both --verbose and --quiet options")

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["profile"] = profile
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["json"] = json

    cli_overrides = {
        "database_url": database_url,
        "migrations_dir": migrations_dir,
        "registry": registry,
        "log_level": log_level,
    }
    ctx.obj["cli_overrides"] = {k: v for k, v in cli_overrides.items() if v is not None}


main.add_command(generate)
main.add_command(generate, name="g")
main.add_command(migrate)


if __name__ == "__main__":
    main()
