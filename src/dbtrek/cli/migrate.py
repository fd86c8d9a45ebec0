"""Migration commands: apply, roll back, inspect and unlock."""

from typing import Any

import click

from .runtime import open_runner
from .utils import (
    error_handler,
    format_output,
    output_table,
    quiet_echo,
    success_message,
    verbose_echo,
)


@click.group()
def migrate() -> None:
    """Apply and roll back database migrations."""
    pass


@migrate.command()
@click.pass_context
@error_handler
def up(ctx: click.Context) -> None:
    """Apply all pending migrations in registry order."""
    with open_runner(ctx) as runner:
        verbose_echo(ctx, f"Registry holds {len(runner.registry)} migration(s)")
        result = runner.apply()

    def human_format(data: dict[str, Any]) -> None:
        if not data["applied"]:
            quiet_echo(ctx, "Database is up to date.")
            return
        for name in data["applied"]:
            quiet_echo(ctx, f"Applied {name}")
        if not ctx.obj.get("quiet"):
            success_message(f"Applied {data['count']} migration(s)")

    format_output(
        ctx, {"applied": result.units, "count": result.count}, human_format
    )


@migrate.command()
@click.argument("count", type=click.IntRange(min=1), required=False)
@click.option("--all", "rollback_all", is_flag=True, help="Roll back every migration")
@click.pass_context
@error_handler
def down(ctx: click.Context, count: int | None, rollback_all: bool) -> None:
    """Roll back the COUNT most recently applied migrations (default 1)."""
    if rollback_all and count is not None:
        raise click.UsageError("Use either COUNT or --all, not both")

    with open_runner(ctx) as runner:
        result = runner.rollback(None if rollback_all else (count or 1))

    def human_format(data: dict[str, Any]) -> None:
        if not data["reverted"]:
            quiet_echo(ctx, "Nothing to roll back.")
            return
        for name in data["reverted"]:
            quiet_echo(ctx, f"Reverted {name}")
        if not ctx.obj.get("quiet"):
            success_message(f"Rolled back {data['count']} migration(s)")

    format_output(
        ctx, {"reverted": result.units, "count": result.count}, human_format
    )


@migrate.command()
@click.pass_context
@error_handler
def status(ctx: click.Context) -> None:
    """Show applied and pending migrations."""
    with open_runner(ctx) as runner:
        data = runner.status()

    def human_format(data: dict[str, Any]) -> None:
        click.echo(f"Current migration: {data['current'] or '(none)'}")
        click.echo(
            f"Applied: {data['applied_count']}  Pending: {data['pending_count']}"
        )
        rows = [[entry["name"], "applied", entry["applied_at"]] for entry in data["applied"]]
        rows.extend([name, "pending", ""] for name in data["pending"])
        output_table(["Migration", "State", "Applied at"], rows)

    format_output(ctx, data, human_format)


@migrate.command()
@click.pass_context
@error_handler
def unlock(ctx: click.Context) -> None:
    """Clear a migration lock left behind by a process that died."""
    with open_runner(ctx) as runner:
        cleared = runner.lock.force_release()

    if cleared:
        success_message("Cleared stale migration lock")
    else:
        quiet_echo(ctx, "No migration lock to clear.")
