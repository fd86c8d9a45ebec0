"""Reconciliation of the registry against the ledger."""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..utils.logging import LogContext, audit_log, get_logger, log_performance
from .errors import ExecutionError, InsufficientHistoryError, LedgerInconsistencyError
from .ledger import DEFAULT_LEDGER_TABLE, LedgerEntry, MigrationLedger
from .lock import MigrationLock
from .registry import MigrationRegistry
from .unit import MigrationUnit, sqlglot_dialect

FORWARD = "forward"
REVERSE = "reverse"

logger = get_logger(__name__, LogContext.RUNNER)


@dataclass(frozen=True)
class LedgerState:
    """Registry split into its applied prefix and the pending remainder."""

    applied: tuple[MigrationUnit, ...]
    pending: tuple[MigrationUnit, ...]
    entries: tuple[LedgerEntry, ...] = ()

    @property
    def current(self) -> MigrationUnit | None:
        return self.applied[-1] if self.applied else None


@dataclass
class RunResult:
    """Units committed by one apply or rollback call, in execution order."""

    direction: str
    units: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.units)


class MigrationRunner:
    """Applies and reverts registry units against one database.

    Every unit runs in its own transaction together with its ledger write,
    and a whole apply or rollback call holds the migration lock.
    """

    def __init__(
        self,
        registry: MigrationRegistry,
        engine: Engine,
        ledger_table: str = DEFAULT_LEDGER_TABLE,
        ledger: MigrationLedger | None = None,
        lock: MigrationLock | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            registry: All known migrations, in application order.
            engine: Engine for the target database.
            ledger_table: Name of the ledger table.
            ledger: Ledger to use instead of one built from ``ledger_table``.
            lock: Lock to use instead of one built from ``ledger_table``.
        """
        self.registry = registry
        self.engine = engine
        self.ledger = ledger or MigrationLedger(engine, ledger_table)
        self.lock = lock or MigrationLock(engine, self.ledger.table_name)

    @property
    def dialect(self) -> str | None:
        return sqlglot_dialect(self.engine.dialect.name)

    def reconcile(self) -> LedgerState:
        """Compare the committed ledger with the registry.

        Raises:
            LedgerInconsistencyError: If the ledger names an unknown unit or
                is not a prefix of the registry order.
        """
        return self._reconcile(self.ledger.read())

    def _reconcile(self, entries: list[LedgerEntry]) -> LedgerState:
        applied_names = {entry.name for entry in entries}

        unknown = sorted(name for name in applied_names if name not in self.registry)
        if unknown:
            raise LedgerInconsistencyError(
                "Ledger records migrations that are not in the registry: "
                + ", ".join(unknown),
                context={"unknown": unknown},
            )

        applied = self.registry.units[: len(applied_names)]
        missing = [unit.name for unit in applied if unit.name not in applied_names]
        if missing:
            later = [
                name
                for name in self.registry.names[len(applied_names) :]
                if name in applied_names
            ]
            raise LedgerInconsistencyError(
                "Applied migrations are not a prefix of the registry order: "
                f"{', '.join(later)} applied before {', '.join(missing)}",
                context={"unapplied": missing, "applied_out_of_order": later},
            )

        return LedgerState(
            applied=applied,
            pending=self.registry.units[len(applied_names) :],
            entries=tuple(entries),
        )

    def pending(self) -> list[MigrationUnit]:
        return list(self.reconcile().pending)

    def applied(self) -> list[MigrationUnit]:
        return list(self.reconcile().applied)

    @audit_log("migrate_up")
    def apply(self) -> RunResult:
        """Apply every pending unit in registry order.

        Returns:
            The units applied by this call. Empty when nothing was pending.

        Raises:
            LedgerInconsistencyError: If the ledger is not a registry prefix.
            ExecutionError: If a forward script fails. Units listed in its
                ``completed`` attribute remain applied.
        """
        with self.lock:
            state = self.reconcile()
            if not state.pending:
                logger.info(
                    "Database is up to date", applied_count=len(state.applied)
                )
                return RunResult(FORWARD)

            # Split all scripts before touching the schema
            dialect = self.dialect
            plan = [(unit, unit.forward_statements(dialect)) for unit in state.pending]

            logger.info("Applying pending migrations", pending_count=len(plan))
            completed: list[str] = []
            for unit, statements in plan:
                self._run_unit(unit, statements, FORWARD, completed)
                completed.append(unit.name)

            return RunResult(FORWARD, completed)

    @audit_log("migrate_down")
    def rollback(self, count: int | None = 1) -> RunResult:
        """Revert the most recently applied units, newest first.

        Args:
            count: Number of units to revert, or None for all of them.

        Returns:
            The units reverted by this call, in reversal order.

        Raises:
            InsufficientHistoryError: If fewer than ``count`` units are applied.
            LedgerInconsistencyError: If the ledger is not a registry prefix.
            ExecutionError: If a reverse script fails. Units listed in its
                ``completed`` attribute remain reverted.
        """
        if count is not None and count < 0:
            raise ValueError(f"Rollback count must not be negative, got {count}")

        with self.lock:
            state = self.reconcile()
            applied_count = len(state.applied)
            if count is None:
                count = applied_count
            if count > applied_count:
                raise InsufficientHistoryError(count, applied_count)
            if count == 0:
                logger.info("Nothing to roll back", applied_count=applied_count)
                return RunResult(REVERSE)

            targets = list(reversed(state.applied))[:count]
            dialect = self.dialect
            plan = [(unit, unit.reverse_statements(dialect)) for unit in targets]

            logger.info("Rolling back migrations", rollback_count=len(plan))
            completed: list[str] = []
            for unit, statements in plan:
                self._run_unit(unit, statements, REVERSE, completed)
                completed.append(unit.name)

            return RunResult(REVERSE, completed)

    @log_performance(LogContext.RUNNER)
    def _run_unit(
        self,
        unit: MigrationUnit,
        statements: list[str],
        direction: str,
        completed: list[str],
    ) -> None:
        """Run one unit's statements and its ledger write in one transaction."""
        unit_logger = get_logger(__name__, LogContext.RUNNER)
        unit_logger.set_migration(unit.name)

        if direction == REVERSE and not unit.is_reversible:
            unit_logger.warning("Reverse script is empty; only the ledger entry is removed")

        try:
            with self.engine.begin() as conn:
                for statement in statements:
                    conn.exec_driver_sql(
                        statement, execution_options={"no_parameters": True}
                    )
                if direction == FORWARD:
                    self.ledger.record(conn, unit.name)
                else:
                    self.ledger.remove(conn, unit.name)
        except SQLAlchemyError as e:
            unit_logger.error(
                f"Migration {unit.name} failed ({direction})",
                exception=e,
                direction=direction,
            )
            raise ExecutionError(unit.name, direction, e, completed) from e

        if direction == FORWARD:
            unit_logger.info(
                f"Applied migration {unit.name}", statement_count=len(statements)
            )
        else:
            unit_logger.info(
                f"Reverted migration {unit.name}", statement_count=len(statements)
            )

    def status(self) -> dict[str, Any]:
        """Summarize applied and pending migrations."""
        state = self.reconcile()
        applied_at = {entry.name: entry.applied_at for entry in state.entries}

        return {
            "current": state.current.name if state.current else None,
            "applied_count": len(state.applied),
            "pending_count": len(state.pending),
            "applied": [
                {"name": unit.name, "applied_at": applied_at[unit.name].isoformat()}
                for unit in state.applied
            ],
            "pending": [unit.name for unit in state.pending],
        }
