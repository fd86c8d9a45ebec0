"""Persisted record of applied migrations."""

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, MetaData, String, Table, delete, insert, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..utils.logging import DatabaseError, LogContext, get_logger
from .errors import LedgerInconsistencyError
from .unit import MAX_NAME_LENGTH

DEFAULT_LEDGER_TABLE = "schema_migrations"

logger = get_logger(__name__, LogContext.LEDGER)


@dataclass(frozen=True)
class LedgerEntry:
    """One applied migration."""

    name: str
    applied_at: datetime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | str) -> datetime:
    """Normalize a stored timestamp to an aware UTC datetime."""
    # SQLite hands back naive values (or strings through raw SQL)
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MigrationLedger:
    """Ledger table stored in the target database.

    The table is created on first access. ``record`` and ``remove`` run on a
    connection supplied by the caller so the ledger write shares the
    transaction of the migration script it describes.
    """

    def __init__(self, engine: Engine, table_name: str = DEFAULT_LEDGER_TABLE) -> None:
        """Initialize the ledger.

        Args:
            engine: Database engine.
            table_name: Name of the ledger table.
        """
        self.engine = engine
        self.table_name = table_name
        self.metadata = MetaData()
        self.table = Table(
            table_name,
            self.metadata,
            Column("name", String(MAX_NAME_LENGTH), primary_key=True),
            Column("applied_at", DateTime(timezone=True), nullable=False),
        )

    def ensure(self) -> None:
        """Create the ledger table if it does not exist yet."""
        try:
            self.table.create(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to create ledger table {self.table_name}: {e}",
                context={"table": self.table_name},
            ) from e

    def read(self) -> list[LedgerEntry]:
        """Read the committed ledger.

        Returns:
            Applied entries ordered by application time, then name.
        """
        self.ensure()
        query = select(self.table.c.name, self.table.c.applied_at).order_by(
            self.table.c.applied_at, self.table.c.name
        )
        try:
            with self.engine.begin() as conn:
                rows = conn.execute(query).all()
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to read ledger table {self.table_name}: {e}",
                context={"table": self.table_name},
            ) from e

        entries = [LedgerEntry(row.name, _as_utc(row.applied_at)) for row in rows]
        logger.debug("Read ledger", table=self.table_name, applied_count=len(entries))
        return entries

    def applied_names(self) -> set[str]:
        return {entry.name for entry in self.read()}

    def record(
        self,
        connection: Connection,
        name: str,
        applied_at: datetime | None = None,
    ) -> LedgerEntry:
        """Record that a unit was applied, inside the caller's transaction."""
        entry = LedgerEntry(name, applied_at or utcnow())
        connection.execute(
            insert(self.table).values(name=entry.name, applied_at=entry.applied_at)
        )
        return entry

    def remove(self, connection: Connection, name: str) -> None:
        """Delete the record of a unit, inside the caller's transaction.

        Raises:
            LedgerInconsistencyError: If no record for the unit exists.
        """
        result = connection.execute(delete(self.table).where(self.table.c.name == name))
        if result.rowcount != 1:
            raise LedgerInconsistencyError(
                f"Ledger has no record of migration {name!r}",
                context={"name": name, "table": self.table_name},
            )
