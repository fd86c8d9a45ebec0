"""Database-level lock serializing migration runs across processes."""

import os
import socket
import zlib
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    delete,
    insert,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..utils.logging import DatabaseError, LogContext, get_logger
from .errors import MigrationLockError
from .ledger import DEFAULT_LEDGER_TABLE, utcnow

logger = get_logger(__name__, LogContext.LOCK)

ADVISORY = "advisory"
NAMED = "named"
TABLE = "table"

_LOCK_ROW_ID = 1


class MigrationLock:
    """Lock held for the whole duration of an apply or rollback.

    PostgreSQL uses a session advisory lock and MySQL a named lock, both
    held on a dedicated connection and waited on without timeout. Other
    backends insert a single row into ``<ledger_table>_lock``; an existing
    row means another run is in progress and acquisition fails at once.
    """

    def __init__(self, engine: Engine, name: str = DEFAULT_LEDGER_TABLE) -> None:
        self.engine = engine
        self.name = name
        self.key = zlib.crc32(name.encode("utf-8")) & 0x7FFFFFFF
        self.holder = f"{socket.gethostname()}:{os.getpid()}"
        self.metadata = MetaData()
        self.table = Table(
            f"{name}_lock",
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=False),
            Column("locked_at", DateTime(timezone=True), nullable=False),
            Column("holder", String(255), nullable=False),
        )
        self._connection: Connection | None = None
        self._held = False

    @property
    def strategy(self) -> str:
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            return ADVISORY
        if dialect in ("mysql", "mariadb"):
            return NAMED
        return TABLE

    @property
    def held(self) -> bool:
        return self._held

    @property
    def _named_lock(self) -> str:
        # MySQL limits lock names to 64 characters
        return f"dbtrek:{self.name}"[:64]

    def acquire(self) -> None:
        """Acquire the lock.

        Raises:
            MigrationLockError: If the lock row is already present.
            DatabaseError: If the database refuses the lock statement.
        """
        if self._held:
            raise MigrationLockError(
                f"Migration lock {self.name!r} is already held by this runner"
            )

        strategy = self.strategy
        logger.debug("Acquiring migration lock", lock=self.name, strategy=strategy)

        if strategy == ADVISORY:
            self._acquire_session_lock(
                "SELECT pg_advisory_lock(:key)", {"key": self.key}
            )
        elif strategy == NAMED:
            self._acquire_session_lock(
                "SELECT GET_LOCK(:name, -1)", {"name": self._named_lock}
            )
        else:
            self._acquire_table_lock()

        self._held = True
        logger.info("Acquired migration lock", lock=self.name, strategy=strategy)

    def _acquire_session_lock(self, statement: str, params: dict[str, Any]) -> None:
        connection = self.engine.connect()
        try:
            result = connection.execute(text(statement), params).scalar()
            connection.commit()
        except SQLAlchemyError as e:
            connection.close()
            raise DatabaseError(
                f"Failed to acquire migration lock {self.name!r}: {e}"
            ) from e

        # pg_advisory_lock returns void, GET_LOCK returns 1 on success
        if self.strategy == NAMED and result != 1:
            connection.close()
            raise MigrationLockError(
                f"Database refused migration lock {self.name!r}",
                context={"lock": self._named_lock},
            )
        self._connection = connection

    def _acquire_table_lock(self) -> None:
        try:
            self.table.create(self.engine, checkfirst=True)
            with self.engine.begin() as conn:
                conn.execute(
                    insert(self.table).values(
                        id=_LOCK_ROW_ID, locked_at=utcnow(), holder=self.holder
                    )
                )
        except IntegrityError as e:
            raise MigrationLockError(
                f"Migration lock {self.table.name!r} is held by "
                f"{self._current_holder() or 'another process'}; if that process "
                "is gone, clear it with 'dbtrek migrate unlock'",
                context={"table": self.table.name},
            ) from e
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to acquire migration lock {self.table.name!r}: {e}"
            ) from e

    def _current_holder(self) -> str | None:
        try:
            with self.engine.begin() as conn:
                return conn.execute(
                    select(self.table.c.holder).where(self.table.c.id == _LOCK_ROW_ID)
                ).scalar()
        except SQLAlchemyError:
            return None

    def release(self) -> None:
        """Release the lock if this runner holds it."""
        if not self._held:
            return

        strategy = self.strategy
        try:
            if strategy == TABLE:
                self._delete_lock_row()
            else:
                self._release_session_lock(strategy)
        finally:
            self._held = False

        logger.info("Released migration lock", lock=self.name, strategy=strategy)

    def _release_session_lock(self, strategy: str) -> None:
        connection = self._connection
        self._connection = None
        if connection is None:
            return
        try:
            if strategy == ADVISORY:
                connection.execute(
                    text("SELECT pg_advisory_unlock(:key)"), {"key": self.key}
                )
            else:
                connection.execute(
                    text("SELECT RELEASE_LOCK(:name)"), {"name": self._named_lock}
                )
            connection.commit()
        except SQLAlchemyError as e:
            # Closing the session below drops the lock anyway
            logger.warning(
                "Failed to release migration lock explicitly",
                lock=self.name,
                error=str(e),
            )
        finally:
            connection.close()

    def _delete_lock_row(self) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(self.table).where(self.table.c.id == _LOCK_ROW_ID))
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to release migration lock {self.table.name!r}: {e}"
            ) from e

    def force_release(self) -> bool:
        """Clear a lock left behind by a process that no longer runs.

        Returns:
            True if a stale lock row was removed.
        """
        if self.strategy != TABLE:
            logger.info(
                "Session locks are dropped by the database when their "
                "connection ends; nothing to clear",
                lock=self.name,
            )
            return False

        try:
            self.table.create(self.engine, checkfirst=True)
            with self.engine.begin() as conn:
                result = conn.execute(
                    delete(self.table).where(self.table.c.id == _LOCK_ROW_ID)
                )
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to clear migration lock {self.table.name!r}: {e}"
            ) from e

        cleared = result.rowcount > 0
        logger.warning("Cleared migration lock", lock=self.name, cleared=cleared)
        return cleared

    def __enter__(self) -> "MigrationLock":
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_val is None:
            self.release()
            return

        # The error raised inside the block takes precedence
        try:
            self.release()
        except DatabaseError as e:
            logger.error(
                "Failed to release migration lock", exception=e, lock=self.name
            )
