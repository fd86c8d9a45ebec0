"""Database engine construction for the migration target."""

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError
from sqlalchemy.pool import StaticPool

from ..utils.logging import DatabaseError, LogContext, get_logger

logger = get_logger(__name__, LogContext.DATABASE)


def _is_memory_sqlite(database_url: str) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def enable_sqlite_transactional_ddl(engine: Engine) -> None:
    """Make DDL on pysqlite connections part of the surrounding transaction.

    The sqlite3 module only opens transactions before DML, so a failed
    CREATE/ALTER would otherwise stay committed. Implicit handling is turned
    off and BEGIN is emitted by SQLAlchemy instead.
    """

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


class DatabaseManager:
    """Owns the engine used to reach the target database."""

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_pre_ping: bool = True,
    ) -> None:
        """Initialize database manager.

        Args:
            database_url: SQLAlchemy database URL.
            echo: Whether to echo SQL statements.
            pool_pre_ping: Whether to validate pooled connections before use.
        """
        self.database_url = database_url
        self.echo = echo
        self.pool_pre_ping = pool_pre_ping
        self._engine: Engine | None = None

    @property
    def engine(self) -> Engine:
        """Get the database engine, creating it if necessary."""
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> Engine:
        engine_kwargs: dict[str, Any] = {
            "echo": self.echo,
            "pool_pre_ping": self.pool_pre_ping,
        }

        try:
            is_sqlite = make_url(self.database_url).get_backend_name() == "sqlite"
            # An in-memory database lives only as long as its one connection
            if is_sqlite and _is_memory_sqlite(self.database_url):
                engine_kwargs.update(
                    {
                        "poolclass": StaticPool,
                        "connect_args": {"check_same_thread": False},
                    }
                )
            engine = create_engine(self.database_url, **engine_kwargs)
        except (ArgumentError, NoSuchModuleError) as e:
            raise DatabaseError(
                f"Cannot create engine for {self._safe_url()}: {e}"
            ) from e

        if is_sqlite:
            enable_sqlite_transactional_ddl(engine)

        logger.debug("Created database engine", url=self._safe_url())
        return engine

    def _safe_url(self) -> str:
        try:
            return make_url(self.database_url).render_as_string(hide_password=True)
        except ArgumentError:
            return "<invalid database url>"

    def close(self) -> None:
        """Dispose of pooled connections."""
        if self._engine:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> "DatabaseManager":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
