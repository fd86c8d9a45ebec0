"""Tests for the migration lock."""

import zlib
from unittest.mock import MagicMock, Mock, patch

import pytest

from dbtrek.migrations.errors import MigrationLockError
from dbtrek.migrations.lock import ADVISORY, NAMED, TABLE, MigrationLock
from dbtrek.utils.logging import DatabaseError


def mock_engine(dialect_name, scalar=None):
    """Engine double whose connections record executed statements."""
    engine = Mock()
    engine.dialect.name = dialect_name
    connection = MagicMock()
    connection.execute.return_value.scalar.return_value = scalar
    engine.connect.return_value = connection
    return engine, connection


def executed_sql(connection):
    return [str(call.args[0]) for call in connection.execute.call_args_list]


class TestTableLock:
    """Test the lock-row strategy used by SQLite."""

    def test_strategy(self, engine):
        """Test SQLite uses the lock table."""
        assert MigrationLock(engine).strategy == TABLE

    def test_acquire_and_release(self, engine, table_names):
        """Test the lock row is created and removed."""
        lock = MigrationLock(engine)

        with lock:
            assert lock.held
            assert "schema_migrations_lock" in table_names(engine)
            assert lock._current_holder() == lock.holder

        assert not lock.held
        assert lock._current_holder() is None

    def test_second_lock_is_refused(self, engine):
        """Test a held lock cannot be taken again."""
        first = MigrationLock(engine)
        second = MigrationLock(engine)

        with first:
            with pytest.raises(MigrationLockError, match="migrate unlock"):
                second.acquire()
            assert not second.held

        second.acquire()
        second.release()

    def test_reacquire_by_same_instance(self, engine):
        """Test acquiring twice from one instance is an error."""
        lock = MigrationLock(engine)

        with lock:
            with pytest.raises(MigrationLockError, match="already held"):
                lock.acquire()

    def test_release_when_not_held(self, engine):
        """Test releasing an unheld lock is harmless."""
        MigrationLock(engine).release()

    def test_released_on_exception(self, engine):
        """Test the context manager releases on error."""
        lock = MigrationLock(engine)

        with pytest.raises(RuntimeError):
            with lock:
                raise RuntimeError("boom")

        assert not lock.held
        assert lock._current_holder() is None

    def test_release_failure_does_not_mask_block_error(self, engine):
        """Test an error inside the block wins over a failed release."""
        lock = MigrationLock(engine)

        with patch.object(
            lock, "_delete_lock_row", side_effect=DatabaseError("table is gone")
        ):
            with pytest.raises(RuntimeError, match="boom"):
                with lock:
                    raise RuntimeError("boom")

        assert not lock.held

    def test_release_failure_raises_after_clean_block(self, engine):
        """Test a failed release is reported when the block succeeded."""
        lock = MigrationLock(engine)

        with patch.object(
            lock, "_delete_lock_row", side_effect=DatabaseError("table is gone")
        ):
            with pytest.raises(DatabaseError):
                with lock:
                    pass

        assert not lock.held

    def test_force_release_clears_stale_lock(self, engine):
        """Test a lock left by a dead process can be cleared."""
        stale = MigrationLock(engine)
        stale.acquire()

        assert MigrationLock(engine).force_release() is True
        assert MigrationLock(engine).force_release() is False

        fresh = MigrationLock(engine)
        fresh.acquire()
        fresh.release()

    def test_lock_table_follows_ledger_name(self, engine, table_names):
        """Test the lock table name derives from the ledger table."""
        with MigrationLock(engine, "trek_ledger"):
            assert "trek_ledger_lock" in table_names(engine)


class TestSessionLocks:
    """Test PostgreSQL and MySQL session locks."""

    def test_postgres_advisory_lock(self):
        """Test pg_advisory_lock is taken and released on one connection."""
        engine, connection = mock_engine("postgresql")
        lock = MigrationLock(engine)

        assert lock.strategy == ADVISORY
        assert lock.key == zlib.crc32(b"schema_migrations") & 0x7FFFFFFF

        with lock:
            assert lock.held

        statements = executed_sql(connection)
        assert "pg_advisory_lock" in statements[0]
        assert "pg_advisory_unlock" in statements[1]
        assert connection.execute.call_args_list[0].args[1] == {"key": lock.key}
        connection.close.assert_called_once()

    def test_mysql_named_lock(self):
        """Test GET_LOCK/RELEASE_LOCK are used for MySQL."""
        engine, connection = mock_engine("mysql", scalar=1)
        lock = MigrationLock(engine)

        assert lock.strategy == NAMED

        with lock:
            pass

        statements = executed_sql(connection)
        assert "GET_LOCK" in statements[0]
        assert "RELEASE_LOCK" in statements[1]
        assert connection.execute.call_args_list[0].args[1] == {
            "name": "dbtrek:schema_migrations"
        }

    def test_mysql_lock_refused(self):
        """Test a GET_LOCK result other than 1 is an error."""
        engine, connection = mock_engine("mariadb", scalar=0)

        with pytest.raises(MigrationLockError):
            MigrationLock(engine).acquire()

        connection.close.assert_called_once()

    def test_force_release_is_noop_for_session_locks(self):
        """Test session locks need no manual clearing."""
        engine, connection = mock_engine("postgresql")

        assert MigrationLock(engine).force_release() is False
        connection.execute.assert_not_called()
