"""Tests for the migration ledger."""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import OperationalError

from dbtrek.migrations.errors import LedgerInconsistencyError
from dbtrek.migrations.ledger import LedgerEntry, MigrationLedger
from dbtrek.utils.logging import DatabaseError


class TestMigrationLedger:
    """Test ledger storage."""

    def test_table_created_on_first_read(self, engine, table_names):
        """Test the ledger table is created on a virgin database."""
        ledger = MigrationLedger(engine)
        assert "schema_migrations" not in table_names(engine)

        assert ledger.read() == []
        assert "schema_migrations" in table_names(engine)

    def test_ensure_is_idempotent(self, engine, table_names):
        """Test repeated creation is harmless."""
        ledger = MigrationLedger(engine)

        ledger.ensure()
        ledger.ensure()

        assert "schema_migrations" in table_names(engine)

    def test_custom_table_name(self, engine, table_names):
        """Test the ledger table name is configurable."""
        ledger = MigrationLedger(engine, table_name="trek_ledger")

        ledger.ensure()

        assert "trek_ledger" in table_names(engine)
        assert "schema_migrations" not in table_names(engine)

    def test_record_and_read(self, engine):
        """Test recorded entries are read back in application order."""
        ledger = MigrationLedger(engine)
        ledger.ensure()
        first = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

        with engine.begin() as conn:
            ledger.record(conn, "create_b", applied_at=first + timedelta(seconds=1))
            ledger.record(conn, "create_a", applied_at=first)

        entries = ledger.read()

        assert entries == [
            LedgerEntry("create_a", first),
            LedgerEntry("create_b", first + timedelta(seconds=1)),
        ]
        assert all(entry.applied_at.tzinfo is not None for entry in entries)
        assert ledger.applied_names() == {"create_a", "create_b"}

    def test_record_defaults_to_now(self, engine):
        """Test applied_at defaults to the current UTC time."""
        ledger = MigrationLedger(engine)
        ledger.ensure()
        before = datetime.now(timezone.utc)

        with engine.begin() as conn:
            entry = ledger.record(conn, "create_a")

        assert before <= entry.applied_at <= datetime.now(timezone.utc)

    def test_record_rolls_back_with_transaction(self, engine):
        """Test an aborted transaction leaves no entry."""
        ledger = MigrationLedger(engine)
        ledger.ensure()

        with pytest.raises(RuntimeError):
            with engine.begin() as conn:
                ledger.record(conn, "create_a")
                raise RuntimeError("abort")

        assert ledger.read() == []

    def test_remove(self, engine):
        """Test removing an entry."""
        ledger = MigrationLedger(engine)
        ledger.ensure()
        with engine.begin() as conn:
            ledger.record(conn, "create_a")
            ledger.record(conn, "create_b")

        with engine.begin() as conn:
            ledger.remove(conn, "create_b")

        assert ledger.applied_names() == {"create_a"}

    def test_remove_unknown_entry(self, engine):
        """Test removing a missing entry is an inconsistency."""
        ledger = MigrationLedger(engine)
        ledger.ensure()

        with pytest.raises(LedgerInconsistencyError, match="no record"):
            with engine.begin() as conn:
                ledger.remove(conn, "create_a")

    def test_read_sees_only_committed_entries(self, file_engine):
        """Test reads do not observe another transaction's pending write."""
        ledger = MigrationLedger(file_engine)
        ledger.ensure()

        with file_engine.connect() as writer:
            writer.begin()
            ledger.record(writer, "create_a")

            assert ledger.read() == []

            writer.commit()

        assert ledger.applied_names() == {"create_a"}

    def test_ensure_failure_is_wrapped(self):
        """Test table creation failures surface as DatabaseError."""
        ledger = MigrationLedger(Mock())

        with patch.object(
            ledger.table,
            "create",
            side_effect=OperationalError("CREATE TABLE", {}, Exception("denied")),
        ):
            with pytest.raises(DatabaseError, match="Failed to create ledger table"):
                ledger.ensure()
