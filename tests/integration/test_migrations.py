"""
Integration tests for the migration runner against real SQLite files.

Tests cover:
- Fresh store creation
- Idempotent re-runs
- Recovery of partially created stores
- Rollback on statement failure
- Refusal to downgrade
"""

import sqlite3
from types import SimpleNamespace

import pytest

from learnstore.schema import STORE_VERSION, build_registry
from learnstore.store.errors import MigrationError
from learnstore.store.migrations import (
    FINGERPRINT_KEY,
    ensure_current,
    read_metadata,
    read_version,
)


def _schema(conn):
    return conn.execute(
        "SELECT type, name, sql FROM sqlite_master ORDER BY type, name"
    ).fetchall()


def _tables(conn):
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


class TestEnsureCurrent:
    """Tests for ensure_current."""

    @pytest.fixture
    def registry(self):
        return build_registry()

    @pytest.fixture
    def conn(self, tmp_path):
        """Autocommit connection to an empty store file."""
        connection = sqlite3.connect(str(tmp_path / "store.db"), isolation_level=None)
        connection.execute("PRAGMA foreign_keys = ON")
        yield connection
        connection.close()

    def test_fresh_store_version_zero(self, conn):
        """A store without metadata is at version 0."""
        assert read_version(conn) == 0

    def test_fresh_store_migrated(self, conn, registry):
        """Migrating an empty file creates every relation at the target version."""
        assert ensure_current(conn, registry) == STORE_VERSION

        assert read_version(conn) == STORE_VERSION
        assert set(registry.tables()) | {"_metadata"} <= _tables(conn)
        assert read_metadata(conn, FINGERPRINT_KEY) == registry.fingerprint

    def test_second_run_is_noop(self, conn, registry):
        """Running twice leaves an identical schema."""
        ensure_current(conn, registry)
        before = _schema(conn)

        assert ensure_current(conn, registry) == STORE_VERSION
        assert _schema(conn) == before

    def test_partial_store_completed(self, conn, registry):
        """A store with some relations but no version is completed."""
        conn.execute(registry.get("notes").create_statements()[0])

        ensure_current(conn, registry)

        assert set(registry.tables()) <= _tables(conn)
        assert read_version(conn) == STORE_VERSION

    def test_failed_statement_rolls_back(self, conn, registry):
        """Any failing statement leaves nothing from the batch behind."""
        # A pre-existing decks relation without user_id breaks the index on it.
        conn.execute("CREATE TABLE decks (id TEXT PRIMARY KEY)")

        with pytest.raises(MigrationError, match="failed") as exc_info:
            ensure_current(conn, registry)

        assert exc_info.value.stored_version == 0
        assert _tables(conn) == {"decks"}
        assert read_version(conn) == 0
        assert not conn.in_transaction

    def test_failure_after_transaction_ended(self, conn):
        """A failure outside the migration transaction is still a MigrationError."""
        # A batch that ends the transaction early leaves nothing to roll back.
        registry = SimpleNamespace(
            version=1,
            fingerprint=None,
            statements=lambda: ["COMMIT", "SELECT * FROM missing_table"],
        )

        with pytest.raises(MigrationError, match="failed"):
            ensure_current(conn, registry)

        assert not conn.in_transaction

    def test_newer_store_refused(self, conn, registry):
        """A store written by newer code is not downgraded."""
        ensure_current(conn, registry)
        conn.execute("UPDATE _metadata SET value = ? WHERE key = 'db_version'", (str(STORE_VERSION + 1),))

        with pytest.raises(MigrationError, match="newer than supported"):
            ensure_current(conn, registry)

    def test_corrupt_version_refused(self, conn, registry):
        """A non-numeric stored version is a migration error."""
        ensure_current(conn, registry)
        conn.execute("UPDATE _metadata SET value = 'one' WHERE key = 'db_version'")

        with pytest.raises(MigrationError, match="not an integer"):
            ensure_current(conn, registry)

    def test_upgrade_records_new_version(self, conn, registry):
        """A newer registry re-applies the guarded statements and bumps the version."""
        ensure_current(conn, registry)

        newer = build_registry(version=STORE_VERSION + 1)
        assert ensure_current(conn, newer) == STORE_VERSION + 1
        assert read_version(conn) == STORE_VERSION + 1
        assert read_metadata(conn, FINGERPRINT_KEY) == newer.fingerprint
