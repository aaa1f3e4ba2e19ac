"""
Integration tests for the connection manager.

Tests cover:
- Opening, directory creation and pragmas
- Scoped access and lock release on every exit path
- Transactions committing or rolling back as a whole
- Lock timeouts and closed managers
- Path, configuration and migration failures
"""

import sqlite3
import threading

import pytest

from learnstore.schema import STORE_VERSION
from learnstore.store import LocalStore, NotFoundError
from learnstore.store.connection import ConnectionManager
from learnstore.store.errors import LockError, MigrationError, PathError, StoreError
from tests.factories import deck


class TestConnectionManager:
    """Tests for ConnectionManager."""

    @pytest.fixture
    def manager(self, db_path, registry):
        """Open manager on a fresh file."""
        mgr = ConnectionManager(db_path, registry, lock_timeout_seconds=0.05)
        mgr.open()
        yield mgr
        mgr.close()

    def test_open_creates_parent_directory(self, db_path, registry):
        """The store directory is created on open."""
        assert not db_path.parent.exists()

        with ConnectionManager(db_path, registry) as mgr:
            assert mgr.is_open
            assert mgr.version == STORE_VERSION

        assert db_path.exists()

    def test_pragmas(self, manager):
        """WAL journaling and foreign keys are on."""
        with manager.access() as conn:
            assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
            assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_wal_mode_can_be_disabled(self, db_path, registry):
        """wal_mode=False keeps SQLite's default journal."""
        with ConnectionManager(db_path, registry, wal_mode=False) as mgr:
            with mgr.access() as conn:
                assert conn.execute("PRAGMA journal_mode").fetchone()[0] != "wal"

    def test_in_memory_store(self, registry):
        """":memory:" opens without touching the filesystem."""
        with ConnectionManager(":memory:", registry) as mgr:
            assert mgr.version == STORE_VERSION

    def test_access_releases_lock_on_error(self, manager):
        """An exception inside access() still releases the lock."""
        with pytest.raises(RuntimeError):
            with manager.access():
                raise RuntimeError("boom")

        with manager.access() as conn:
            assert conn.execute("SELECT 1").fetchone()[0] == 1

    def test_transaction_commits(self, manager):
        """Statements in a transaction are visible afterwards."""
        with manager.transaction() as conn:
            conn.execute("INSERT INTO _metadata (key, value) VALUES ('k', 'v')")

        with manager.access() as conn:
            row = conn.execute("SELECT value FROM _metadata WHERE key = 'k'").fetchone()
            assert row[0] == "v"

    def test_transaction_rolls_back(self, manager):
        """A failing block applies none of its statements."""
        with pytest.raises(RuntimeError):
            with manager.transaction() as conn:
                conn.execute("INSERT INTO _metadata (key, value) VALUES ('k', 'v')")
                raise RuntimeError("boom")

        with manager.access() as conn:
            assert conn.execute("SELECT value FROM _metadata WHERE key = 'k'").fetchone() is None
            assert not conn.in_transaction

    def test_lock_timeout_raises(self, manager):
        """A caller that cannot get the lock in time gets LockError."""
        with manager.access():
            with pytest.raises(LockError) as exc_info:
                with manager.access():
                    pass

        assert exc_info.value.retryable is True
        assert exc_info.value.code == "LOCK_ERROR"

    def test_callers_are_serialized(self, db_path, registry):
        """Concurrent callers block until the lock is free."""
        mgr = ConnectionManager(db_path, registry, lock_timeout_seconds=5)
        mgr.open()
        entered = threading.Event()
        release = threading.Event()
        order = []

        def holder():
            with mgr.access():
                order.append("holder")
                entered.set()
                release.wait(timeout=5)
                order.append("holder-done")

        def waiter():
            entered.wait(timeout=5)
            with mgr.access():
                order.append("waiter")

        threads = [threading.Thread(target=holder), threading.Thread(target=waiter)]
        for thread in threads:
            thread.start()
        entered.wait(timeout=5)
        release.set()
        for thread in threads:
            thread.join(timeout=5)
        mgr.close()

        assert order == ["holder", "holder-done", "waiter"]

    def test_closed_manager_raises_lock_error(self, db_path, registry):
        """Access after close fails instead of hanging."""
        mgr = ConnectionManager(db_path, registry)
        mgr.open()
        mgr.close()
        mgr.close()  # idempotent

        with pytest.raises(LockError, match="not open"):
            with mgr.access():
                pass

    def test_parent_is_a_file(self, tmp_path, registry):
        """An unusable location is a PathError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        with pytest.raises(PathError):
            ConnectionManager(blocker / "local.db", registry).open()

    def test_path_is_a_directory(self, tmp_path, registry):
        """A directory is not a store file."""
        with pytest.raises(PathError, match="directory"):
            ConnectionManager(tmp_path, registry).open()

    def test_migration_failure_closes(self, db_path, registry):
        """A store that cannot be migrated is not left open."""
        with ConnectionManager(db_path, registry):
            pass
        raw = sqlite3.connect(str(db_path))
        raw.execute("UPDATE _metadata SET value = '99' WHERE key = 'db_version'")
        raw.commit()
        raw.close()

        mgr = ConnectionManager(db_path, registry)
        with pytest.raises(MigrationError):
            mgr.open()
        assert not mgr.is_open

    def test_configure_failure_closes(self, db_path, registry):
        """A connection that cannot be configured is closed, not leaked."""
        opened = []

        class BrokenPragmas(ConnectionManager):
            def _configure(self, conn):
                opened.append(conn)
                conn.execute("SELECT * FROM no_such_table")

        mgr = BrokenPragmas(db_path, registry)
        with pytest.raises(StoreError, match="Cannot configure"):
            mgr.open()

        assert not mgr.is_open
        with pytest.raises(sqlite3.ProgrammingError):
            opened[0].execute("SELECT 1")


class TestLocalStore:
    """Tests for the LocalStore facade."""

    def test_repositories_per_table(self, store, registry):
        """One repository per registered relation."""
        assert set(store.repositories()) == set(registry.tables())
        assert store.repository("Card") is store.cards
        assert store.repository("milestones") is store.milestones

    def test_unknown_repository(self, store):
        """Unknown entity types are NotFound."""
        with pytest.raises(NotFoundError):
            store.repository("quizzes")

    def test_reopen_keeps_data(self, db_path, clock):
        """Reopening a current store is a no-op migration."""
        with LocalStore.open_at(db_path, clock=clock) as first:
            first.decks.create(deck())

        with LocalStore.open_at(db_path, clock=clock) as second:
            assert second.version == STORE_VERSION
            assert second.decks.get("d1") is not None

    def test_describe(self, store, registry):
        """describe() reports version and matching fingerprints."""
        info = store.describe()

        assert info["version"] == STORE_VERSION
        assert info["fingerprint"] == registry.fingerprint
        assert info["stored_fingerprint"] == registry.fingerprint
        assert len(info["schema"]["entities"]) == 8
