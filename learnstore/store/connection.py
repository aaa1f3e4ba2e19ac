"""
Connection manager for the local store.

Owns the single SQLite connection of the process and serializes every use
of it behind one lock. Repositories never hold the connection outside an
``access()`` or ``transaction()`` block.

Invariants:
    - Exactly one sqlite3.Connection per manager, opened in autocommit mode
    - WAL journaling (unless disabled) and foreign keys are on before use
    - The migration runner has completed before open() returns
    - The lock is released on every exit path of access()/transaction()
    - A write inside transaction() either fully commits or fully rolls back

How to change safely:
    - Keep all pragmas in _configure(); they apply once per connection
    - Never hand the raw connection to code that outlives the lock scope
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from ..schema.registry import SchemaRegistry
from .errors import LockError, MigrationError, PathError, StoreError
from .migrations import ensure_current

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


class ConnectionManager:
    """Lock-guarded owner of the store's SQLite connection.

    Thread safety:
        All access goes through one threading.Lock. Callers block until the
        lock is free, up to ``lock_timeout_seconds`` (None waits forever).

    Example:
        >>> manager = ConnectionManager("/var/lib/learnstore/local.db", registry)
        >>> manager.open()
        >>> with manager.transaction() as conn:
        ...     conn.execute("UPDATE decks SET title = ? WHERE id = ?", ("Verbs", "d1"))
        >>> manager.close()
    """

    def __init__(
        self,
        path: str | Path,
        registry: SchemaRegistry,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        lock_timeout_seconds: Optional[float] = 30.0,
    ) -> None:
        """Initialize the manager; nothing is opened until open().

        Args:
            path: Store file path, or ":memory:" for an in-memory store
            registry: Frozen registry the store is migrated to
            wal_mode: Enable SQLite WAL journaling
            busy_timeout_ms: SQLite busy timeout
            lock_timeout_seconds: Maximum wait for exclusive access
        """
        self.path = path
        self.registry = registry
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.lock_timeout_seconds = lock_timeout_seconds
        self.version: Optional[int] = None
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _resolve_path(self) -> str:
        if str(self.path) == MEMORY_PATH:
            return MEMORY_PATH
        try:
            db_path = Path(self.path).expanduser().resolve()
            db_path.parent.mkdir(parents=True, exist_ok=True)
        except (OSError, RuntimeError) as e:
            raise PathError(f"Cannot prepare store location: {e}", path=str(self.path)) from e
        if db_path.is_dir():
            raise PathError("Store path is a directory", path=str(db_path))
        return str(db_path)

    def _configure(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        if self.wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")

    def open(self) -> int:
        """Open the connection, apply pragmas and run the migration runner.

        Returns:
            The store version after migration

        Raises:
            PathError: If the store location cannot be prepared
            StoreError: If SQLite cannot open or configure the file
            MigrationError: If the store cannot be brought to the current version
        """
        with self._lock:
            if self._conn is not None:
                return self.version or 0

            db_path = self._resolve_path()
            try:
                conn = sqlite3.connect(
                    db_path,
                    timeout=self.busy_timeout_ms / 1000.0,
                    isolation_level=None,  # Autocommit by default, explicit transactions
                    check_same_thread=False,  # Guarded by self._lock
                )
                conn.row_factory = sqlite3.Row
            except sqlite3.Error as e:
                raise StoreError(f"Cannot open store: {e}", details={"path": db_path}) from e
            try:
                self._configure(conn)
            except sqlite3.Error as e:
                conn.close()
                raise StoreError(f"Cannot configure store: {e}", details={"path": db_path}) from e

            try:
                self.version = ensure_current(conn, self.registry)
            except MigrationError:
                conn.close()
                raise

            self._conn = conn
            logger.info(
                "Store opened",
                extra={"path": db_path, "version": self.version, "wal_mode": self.wal_mode},
            )
            return self.version

    def _acquire(self) -> sqlite3.Connection:
        timeout = -1 if self.lock_timeout_seconds is None else self.lock_timeout_seconds
        if not self._lock.acquire(timeout=timeout):
            raise LockError(
                f"Timed out after {self.lock_timeout_seconds}s waiting for the store",
                timeout=self.lock_timeout_seconds,
            )
        if self._conn is None:
            self._lock.release()
            raise LockError("Store is not open")
        return self._conn

    @contextmanager
    def access(self) -> Iterator[sqlite3.Connection]:
        """Exclusive use of the connection for one logical operation.

        Raises:
            LockError: If the lock cannot be acquired or the store is closed
        """
        conn = self._acquire()
        try:
            yield conn
        finally:
            self._lock.release()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Exclusive use of the connection inside BEGIN IMMEDIATE ... COMMIT.

        Any exception raised in the block rolls the transaction back and
        propagates unchanged.
        """
        with self.access() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"Cannot start transaction: {e}") from e
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            logger.info("Store closed", extra={"path": str(self.path)})

    def __enter__(self) -> ConnectionManager:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
