"""
Migration runner for the local store.

Brings a store file from whatever version it holds up to the registry's
target version. Runs once on every process start, before any repository
is handed out.

Invariants:
    - The stored version never decreases
    - An absent _metadata relation means version 0
    - All statements of one migration apply in a single transaction;
      on failure nothing is committed and MigrationError is raised
    - Every statement is IF NOT EXISTS guarded, so a retried migration
      converges on the same schema

How to change safely:
    - Bump STORE_VERSION together with any change to the registry
    - Only add statements; existing relations keep their columns
    - A store written by newer code is refused rather than downgraded
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from ..schema.registry import METADATA_TABLE, SchemaRegistry
from .errors import MigrationError

logger = logging.getLogger(__name__)

VERSION_KEY = "db_version"
FINGERPRINT_KEY = "schema_fingerprint"


def _metadata_exists(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (METADATA_TABLE,),
    ).fetchone()
    return row is not None


def read_metadata(conn: sqlite3.Connection, key: str) -> Optional[str]:
    """Read one value from the metadata relation, or None if absent."""
    if not _metadata_exists(conn):
        return None
    row = conn.execute(
        f"SELECT value FROM {METADATA_TABLE} WHERE key = ?", (key,)
    ).fetchone()
    return row[0] if row else None


def read_version(conn: sqlite3.Connection) -> int:
    """Return the store version recorded in the file (0 for a fresh store).

    Raises:
        MigrationError: If the recorded version is not an integer
    """
    value = read_metadata(conn, VERSION_KEY)
    if value is None:
        return 0
    try:
        return int(value)
    except ValueError:
        raise MigrationError(f"Stored version is not an integer: {value!r}") from None


def _write_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        f"""
        INSERT INTO {METADATA_TABLE} (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, value),
    )


def ensure_current(conn: sqlite3.Connection, registry: SchemaRegistry) -> int:
    """Bring the store up to ``registry.version``.

    Safe to call on every start; an already-current store is left untouched.

    Args:
        conn: Connection in autocommit mode (isolation_level=None)
        registry: Frozen registry describing the target schema

    Returns:
        The store version after the call

    Raises:
        MigrationError: If a statement fails or the store is newer than the code
    """
    target = registry.version
    try:
        current = read_version(conn)
    except sqlite3.Error as e:
        raise MigrationError(f"Could not read store version: {e}", target_version=target) from e

    if current > target:
        raise MigrationError(
            f"Store version {current} is newer than supported version {target}",
            stored_version=current,
            target_version=target,
        )
    if current == target:
        logger.debug("Store is current", extra={"version": current})
        return current

    statements = registry.statements()
    logger.info(
        f"Migrating store from version {current} to {target}",
        extra={"from_version": current, "to_version": target, "statements": len(statements)},
    )

    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as e:
        raise MigrationError(
            f"Could not start migration: {e}", stored_version=current, target_version=target
        ) from e

    try:
        for statement in statements:
            conn.execute(statement)
        _write_metadata(conn, VERSION_KEY, str(target))
        if registry.fingerprint:
            _write_metadata(conn, FINGERPRINT_KEY, registry.fingerprint)
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        logger.error(
            "Migration failed",
            extra={"from_version": current, "to_version": target, "error": str(e)},
        )
        raise MigrationError(
            f"Migration to version {target} failed: {e}",
            stored_version=current,
            target_version=target,
        ) from e

    logger.info(
        f"Store migrated to version {target}",
        extra={"version": target, "fingerprint": registry.fingerprint},
    )
    return target
