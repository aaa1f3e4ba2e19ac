"""
Generic entity repository over one synced relation.

One EntityRepository is instantiated per EntityTypeDef; the entity
definition supplies the column list, owner path and parent reference, so
the same code serves notes, decks, cards and the rest.

Invariants:
    - Every mutation consults the sync-state machine before writing
    - local_updated_at never moves backwards for a row on local mutation
    - Normal listings exclude tombstones; list_deleted() returns them
    - Each mutation runs in one transaction; a failure leaves no trace
    - sqlite3 errors are translated into learnstore errors here

How to change safely:
    - Column lists always come from the EntityTypeDef, never literals
    - Add entity-specific queries in a subclass (see CardRepository)
"""

from __future__ import annotations

import copy
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional

from ..schema.registry import SchemaRegistry
from ..schema.types import EntityTypeDef
from .clock import Clock, SystemClock, normalize_timestamp
from .connection import ConnectionManager
from .errors import (
    ConflictError,
    LockError,
    NotFoundError,
    SerializationError,
    StoreError,
    TombstoneError,
    ValidationError,
)
from .sync import (
    InvalidTransition,
    SyncOperation,
    SyncStatus,
    initial_status,
    next_status,
)

logger = logging.getLogger(__name__)

_ACTIVE_ORDER = "ORDER BY {alias}local_updated_at DESC, {alias}id ASC"
_QUEUE_ORDER = "ORDER BY local_updated_at ASC, id ASC"


@dataclass
class Entity:
    """One stored record of any entity type.

    Attributes:
        kind: Entity type name (e.g. "Card")
        id: Opaque unique identifier
        fields: Domain field values keyed by column name
        sync_status: pending, synced, conflict or deleted
        local_updated_at: Time of the most recent local mutation
        server_updated_at: Time of the most recent remote-confirmed value
        synced_at: Last reconciliation time
    """

    kind: str
    id: str
    fields: dict[str, Any] = field(default_factory=dict)
    sync_status: str = SyncStatus.PENDING.value
    local_updated_at: Optional[str] = None
    server_updated_at: Optional[str] = None
    synced_at: Optional[str] = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


def _translate(error: sqlite3.Error, table: str, entity_id: Optional[str] = None) -> Exception:
    """Map a sqlite3 exception onto the learnstore error hierarchy."""
    message = str(error)
    if isinstance(error, sqlite3.IntegrityError):
        if "UNIQUE" in message or "PRIMARY KEY" in message:
            translated: Exception = ConflictError(
                f"{table} record conflicts with an existing row: {message}",
                table=table,
                entity_id=entity_id,
            )
        elif "FOREIGN KEY" in message:
            translated = StoreError(
                f"{table} record references a missing parent row",
                code="FOREIGN_KEY",
                details={"table": table, "id": entity_id},
            )
        else:
            translated = ValidationError(
                f"{table} record violates a column constraint: {message}",
                table=table,
                errors=[message],
            )
    elif isinstance(error, sqlite3.OperationalError) and "locked" in message:
        translated = LockError(f"Store file is locked: {message}")
    else:
        translated = StoreError(
            f"{table} operation failed: {message}", details={"table": table, "id": entity_id}
        )
    logger.warning(
        "Store operation failed",
        extra={"table": table, "id": entity_id, "error": message},
    )
    return translated


class EntityRepository:
    """CRUD and sync-state operations for one entity relation.

    Example:
        >>> decks = EntityRepository(manager, registry.get("Deck"), registry)
        >>> decks.create(Entity("Deck", "d1", {"user_id": "u1", "title": "Verbs", ...}))
        >>> decks.update("d1", {"title": "Irregular verbs"}).sync_status
        'pending'
    """

    def __init__(
        self,
        manager: ConnectionManager,
        entity_type: EntityTypeDef,
        registry: SchemaRegistry,
        clock: Optional[Clock] = None,
    ) -> None:
        self.manager = manager
        self.entity_type = entity_type
        self.registry = registry
        self.clock = clock or SystemClock()
        self.table = entity_type.table
        self._owner_sql = self._build_owner_sql(registry.owner_path(entity_type))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(table={self.table!r})"

    def _build_owner_sql(self, path: list[EntityTypeDef]) -> str:
        """SELECT joining ``t0`` (this relation) up to the relation holding the owner column.

        Raises:
            StoreError: If a link of the path has no parent or the end has no owner
        """
        joins = []
        for depth, (child, parent) in enumerate(zip(path, path[1:])):
            if child.parent is None:
                raise StoreError(f"{child.name} has no parent to resolve its owner through")
            joins.append(
                f"JOIN {parent.table} t{depth + 1} ON t{depth}.{child.parent.field} = t{depth + 1}.id"
            )
        owner = path[-1]
        if owner.owner_field is None:
            raise StoreError(f"{owner.name} has no owner column")
        return (
            f"SELECT t0.* FROM {self.table} t0 {' '.join(joins)} "
            f"WHERE t{len(path) - 1}.{owner.owner_field} = ? AND t0.sync_status != ? "
            + _ACTIVE_ORDER.format(alias="t0.")
        )

    # Row conversion

    def _row_to_entity(self, row: sqlite3.Row) -> Entity:
        values: dict[str, Any] = {}
        for f in self.entity_type.fields:
            try:
                values[f.name] = f.from_db(row[f.name])
            except (ValueError, TypeError) as e:
                raise SerializationError(
                    f"Cannot decode {self.table}.{f.name} of '{row['id']}': {e}",
                    table=self.table,
                    field_name=f.name,
                ) from e
        return Entity(
            kind=self.entity_type.name,
            id=row["id"],
            fields=values,
            sync_status=row["sync_status"],
            local_updated_at=row["local_updated_at"],
            server_updated_at=row["server_updated_at"],
            synced_at=row["synced_at"],
        )

    def _encode(self, values: dict[str, Any]) -> dict[str, Any]:
        encoded = {}
        for name, value in values.items():
            f = self.entity_type.get_field(name)
            if f is None:
                raise ValidationError(f"Unknown field '{name}'", table=self.table, errors=[name])
            try:
                encoded[name] = f.to_db(value)
            except (TypeError, ValueError) as e:
                raise SerializationError(
                    f"Cannot encode {self.table}.{name}: {e}",
                    table=self.table,
                    field_name=name,
                ) from e
        return encoded

    def _check_entity(self, entity: Entity) -> None:
        if entity.kind not in (self.entity_type.name, self.table):
            raise ValidationError(
                f"Expected a {self.entity_type.name} record, got {entity.kind}",
                table=self.table,
            )
        if not isinstance(entity.id, str) or not entity.id:
            raise ValidationError("Record id must be a non-empty string", table=self.table)

    def _validate(self, values: dict[str, Any], partial: bool = False) -> None:
        ok, errors = self.entity_type.validate_payload(values, partial=partial)
        if not ok:
            raise ValidationError(
                f"Invalid {self.entity_type.name} payload: {'; '.join(errors)}",
                table=self.table,
                errors=errors,
            )

    def _with_defaults(self, values: dict[str, Any]) -> dict[str, Any]:
        filled = dict(values)
        for f in self.entity_type.fields:
            if filled.get(f.name) is None and f.default is not None:
                filled[f.name] = copy.deepcopy(f.default)
        return filled

    def _fetch(self, conn: sqlite3.Connection, entity_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(f"SELECT * FROM {self.table} WHERE id = ?", (entity_id,)).fetchone()

    def _select(self, sql: str, params: tuple = ()) -> list[Entity]:
        with self.manager.access() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise _translate(e, self.table) from e
            return [self._row_to_entity(row) for row in rows]

    def _timestamp(self, value: Optional[str], name: str) -> Optional[str]:
        if value is None:
            return None
        try:
            return normalize_timestamp(value)
        except ValueError as e:
            raise ValidationError(
                f"{name} is not an ISO-8601 timestamp: {value!r}",
                table=self.table,
                errors=[f"{name}: {e}"],
            ) from e

    def _stamp(self, current: Optional[str]) -> str:
        now = self.clock.now()
        if current is not None and current > now:
            return current
        return now

    # Queries

    def get(self, entity_id: str) -> Optional[Entity]:
        """Get a record by id regardless of its sync status."""
        with self.manager.access() as conn:
            try:
                row = self._fetch(conn, entity_id)
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity_id) from e
            return self._row_to_entity(row) if row else None

    def list_by_owner(self, owner_id: str) -> list[Entity]:
        """Non-deleted records owned by ``owner_id``, most recently changed first.

        Entity types without an owner column (Milestone) are resolved
        through their parent chain.
        """
        return self._select(self._owner_sql, (owner_id, SyncStatus.DELETED.value))

    def list_by_parent(self, parent_id: str) -> list[Entity]:
        """Non-deleted children of one parent row, most recently changed first.

        Raises:
            NotFoundError: If this entity type has no parent relation
        """
        if self.entity_type.parent is None:
            raise NotFoundError(f"{self.entity_type.name} has no parent relation", table=self.table)
        sql = (
            f"SELECT * FROM {self.table} WHERE {self.entity_type.parent.field} = ? "
            f"AND sync_status != ? " + _ACTIVE_ORDER.format(alias="")
        )
        return self._select(sql, (parent_id, SyncStatus.DELETED.value))

    def list_pending_sync(self) -> list[Entity]:
        """All pending records across owners, oldest local change first."""
        return self._select(
            f"SELECT * FROM {self.table} WHERE sync_status = ? {_QUEUE_ORDER}",
            (SyncStatus.PENDING.value,),
        )

    def list_deleted(self) -> list[Entity]:
        """All tombstones, oldest deletion first."""
        return self._select(
            f"SELECT * FROM {self.table} WHERE sync_status = ? {_QUEUE_ORDER}",
            (SyncStatus.DELETED.value,),
        )

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in SyncStatus}
        with self.manager.access() as conn:
            try:
                rows = conn.execute(
                    f"SELECT sync_status, COUNT(*) AS n FROM {self.table} GROUP BY sync_status"
                ).fetchall()
            except sqlite3.Error as e:
                raise _translate(e, self.table) from e
        for row in rows:
            counts[row["sync_status"]] = row["n"]
        return counts

    # Mutations

    def create(self, entity: Entity) -> Entity:
        """Insert a new record with the sync status the caller states.

        Args:
            entity: Record with id, domain fields, and sync_status of
                ``pending`` (local create) or ``synced`` (hydrated from remote)

        Returns:
            The stored record, with defaults applied

        Raises:
            ValidationError: If the payload or sync status is invalid
            ConflictError: If the id or a uniqueness constraint is taken
            StoreError: If the parent row does not exist
        """
        self._check_entity(entity)
        try:
            status = initial_status(entity.sync_status)
        except ValueError as e:
            raise ValidationError(str(e), table=self.table) from e

        values = self._with_defaults(entity.fields)
        self._validate(values)
        row = {
            "id": entity.id,
            **self._encode(values),
            "sync_status": status.value,
            "synced_at": self._timestamp(entity.synced_at, "synced_at"),
            "local_updated_at": (
                self._timestamp(entity.local_updated_at, "local_updated_at") or self.clock.now()
            ),
            "server_updated_at": self._timestamp(entity.server_updated_at, "server_updated_at"),
        }
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)

        with self.manager.transaction() as conn:
            try:
                conn.execute(
                    f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
                stored = self._fetch(conn, entity.id)
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity.id) from e
            result = self._row_to_entity(stored)

        logger.debug(
            f"Created {self.entity_type.name}",
            extra={"table": self.table, "id": entity.id, "sync_status": status.value},
        )
        return result

    def update(self, entity_id: str, partial_fields: dict[str, Any]) -> Optional[Entity]:
        """Apply the named fields and mark the record pending.

        Fields not named in ``partial_fields`` keep their values, except the
        entity's touch field (``updated_at``), which is refreshed unless given.

        Returns:
            The updated record, or None if ``entity_id`` does not exist

        Raises:
            ValidationError: If a field is unknown or invalid
            TombstoneError: If the record is deleted
        """
        self._validate(partial_fields, partial=True)
        values = dict(partial_fields)

        with self.manager.transaction() as conn:
            try:
                current = self._fetch(conn, entity_id)
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity_id) from e
            if current is None:
                return None

            status = SyncStatus.from_str(current["sync_status"])
            if status == SyncStatus.DELETED:
                raise TombstoneError(self.table, entity_id)
            new_status = next_status(SyncOperation.UPDATE, status)

            stamp = self._stamp(current["local_updated_at"])
            touch = self.entity_type.touch_field
            if touch and touch not in values:
                values[touch] = stamp

            assignments = {
                **self._encode(values),
                "sync_status": new_status.value,
                "local_updated_at": stamp,
            }
            set_clause = ", ".join(f"{name} = ?" for name in assignments)
            try:
                conn.execute(
                    f"UPDATE {self.table} SET {set_clause} WHERE id = ?",
                    (*assignments.values(), entity_id),
                )
                stored = self._fetch(conn, entity_id)
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity_id) from e
            result = self._row_to_entity(stored)

        logger.debug(
            f"Updated {self.entity_type.name}",
            extra={"table": self.table, "id": entity_id, "fields": sorted(partial_fields)},
        )
        return result

    def soft_delete(self, entity_id: str) -> bool:
        """Mark a record deleted, keeping its field data.

        Returns:
            True if the record existed
        """
        with self.manager.transaction() as conn:
            try:
                current = self._fetch(conn, entity_id)
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity_id) from e
            if current is None:
                return False

            status = self._transition(SyncOperation.SOFT_DELETE, current)
            stamp = self._stamp(current["local_updated_at"])
            try:
                conn.execute(
                    f"UPDATE {self.table} SET sync_status = ?, local_updated_at = ? WHERE id = ?",
                    (status.value, stamp, entity_id),
                )
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity_id) from e

        logger.debug(
            f"Soft-deleted {self.entity_type.name}",
            extra={"table": self.table, "id": entity_id},
        )
        return True

    def hard_delete(self, entity_id: str) -> bool:
        """Physically remove a record; child rows cascade.

        Returns:
            True if a row was removed
        """
        with self.manager.transaction() as conn:
            try:
                cursor = conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (entity_id,))
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity_id) from e
            removed = cursor.rowcount > 0

        if removed:
            logger.debug(
                f"Hard-deleted {self.entity_type.name}",
                extra={"table": self.table, "id": entity_id},
            )
        return removed

    def mark_synced(self, entity_id: str, server_updated_at: str) -> bool:
        """Record the remote's acknowledgement of the current local state.

        Only the sync columns change. A tombstone stays deleted; it is
        removed with hard_delete() once the remote has confirmed it.

        Returns:
            False if ``entity_id`` does not exist
        """
        server_updated_at = self._timestamp(server_updated_at, "server_updated_at")
        with self.manager.transaction() as conn:
            try:
                current = self._fetch(conn, entity_id)
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity_id) from e
            if current is None:
                return False

            status = self._transition(SyncOperation.MARK_SYNCED, current)
            try:
                conn.execute(
                    f"UPDATE {self.table} SET sync_status = ?, synced_at = ?, "
                    f"server_updated_at = ? WHERE id = ?",
                    (status.value, self.clock.now(), server_updated_at, entity_id),
                )
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity_id) from e

        logger.debug(
            f"Marked {self.entity_type.name} synced",
            extra={"table": self.table, "id": entity_id, "server_updated_at": server_updated_at},
        )
        return True

    def overwrite_from_remote(self, entity: Entity) -> Entity:
        """Replace the local record with the remote's value, inserting if absent.

        The remote wins unconditionally: every field is replaced, the record
        becomes synced, and both server_updated_at and local_updated_at take
        the remote's own update timestamp.

        Raises:
            ValidationError: If the payload is invalid or carries no remote timestamp
            ConflictError: If the value collides with another row's unique columns
        """
        self._check_entity(entity)
        # Every declared column is written; a field the remote omits is cleared.
        values = self._with_defaults(
            {**{f.name: None for f in self.entity_type.fields}, **entity.fields}
        )
        self._validate(values)

        ts_field = self.entity_type.remote_timestamp_field
        remote_ts = self._timestamp(
            (values.get(ts_field) if ts_field else None) or entity.server_updated_at,
            "server_updated_at",
        )
        if not remote_ts:
            raise ValidationError(
                f"{self.entity_type.name} from remote carries no update timestamp",
                table=self.table,
            )

        row = {
            "id": entity.id,
            **self._encode(values),
            "sync_status": next_status(SyncOperation.OVERWRITE, None).value,
            "synced_at": self.clock.now(),
            "local_updated_at": remote_ts,
            "server_updated_at": remote_ts,
        }
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        updates = ", ".join(f"{name} = excluded.{name}" for name in row if name != "id")

        # ON CONFLICT DO UPDATE keeps the row in place; REPLACE would
        # delete it first and cascade to its children.
        with self.manager.transaction() as conn:
            try:
                conn.execute(
                    f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders}) "
                    f"ON CONFLICT(id) DO UPDATE SET {updates}",
                    tuple(row.values()),
                )
                stored = self._fetch(conn, entity.id)
            except sqlite3.Error as e:
                raise _translate(e, self.table, entity.id) from e
            result = self._row_to_entity(stored)

        logger.debug(
            f"Overwrote {self.entity_type.name} from remote",
            extra={"table": self.table, "id": entity.id, "server_updated_at": remote_ts},
        )
        return result

    def _transition(self, operation: SyncOperation, current: sqlite3.Row) -> SyncStatus:
        try:
            return next_status(operation, SyncStatus.from_str(current["sync_status"]))
        except InvalidTransition as e:
            raise ConflictError(
                f"{self.table} record '{current['id']}': {e}",
                table=self.table,
                entity_id=current["id"],
                code="INVALID_TRANSITION",
            ) from e


class CardRepository(EntityRepository):
    """Entity repository for cards with the due-card query."""

    def list_due(self, owner_id: str, as_of: Optional[str] = None) -> list[Entity]:
        """Cards of ``owner_id`` due for review at ``as_of`` (default: now).

        Cards without a next_review_at are never due. Tombstones are excluded.
        Ordered by next_review_at, earliest first.
        """
        as_of = self._timestamp(as_of, "as_of") or self.clock.now()
        sql = (
            f"SELECT * FROM {self.table} WHERE user_id = ? AND sync_status != ? "
            "AND next_review_at IS NOT NULL AND next_review_at <= ? "
            "ORDER BY next_review_at ASC, id ASC"
        )
        return self._select(sql, (owner_id, SyncStatus.DELETED.value, as_of))

