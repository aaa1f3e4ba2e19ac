"""
Local store for learnstore.

LocalStore opens the single connection, runs the migration runner once,
and hands out one repository per entity type:

    >>> store = LocalStore.open_at("/var/lib/learnstore/local.db")
    >>> store.notes.list_by_owner("u1")
    []
    >>> store.cards.list_due("u1")
    []
    >>> store.close()

Invariants:
    - No repository is usable before migrations have completed
    - All repositories share one ConnectionManager (one lock, one handle)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from ..schema.entities import get_registry
from ..schema.registry import SchemaRegistry
from .clock import Clock, ManualClock, SystemClock
from .connection import ConnectionManager
from .errors import (
    ConflictError,
    LearnStoreError,
    LockError,
    MigrationError,
    NotFoundError,
    PathError,
    SerializationError,
    StoreError,
    TombstoneError,
    ValidationError,
)
from .migrations import FINGERPRINT_KEY, ensure_current, read_metadata, read_version
from .repository import CardRepository, Entity, EntityRepository
from .sync import SyncOperation, SyncStatus

logger = logging.getLogger(__name__)

# Entity types with a specialised repository class.
_REPOSITORY_CLASSES: Dict[str, type[EntityRepository]] = {
    "cards": CardRepository,
}


class LocalStore:
    """Facade over the connection manager and the per-entity repositories.

    Attributes:
        notes, pages, decks, cards, study_goals, learning_logs, milestones,
        user_settings: One repository per relation
        version: Store version after migration
    """

    notes: EntityRepository
    pages: EntityRepository
    decks: EntityRepository
    cards: CardRepository
    study_goals: EntityRepository
    learning_logs: EntityRepository
    milestones: EntityRepository
    user_settings: EntityRepository

    def __init__(
        self,
        manager: ConnectionManager,
        clock: Optional[Clock] = None,
    ) -> None:
        """Wrap a manager; opens it (running migrations) if not yet open."""
        self.manager = manager
        self.registry = manager.registry
        self.clock = clock or SystemClock()
        self.version = manager.open()
        self._repositories: Dict[str, EntityRepository] = {}
        for entity_type in self.registry:
            repo_class = _REPOSITORY_CLASSES.get(entity_type.table, EntityRepository)
            repo = repo_class(manager, entity_type, self.registry, self.clock)
            self._repositories[entity_type.table] = repo
            setattr(self, entity_type.table, repo)

    @classmethod
    def open_at(
        cls,
        path: str | Path,
        registry: Optional[SchemaRegistry] = None,
        clock: Optional[Clock] = None,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        lock_timeout_seconds: Optional[float] = 30.0,
    ) -> LocalStore:
        """Open (creating and migrating if needed) the store file at ``path``."""
        manager = ConnectionManager(
            path,
            registry or get_registry(),
            wal_mode=wal_mode,
            busy_timeout_ms=busy_timeout_ms,
            lock_timeout_seconds=lock_timeout_seconds,
        )
        return cls(manager, clock=clock)

    def repository(self, name_or_table: str) -> EntityRepository:
        """Look up a repository by entity name ("Card") or table ("cards").

        Raises:
            NotFoundError: If no such entity type is registered
        """
        entity_type = self.registry.get(name_or_table)
        if entity_type is None:
            raise NotFoundError(f"Unknown entity type '{name_or_table}'", table=name_or_table)
        return self._repositories[entity_type.table]

    def repositories(self) -> Dict[str, EntityRepository]:
        return dict(self._repositories)

    def pending_summary(self) -> Dict[str, int]:
        """Number of pending records per relation, for the remote-sync process."""
        return {
            table: repo.count_by_status()[SyncStatus.PENDING.value]
            for table, repo in self._repositories.items()
        }

    def stored_fingerprint(self) -> Optional[str]:
        with self.manager.access() as conn:
            return read_metadata(conn, FINGERPRINT_KEY)

    def describe(self) -> Dict[str, Any]:
        """Registry, store version and fingerprints, for diagnostics."""
        return {
            "version": self.version,
            "fingerprint": self.registry.fingerprint,
            "stored_fingerprint": self.stored_fingerprint(),
            "schema": self.registry.to_dict(),
        }

    def close(self) -> None:
        self.manager.close()

    def __enter__(self) -> LocalStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = [
    "LocalStore",
    "ConnectionManager",
    "EntityRepository",
    "CardRepository",
    "Entity",
    # Clock
    "Clock",
    "SystemClock",
    "ManualClock",
    # Sync
    "SyncStatus",
    "SyncOperation",
    # Migrations
    "ensure_current",
    "read_version",
    # Errors
    "LearnStoreError",
    "StoreError",
    "ConflictError",
    "TombstoneError",
    "MigrationError",
    "PathError",
    "LockError",
    "SerializationError",
    "NotFoundError",
    "ValidationError",
]
