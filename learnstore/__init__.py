"""
learnstore - local-first store for an offline learning app.

An embedded SQLite store mirroring notes, pages, decks, cards, study goals,
milestones, learning logs and user settings, tracking per record whether
its local state has reached the remote authority.

Example:
    >>> from learnstore import LocalStore, Entity
    >>> store = LocalStore.open_at("local.db")
    >>> store.decks.create(Entity("Deck", "d1", {
    ...     "user_id": "u1", "title": "Verbs",
    ...     "created_at": "2024-01-01T00:00:00Z", "updated_at": "2024-01-01T00:00:00Z",
    ... }))
    >>> [d.id for d in store.decks.list_pending_sync()]
    ['d1']
"""

from ._version import __version__
from .schema import STORE_VERSION, get_registry
from .store import (
    CardRepository,
    ConflictError,
    Entity,
    EntityRepository,
    LearnStoreError,
    LocalStore,
    LockError,
    ManualClock,
    MigrationError,
    NotFoundError,
    PathError,
    SerializationError,
    StoreError,
    SyncStatus,
    SystemClock,
    TombstoneError,
    ValidationError,
)

__all__ = [
    "__version__",
    "STORE_VERSION",
    "get_registry",
    "LocalStore",
    "Entity",
    "EntityRepository",
    "CardRepository",
    "SyncStatus",
    "SystemClock",
    "ManualClock",
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
