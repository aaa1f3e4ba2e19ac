"""
Schema module for learnstore.

This module declares the relational shape of the local store:
- Type definitions (EntityTypeDef, FieldDef, ParentRef)
- Schema registry holding the entity types in DDL order
- The eight entity types of the learning app and the process-wide registry

Invariants:
    - STORE_VERSION only ever increases
    - Table names are never reused for a different entity
    - All entity types are registered before the store is opened

How to change safely:
    - Append new entity types after their parents
    - Add new fields as optional or with a default, then bump STORE_VERSION
    - Never remove enum values or columns that a store may already hold
"""

from .entities import (
    ALL_ENTITIES,
    Card,
    Deck,
    LearningLog,
    Milestone,
    Note,
    Page,
    StudyGoal,
    UserSettings,
    build_registry,
    get_registry,
    reset_registry,
)
from .registry import (
    METADATA_TABLE,
    STORE_VERSION,
    DuplicateRegistrationError,
    RegistryFrozenError,
    SchemaRegistry,
)
from .types import (
    CORE_COLUMNS,
    SYNC_STATUSES,
    EntityTypeDef,
    FieldDef,
    FieldKind,
    ParentRef,
    field,
)

__all__ = [
    # Types
    "FieldDef",
    "FieldKind",
    "EntityTypeDef",
    "ParentRef",
    "field",
    "CORE_COLUMNS",
    "SYNC_STATUSES",
    # Registry
    "SchemaRegistry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    "STORE_VERSION",
    "METADATA_TABLE",
    # Entities
    "Note",
    "Page",
    "Deck",
    "Card",
    "StudyGoal",
    "LearningLog",
    "Milestone",
    "UserSettings",
    "ALL_ENTITIES",
    "build_registry",
    "get_registry",
    "reset_registry",
]
