"""
Schema Registry for learnstore.

The SchemaRegistry is the single authority for the on-disk shape of the
local store. It provides:
- Registration of entity types in declaration order
- Lookup by entity name or table name
- The ordered DDL statements the migration runner applies
- Schema fingerprinting so a store file records which shape it was built with
- Freeze mechanism to prevent runtime modifications

Invariants:
    - Registry is mutable during startup, frozen before any store is opened
    - Once frozen, no new entity types can be registered
    - Entity names and table names are globally unique
    - Parent tables are registered before their children
    - Fingerprint changes when the schema changes

How to change safely:
    - Add new entity types at the end of the declaration order
    - Bump STORE_VERSION whenever statements() would produce something new
    - Never modify registered types after freeze
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Dict, Iterator, List, Optional

from .types import EntityTypeDef

logger = logging.getLogger(__name__)

# Monotonic schema revision understood by this code.
STORE_VERSION = 1

METADATA_TABLE = "_metadata"
METADATA_STATEMENT = (
    f"CREATE TABLE IF NOT EXISTS {METADATA_TABLE} (\n"
    "    key TEXT PRIMARY KEY NOT NULL,\n"
    "    value TEXT NOT NULL\n"
    ")"
)


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""
    pass


class DuplicateRegistrationError(Exception):
    """Raised when attempting to register a duplicate entity name or table."""
    pass


class SchemaRegistry:
    """Ordered registry of entity type definitions.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        version: Store version this registry describes
        frozen: Whether the registry is frozen (immutable)
        fingerprint: SHA-256 hash of the schema (computed on freeze)

    Example:
        >>> registry = SchemaRegistry()
        >>> registry.register(Deck)
        >>> registry.register(Card)
        >>> registry.freeze()
        'sha256:...'
        >>> registry.get("cards").name
        'Card'
    """

    def __init__(self, version: int = STORE_VERSION) -> None:
        if version < 1:
            raise ValueError(f"Store version must be >= 1, got {version}")
        self.version = version
        self._entities: Dict[str, EntityTypeDef] = {}
        self._entities_by_table: Dict[str, EntityTypeDef] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    def register(self, entity: EntityTypeDef) -> None:
        """Register an entity type definition.

        Args:
            entity: The entity type to register

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name or table is already taken
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity type '{entity.name}': registry is frozen"
                )
            if entity.name in self._entities:
                raise DuplicateRegistrationError(
                    f"Entity type name '{entity.name}' already registered"
                )
            if entity.table in self._entities_by_table or entity.table == METADATA_TABLE:
                raise DuplicateRegistrationError(
                    f"Table '{entity.table}' already registered"
                )

            if entity.parent and entity.parent.table not in self._entities_by_table:
                logger.warning(
                    f"Entity type '{entity.name}' references unregistered table "
                    f"'{entity.parent.table}'"
                )

            self._entities[entity.name] = entity
            self._entities_by_table[entity.table] = entity
            logger.debug(f"Registered entity type: {entity.name} (table={entity.table})")

    def get(self, name_or_table: str) -> Optional[EntityTypeDef]:
        """Get an entity type by entity name ("Card") or table name ("cards")."""
        return self._entities.get(name_or_table) or self._entities_by_table.get(name_or_table)

    def __iter__(self) -> Iterator[EntityTypeDef]:
        """Iterate over entity types in declaration order."""
        return iter(list(self._entities.values()))

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, name_or_table: object) -> bool:
        return isinstance(name_or_table, str) and self.get(name_or_table) is not None

    def tables(self) -> List[str]:
        return [e.table for e in self._entities.values()]

    def owner_path(self, entity: EntityTypeDef) -> List[EntityTypeDef]:
        """Return the chain of entity types from ``entity`` to its direct owner.

        The last element carries ``owner_field``. For directly owned entity
        types the chain is just ``[entity]``.

        Raises:
            KeyError: If a parent table is not registered
            ValueError: If the parent chain is cyclic
        """
        chain = [entity]
        current = entity
        while current.owner_field is None:
            assert current.parent is not None
            parent = self._entities_by_table.get(current.parent.table)
            if parent is None:
                raise KeyError(current.parent.table)
            if parent in chain:
                raise ValueError(f"Cyclic parent chain at entity type '{parent.name}'")
            chain.append(parent)
            current = parent
        return chain

    def freeze(self) -> str:
        """Freeze the registry and compute fingerprint.

        Returns:
            Schema fingerprint string

        Raises:
            RegistryFrozenError: If already frozen
            ValueError: If validate_all() reports errors
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            errors = self.validate_all()
            if errors:
                raise ValueError("Invalid schema: " + "; ".join(errors))

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Schema registry frozen with {len(self._entities)} entity types, "
                f"version={self.version}, fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint over the canonical JSON of the schema.

        Declaration order is part of the schema (it is the DDL order), so
        entity types are not re-sorted.
        """
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
        return f"sha256:{hash_bytes}"

    def statements(self) -> List[str]:
        """All DDL statements: metadata relation first, then each entity in order."""
        result = [METADATA_STATEMENT]
        for entity in self._entities.values():
            result.extend(entity.create_statements())
        return result

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "entities": [e.to_dict() for e in self._entities.values()],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Convert registry to JSON string.

        Args:
            indent: JSON indentation (None for compact)
        """
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict) -> SchemaRegistry:
        """Create registry from dictionary representation (not frozen)."""
        registry = cls(version=data.get("version", STORE_VERSION))
        for entity_data in data.get("entities", []):
            registry.register(EntityTypeDef.from_dict(entity_data))
        return registry

    @classmethod
    def from_json(cls, json_str: str) -> SchemaRegistry:
        return cls.from_dict(json.loads(json_str))

    def validate_all(self) -> list[str]:
        """Validate all registered types for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        seen_tables: set[str] = set()

        for entity in self._entities.values():
            if entity.parent is not None:
                if entity.parent.table not in self._entities_by_table:
                    errors.append(
                        f"Entity '{entity.name}' references unknown table '{entity.parent.table}'"
                    )
                elif entity.parent.table not in seen_tables:
                    errors.append(
                        f"Entity '{entity.name}' is declared before its parent "
                        f"'{entity.parent.table}'"
                    )
            try:
                self.owner_path(entity)
            except KeyError:
                # Already reported above as an unknown parent table
                pass
            except ValueError as e:
                errors.append(str(e))
            seen_tables.add(entity.table)

        return errors
