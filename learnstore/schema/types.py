"""
Core type definitions for the learnstore schema system.

This module defines the declarative shape of every synced relation:
- FieldDef: A single domain column of an entity
- ParentRef: The foreign key tying a child entity to its parent
- EntityTypeDef: Definition of one entity type and its relation

Every entity relation carries the same four sync columns in addition to its
domain fields (sync_status, synced_at, local_updated_at, server_updated_at).
They are not declared per entity; EntityTypeDef adds them when it renders DDL.

Invariants:
    - Entity names and table names are unique across the registry
    - Field names are unique within an entity and never shadow a core column
    - enum_values are append-only once a store has been created with them
    - Every statement produced here is re-runnable (IF NOT EXISTS)

How to change safely:
    - Add new fields with a default or as optional, then bump STORE_VERSION
    - Never remove or reorder enum values
    - Never rename a table; add a new entity type instead

Example:
    >>> from learnstore.schema.types import EntityTypeDef, field
    >>> Deck = EntityTypeDef(
    ...     name="Deck",
    ...     table="decks",
    ...     owner_field="user_id",
    ...     fields=(
    ...         field("user_id", "str", required=True, indexed=True),
    ...         field("title", "str", required=True),
    ...     ),
    ... )
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

from .timestamps import normalize_timestamp, parse_timestamp

SYNC_STATUSES: tuple[str, ...] = ("pending", "synced", "conflict", "deleted")

# Columns present on every entity relation, in storage order.
ID_COLUMN = "id"
SYNC_COLUMNS: tuple[str, ...] = (
    "sync_status",
    "synced_at",
    "local_updated_at",
    "server_updated_at",
)
CORE_COLUMNS: frozenset[str] = frozenset((ID_COLUMN, *SYNC_COLUMNS))

_ON_DELETE_ACTIONS = ("CASCADE", "SET NULL", "RESTRICT", "NO ACTION")


class FieldKind(Enum):
    """Supported field types in the schema.

    These map to SQLite column affinities and validation rules.
    """

    STRING = "str"
    INTEGER = "int"
    FLOAT = "float"
    BOOLEAN = "bool"  # stored as INTEGER 0/1
    TIMESTAMP = "timestamp"  # stored as fixed-width UTC text, compared lexicographically
    JSON = "json"  # JSON object/array, stored as text
    ENUM = "enum"  # string restricted to enum_values

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")

    @property
    def sql_type(self) -> str:
        if self in (FieldKind.INTEGER, FieldKind.BOOLEAN):
            return "INTEGER"
        if self == FieldKind.FLOAT:
            return "REAL"
        return "TEXT"


def _sql_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value, sort_keys=True, separators=(",", ":"))
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def _is_timestamp(value: Any) -> bool:
    try:
        parse_timestamp(value)
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single domain column.

    Attributes:
        name: Column name
        kind: The data type of the field
        required: Column is NOT NULL; a value (or default) must be present on create
        default: Default applied by the store when the value is omitted
        enum_values: Valid values if kind is ENUM (append-only)
        min_value: Inclusive lower bound for numeric kinds
        max_value: Inclusive upper bound for numeric kinds
        unique: Whether the column carries a UNIQUE constraint
        indexed: Whether to create an index on this column
        description: Human-readable description

    Invariants:
        - name must not collide with a core sync column
        - enum_values can only be appended, never removed or reordered
    """

    name: str
    kind: FieldKind
    required: bool = False
    default: Any = None
    enum_values: tuple[str, ...] | None = None
    min_value: int | float | None = None
    max_value: int | float | None = None
    unique: bool = False
    indexed: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if self.name in CORE_COLUMNS:
            raise ValueError(f"Field name '{self.name}' is reserved for sync metadata")
        if self.kind == FieldKind.ENUM and not self.enum_values:
            raise ValueError(f"enum_values required for ENUM field '{self.name}'")
        if (self.min_value is not None or self.max_value is not None) and self.kind not in (
            FieldKind.INTEGER,
            FieldKind.FLOAT,
        ):
            raise ValueError(f"Bounds are only valid on numeric field '{self.name}'")
        if self.default is not None:
            ok, error = self.validate_value(self.default)
            if not ok:
                raise ValueError(f"Invalid default for field '{self.name}': {error}")

    def validate_value(self, value: Any) -> tuple[bool, str | None]:
        """Validate a value against this field definition.

        ``None`` is accepted for optional fields only.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if value is None:
            if self.required and self.default is None:
                return False, f"Field '{self.name}' is required"
            return True, None

        validators = {
            FieldKind.STRING: lambda v: isinstance(v, str),
            FieldKind.INTEGER: lambda v: isinstance(v, int) and not isinstance(v, bool),
            FieldKind.FLOAT: lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
            FieldKind.BOOLEAN: lambda v: isinstance(v, bool),
            FieldKind.TIMESTAMP: _is_timestamp,
            FieldKind.JSON: lambda v: isinstance(v, (dict, list)),
        }

        if self.kind == FieldKind.ENUM:
            if not isinstance(value, str):
                return False, f"Field '{self.name}' must be a string, got {type(value).__name__}"
            if self.enum_values and value not in self.enum_values:
                return (
                    False,
                    f"Field '{self.name}' must be one of {self.enum_values}, got '{value}'",
                )
            return True, None

        validator = validators.get(self.kind)
        if validator and not validator(value):
            return False, f"Field '{self.name}' has invalid type for kind {self.kind.value}"

        if self.min_value is not None and value < self.min_value:
            return False, f"Field '{self.name}' must be >= {self.min_value}, got {value}"
        if self.max_value is not None and value > self.max_value:
            return False, f"Field '{self.name}' must be <= {self.max_value}, got {value}"

        return True, None

    def column_sql(self) -> str:
        """Render the column definition used in CREATE TABLE."""
        parts = [self.name, self.kind.sql_type]
        if self.required:
            parts.append("NOT NULL")
        if self.unique:
            parts.append("UNIQUE")
        if self.default is not None:
            parts.append(f"DEFAULT {_sql_literal(self.default)}")
        checks = []
        if self.enum_values:
            allowed = ", ".join(_sql_literal(v) for v in self.enum_values)
            checks.append(f"{self.name} IN ({allowed})")
        if self.min_value is not None and self.max_value is not None:
            checks.append(f"{self.name} BETWEEN {self.min_value} AND {self.max_value}")
        elif self.min_value is not None:
            checks.append(f"{self.name} >= {self.min_value}")
        elif self.max_value is not None:
            checks.append(f"{self.name} <= {self.max_value}")
        if checks:
            parts.append(f"CHECK ({' AND '.join(checks)})")
        return " ".join(parts)

    def to_db(self, value: Any) -> Any:
        """Convert a Python value to its SQLite representation.

        Raises:
            TypeError: If a JSON value cannot be encoded
            ValueError: If a timestamp is not ISO-8601
        """
        if value is None:
            return None
        if self.kind == FieldKind.BOOLEAN:
            return 1 if value else 0
        if self.kind == FieldKind.JSON:
            return json.dumps(value, sort_keys=True, separators=(",", ":"))
        if self.kind == FieldKind.TIMESTAMP:
            return normalize_timestamp(value)
        return value

    def from_db(self, value: Any) -> Any:
        """Convert a SQLite value back to its Python representation.

        Raises:
            json.JSONDecodeError: If a stored JSON column is malformed
        """
        if value is None:
            return None
        if self.kind == FieldKind.BOOLEAN:
            return bool(value)
        if self.kind == FieldKind.JSON:
            return json.loads(value)
        if self.kind == FieldKind.FLOAT:
            return float(value)
        return value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"name": self.name, "kind": self.kind.value}
        if self.required:
            result["required"] = True
        if self.default is not None:
            result["default"] = self.default
        if self.enum_values:
            result["enum_values"] = list(self.enum_values)
        if self.min_value is not None:
            result["min_value"] = self.min_value
        if self.max_value is not None:
            result["max_value"] = self.max_value
        if self.unique:
            result["unique"] = True
        if self.indexed:
            result["indexed"] = True
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            kind=FieldKind.from_str(data["kind"]),
            required=data.get("required", False),
            default=data.get("default"),
            enum_values=tuple(data["enum_values"]) if data.get("enum_values") else None,
            min_value=data.get("min_value"),
            max_value=data.get("max_value"),
            unique=data.get("unique", False),
            indexed=data.get("indexed", False),
            description=data.get("description", ""),
        )


def field(
    name: str,
    kind: str | FieldKind,
    *,
    required: bool = False,
    default: Any = None,
    enum_values: tuple[str, ...] | None = None,
    min_value: int | float | None = None,
    max_value: int | float | None = None,
    unique: bool = False,
    indexed: bool = False,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    This is the preferred way to define fields in entity definitions.

    Example:
        >>> title = field("title", "str", required=True)
        >>> mode = field("mode", "enum", enum_values=("light", "dark"), default="light")
    """
    if isinstance(kind, str):
        kind = FieldKind.from_str(kind)
    return FieldDef(
        name=name,
        kind=kind,
        required=required,
        default=default,
        enum_values=enum_values,
        min_value=min_value,
        max_value=max_value,
        unique=unique,
        indexed=indexed,
        description=description,
    )


@dataclass(frozen=True)
class ParentRef:
    """Foreign key from a child entity to its parent relation.

    Attributes:
        field: Child column holding the parent id
        table: Parent relation name
        on_delete: Referential action when the parent row is removed
    """

    field: str
    table: str
    on_delete: str = "CASCADE"

    def __post_init__(self) -> None:
        if self.on_delete not in _ON_DELETE_ACTIONS:
            raise ValueError(f"Unsupported ON DELETE action '{self.on_delete}'")

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "table": self.table, "on_delete": self.on_delete}


@dataclass(frozen=True)
class EntityTypeDef:
    """Definition of one synced entity type and its relation.

    Attributes:
        name: Entity name (e.g. "Note")
        table: Relation name (e.g. "notes")
        fields: Domain columns, in storage order after ``id``
        owner_field: Column holding the owning user id, or None when the
            owner is reached through ``parent``
        parent: Foreign key to the parent relation, if any
        unique_together: Multi-column uniqueness constraints
        indexes: Additional (non-unique) multi-column indexes
        touch_field: Domain timestamp refreshed by every local update
        remote_timestamp_field: Domain timestamp carrying the remote's own
            update time in overwrite-from-remote payloads
        description: Human-readable description

    Invariants:
        - Either owner_field or parent is set
        - owner_field, parent.field, touch_field and remote_timestamp_field
          name declared fields
    """

    name: str
    table: str
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    owner_field: str | None = None
    parent: ParentRef | None = None
    unique_together: tuple[tuple[str, ...], ...] = ()
    indexes: tuple[tuple[str, ...], ...] = ()
    touch_field: str | None = "updated_at"
    remote_timestamp_field: str | None = "updated_at"
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity type definition."""
        if not self.name:
            raise ValueError("Entity type name cannot be empty")
        if not self.table or not self.table.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name '{self.table}' for entity '{self.name}'")

        field_names = [f.name for f in self.fields]
        if len(field_names) != len(set(field_names)):
            raise ValueError(f"Duplicate field name in entity type '{self.name}'")

        if self.owner_field is None and self.parent is None:
            raise ValueError(f"Entity type '{self.name}' needs an owner_field or a parent")

        known = set(field_names)
        referenced = [
            ("owner_field", self.owner_field),
            ("touch_field", self.touch_field),
            ("remote_timestamp_field", self.remote_timestamp_field),
            ("parent.field", self.parent.field if self.parent else None),
        ]
        for label, name in referenced:
            if name is not None and name not in known:
                raise ValueError(f"{label} '{name}' is not a field of entity '{self.name}'")

        for columns in (*self.unique_together, *self.indexes):
            unknown = set(columns) - known - CORE_COLUMNS
            if unknown:
                raise ValueError(
                    f"Index on entity '{self.name}' references unknown columns {sorted(unknown)}"
                )

    @property
    def columns(self) -> tuple[str, ...]:
        """All column names in storage order."""
        return (ID_COLUMN, *(f.name for f in self.fields), *SYNC_COLUMNS)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def get_field(self, name: str) -> FieldDef | None:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def create_statements(self) -> list[str]:
        """Render the re-runnable DDL for this relation and its indexes."""
        column_lines = [f"{ID_COLUMN} TEXT PRIMARY KEY NOT NULL"]
        column_lines.extend(f.column_sql() for f in self.fields)
        allowed = ", ".join(_sql_literal(s) for s in SYNC_STATUSES)
        column_lines.extend(
            [
                f"sync_status TEXT NOT NULL DEFAULT 'pending' CHECK (sync_status IN ({allowed}))",
                "synced_at TEXT",
                "local_updated_at TEXT NOT NULL",
                "server_updated_at TEXT",
            ]
        )
        if self.parent is not None:
            column_lines.append(
                f"FOREIGN KEY ({self.parent.field}) REFERENCES {self.parent.table}(id) "
                f"ON DELETE {self.parent.on_delete}"
            )
        body = ",\n    ".join(column_lines)
        statements = [f"CREATE TABLE IF NOT EXISTS {self.table} (\n    {body}\n)"]

        indexed: list[str] = []
        if self.owner_field:
            indexed.append(self.owner_field)
        if self.parent and self.parent.field not in indexed:
            indexed.append(self.parent.field)
        indexed.extend(f.name for f in self.fields if f.indexed and f.name not in indexed)
        for column in indexed:
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{self.table}_{column} ON {self.table}({column})"
            )
        statements.append(
            f"CREATE INDEX IF NOT EXISTS idx_{self.table}_sync_status "
            f"ON {self.table}(sync_status)"
        )
        statements.append(
            f"CREATE INDEX IF NOT EXISTS idx_{self.table}_local_updated "
            f"ON {self.table}(local_updated_at)"
        )
        for columns in self.indexes:
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{self.table}_{'_'.join(columns)} "
                f"ON {self.table}({', '.join(columns)})"
            )
        for columns in self.unique_together:
            statements.append(
                f"CREATE UNIQUE INDEX IF NOT EXISTS uq_{self.table}_{'_'.join(columns)} "
                f"ON {self.table}({', '.join(columns)})"
            )
        return statements

    def validate_payload(
        self, payload: dict[str, Any], *, partial: bool = False
    ) -> tuple[bool, list[str]]:
        """Validate a payload of domain fields against this entity type.

        Args:
            payload: Dictionary of field values
            partial: Validate only the fields present (update semantics)

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors: list[str] = []

        unknown = set(payload.keys()) - set(self.field_names)
        if unknown:
            errors.append(f"Unknown fields: {sorted(unknown)}")

        for f in self.fields:
            if partial and f.name not in payload:
                continue
            value = payload.get(f.name)
            if partial and value is None and f.required:
                errors.append(f"Field '{f.name}' cannot be cleared")
                continue
            is_valid, error = f.validate_value(value)
            if not is_valid and error:
                errors.append(error)

        return len(errors) == 0, errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "table": self.table,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.owner_field:
            result["owner_field"] = self.owner_field
        if self.parent:
            result["parent"] = self.parent.to_dict()
        if self.unique_together:
            result["unique_together"] = [list(c) for c in self.unique_together]
        if self.indexes:
            result["indexes"] = [list(c) for c in self.indexes]
        if self.touch_field:
            result["touch_field"] = self.touch_field
        if self.remote_timestamp_field:
            result["remote_timestamp_field"] = self.remote_timestamp_field
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityTypeDef:
        """Create from dictionary representation."""
        parent = data.get("parent")
        return cls(
            name=data["name"],
            table=data["table"],
            fields=tuple(FieldDef.from_dict(f) for f in data.get("fields", [])),
            owner_field=data.get("owner_field"),
            parent=ParentRef(**parent) if parent else None,
            unique_together=tuple(tuple(c) for c in data.get("unique_together", [])),
            indexes=tuple(tuple(c) for c in data.get("indexes", [])),
            touch_field=data.get("touch_field"),
            remote_timestamp_field=data.get("remote_timestamp_field"),
            description=data.get("description", ""),
        )

    def __hash__(self) -> int:
        """Hash based on table name (stable identifier)."""
        return hash(self.table)

    def __eq__(self, other: object) -> bool:
        """Equality based on table name."""
        if not isinstance(other, EntityTypeDef):
            return NotImplemented
        return self.table == other.table
