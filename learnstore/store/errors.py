"""
Error types for the local store.

This module defines all exception types raised by learnstore:
- LearnStoreError: Base exception
- StoreError: Storage engine failure
- ConflictError: Primary key or uniqueness violation
- TombstoneError: Mutation of a record already marked deleted
- MigrationError: Store could not be brought to the current version (fatal)
- PathError: Store location could not be resolved or created
- LockError: Exclusive access to the connection could not be obtained
- SerializationError: Field value could not be converted to or from storage
- NotFoundError: Record or relation does not exist
- ValidationError: Payload does not match the entity definition

Invariants:
    - All errors inherit from LearnStoreError
    - Errors carry a stable code for programmatic handling
    - sqlite3 exceptions never escape the store untranslated
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class LearnStoreError(Exception):
    """Base exception for all learnstore errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        retryable: Whether the same call may succeed if repeated
    """

    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "LEARNSTORE_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "error_code": self.code, "details": self.details}


class StoreError(LearnStoreError):
    """The storage engine rejected or failed an operation.

    Raised when:
    - The store file cannot be opened
    - A statement fails (including a missing parent row)
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "STORE_ERROR", details=details)


class ConflictError(StoreError):
    """A primary key or uniqueness constraint was violated."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        entity_id: Optional[str] = None,
        code: str = "CONFLICT",
    ) -> None:
        super().__init__(message, code=code, details={"table": table, "id": entity_id})
        self.table = table
        self.entity_id = entity_id


class TombstoneError(ConflictError):
    """The record is a tombstone and can no longer be modified locally."""

    def __init__(self, table: str, entity_id: str) -> None:
        super().__init__(
            f"{table} record '{entity_id}' is deleted",
            table=table,
            entity_id=entity_id,
            code="TOMBSTONE",
        )


class MigrationError(StoreError):
    """The store could not be brought to the current version.

    Raised when:
    - A schema statement fails (the batch is rolled back)
    - The store was written by a newer version of this code
    """

    def __init__(
        self,
        message: str,
        stored_version: Optional[int] = None,
        target_version: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="MIGRATION_ERROR",
            details={"stored_version": stored_version, "target_version": target_version},
        )
        self.stored_version = stored_version
        self.target_version = target_version


class PathError(LearnStoreError):
    """The store location could not be resolved or created."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, code="PATH_ERROR", details={"path": path})
        self.path = path


class LockError(LearnStoreError):
    """Exclusive access to the store connection could not be obtained.

    The caller may retry; no state was changed.
    """

    retryable = True

    def __init__(self, message: str, timeout: Optional[float] = None) -> None:
        super().__init__(message, code="LOCK_ERROR", details={"timeout": timeout})
        self.timeout = timeout


class SerializationError(LearnStoreError):
    """A field value could not be converted to or from its stored form."""

    def __init__(self, message: str, table: Optional[str] = None, field_name: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="SERIALIZATION_ERROR",
            details={"table": table, "field": field_name},
        )
        self.table = table
        self.field_name = field_name


class NotFoundError(LearnStoreError):
    """The requested record or relation does not exist."""

    def __init__(self, message: str, table: Optional[str] = None, entity_id: Optional[str] = None) -> None:
        super().__init__(message, code="NOT_FOUND", details={"table": table, "id": entity_id})
        self.table = table
        self.entity_id = entity_id


class ValidationError(LearnStoreError):
    """Payload validation failed.

    Raised when:
    - Required field is missing
    - Field value has wrong type or is out of range
    - Enum value is invalid
    - Field name is unknown to the entity type
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"table": table, "errors": errors or []},
        )
        self.table = table
        self.errors = errors or []
