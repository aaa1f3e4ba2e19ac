"""
Sync-state machine for locally stored records.

Every record carries exactly one sync status:

    pending   local state not yet acknowledged by the remote authority
    synced    local state matches what the remote last confirmed
    conflict  reserved for a reconciliation layer; never produced here
    deleted   tombstone; removed locally, waiting for the remote to confirm

Transitions:

    create_local   (new)                       -> pending
    create_remote  (new)                       -> synced
    update         pending, synced, conflict   -> pending
    soft_delete    pending, synced, deleted    -> deleted
    mark_synced    pending, synced, conflict   -> synced
    mark_synced    deleted                     -> deleted
    overwrite      any (or new)                -> synced

Invariants:
    - deleted is never left by a local operation; only overwrite (remote
      authority) or physical removal ends a tombstone
    - conflict is accepted as input but no operation produces it
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"
    DELETED = "deleted"

    @classmethod
    def from_str(cls, value: str) -> SyncStatus:
        """Convert string representation to SyncStatus.

        Raises:
            ValueError: If value is not a valid sync status
        """
        for status in cls:
            if status.value == value:
                return status
        valid = [s.value for s in cls]
        raise ValueError(f"Invalid sync status '{value}'. Valid statuses: {valid}")


class SyncOperation(str, Enum):
    CREATE_LOCAL = "create_local"
    CREATE_REMOTE = "create_remote"
    UPDATE = "update"
    SOFT_DELETE = "soft_delete"
    MARK_SYNCED = "mark_synced"
    OVERWRITE = "overwrite"


class InvalidTransition(Exception):
    """Raised when an operation is not allowed from the record's current status."""

    def __init__(self, operation: SyncOperation, current: Optional[SyncStatus]) -> None:
        state = current.value if current else "absent"
        super().__init__(f"Operation '{operation.value}' is not allowed from '{state}'")
        self.operation = operation
        self.current = current


_P, _S, _C, _D = SyncStatus.PENDING, SyncStatus.SYNCED, SyncStatus.CONFLICT, SyncStatus.DELETED

# (operation, current status or None for a new record) -> next status
_TRANSITIONS: dict[tuple[SyncOperation, Optional[SyncStatus]], SyncStatus] = {
    (SyncOperation.CREATE_LOCAL, None): _P,
    (SyncOperation.CREATE_REMOTE, None): _S,
    (SyncOperation.UPDATE, _P): _P,
    (SyncOperation.UPDATE, _S): _P,
    (SyncOperation.UPDATE, _C): _P,
    (SyncOperation.SOFT_DELETE, _P): _D,
    (SyncOperation.SOFT_DELETE, _S): _D,
    (SyncOperation.SOFT_DELETE, _D): _D,
    (SyncOperation.MARK_SYNCED, _P): _S,
    (SyncOperation.MARK_SYNCED, _S): _S,
    (SyncOperation.MARK_SYNCED, _C): _S,
    (SyncOperation.MARK_SYNCED, _D): _D,
    (SyncOperation.OVERWRITE, None): _S,
    (SyncOperation.OVERWRITE, _P): _S,
    (SyncOperation.OVERWRITE, _S): _S,
    (SyncOperation.OVERWRITE, _C): _S,
    (SyncOperation.OVERWRITE, _D): _S,
}


def next_status(operation: SyncOperation, current: Optional[SyncStatus]) -> SyncStatus:
    """Return the status a record moves to when ``operation`` is applied.

    Args:
        operation: The mutation being performed
        current: The record's current status, or None if it does not exist yet

    Raises:
        InvalidTransition: If the operation is not allowed from ``current``
    """
    try:
        return _TRANSITIONS[(operation, current)]
    except KeyError:
        raise InvalidTransition(operation, current) from None


def is_allowed(operation: SyncOperation, current: Optional[SyncStatus]) -> bool:
    return (operation, current) in _TRANSITIONS


def initial_status(status: str | SyncStatus) -> SyncStatus:
    """Validate the explicit status a caller supplies on create.

    Only ``pending`` (local create) and ``synced`` (remote-originated create)
    are valid starting points.

    Raises:
        ValueError: For any other status
    """
    status = SyncStatus.from_str(status) if isinstance(status, str) else status
    if status == _P:
        return next_status(SyncOperation.CREATE_LOCAL, None)
    if status == _S:
        return next_status(SyncOperation.CREATE_REMOTE, None)
    raise ValueError(f"A record cannot be created with sync status '{status.value}'")
