"""
Command routes for learnstore.

Each route adapts one UI-initiated call into exactly one repository
operation; the routes add no semantics of their own. Handlers are plain
``def`` functions so FastAPI runs them on its worker thread pool, where
they block on the store lock like any other caller.

Errors raised by the store are rendered by the handler installed in
``app.py``; routes only turn "nothing there" results into NotFoundError.

Relation-wide listings live under ``/{table}/-/`` so that no record id
(e.g. one literally named "pending") is shadowed by a listing route.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from ..store import Entity, EntityRepository, LocalStore, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["learnstore"])


# --- Request/Response Models ---


class EntityWriteRequest(BaseModel):
    """A complete record, as created locally or received from the remote."""

    id: str = Field(..., min_length=1, description="Record ID")
    fields: dict[str, Any] = Field(default_factory=dict, description="Domain field values")
    sync_status: str = Field("pending", description="pending (local) or synced (from remote)")
    local_updated_at: str | None = Field(None, description="Time of the local change")
    server_updated_at: str | None = Field(None, description="Remote update time, if known")
    synced_at: str | None = Field(None, description="Last reconciliation time")


class EntityUpdateRequest(BaseModel):
    """Partial update; only the named fields change."""

    fields: dict[str, Any] = Field(..., description="Fields to update")


class MarkSyncedRequest(BaseModel):
    """Remote acknowledgement of a record's current local state."""

    server_updated_at: str = Field(..., min_length=1, description="Remote update time")


class EntityResponse(BaseModel):
    """Stored record."""

    kind: str
    id: str
    fields: dict[str, Any]
    sync_status: str
    local_updated_at: str | None = None
    server_updated_at: str | None = None
    synced_at: str | None = None


class DeleteResponse(BaseModel):
    id: str
    deleted: bool


# --- Dependencies ---


def get_store(request: Request) -> LocalStore:
    """Get the store from app state."""
    return request.app.state.store


def get_repository(table: str, store: LocalStore = Depends(get_store)) -> EntityRepository:
    """Resolve the ``{table}`` path segment to its repository (404 if unknown)."""
    return store.repository(table)


def _response(entity: Entity) -> EntityResponse:
    return EntityResponse(
        kind=entity.kind,
        id=entity.id,
        fields=entity.fields,
        sync_status=entity.sync_status,
        local_updated_at=entity.local_updated_at,
        server_updated_at=entity.server_updated_at,
        synced_at=entity.synced_at,
    )


def _entity(repo: EntityRepository, body: EntityWriteRequest) -> Entity:
    return Entity(
        kind=repo.entity_type.name,
        id=body.id,
        fields=dict(body.fields),
        sync_status=body.sync_status,
        local_updated_at=body.local_updated_at,
        server_updated_at=body.server_updated_at,
        synced_at=body.synced_at,
    )


def _not_found(repo: EntityRepository, entity_id: str) -> NotFoundError:
    return NotFoundError(
        f"{repo.entity_type.name} '{entity_id}' not found", table=repo.table, entity_id=entity_id
    )


# --- Store-wide Routes ---


@router.get("/health")
def health(store: LocalStore = Depends(get_store)):
    return {"status": "healthy", "service": "learnstore", "version": store.version}


@router.get("/schema")
def get_schema(store: LocalStore = Depends(get_store)):
    """
    Get the registry, store version and schema fingerprints.

    ``stored_fingerprint`` is what the store file recorded at its last
    migration; it matches ``fingerprint`` unless the schema changed without
    a version bump.
    """
    return store.describe()


@router.get("/sync/summary")
def sync_summary(store: LocalStore = Depends(get_store)) -> dict[str, int]:
    """Pending record counts per relation (the outbound sync queue sizes)."""
    return store.pending_summary()


@router.get("/cards/due/{owner_id}", response_model=list[EntityResponse])
def list_due_cards(
    owner_id: str,
    as_of: str | None = Query(None, description="ISO-8601 time; defaults to now"),
    store: LocalStore = Depends(get_store),
):
    """Cards of one user that are due for review."""
    return [_response(e) for e in store.cards.list_due(owner_id, as_of=as_of)]


# --- Per-relation Routes ---


@router.get("/{table}/by-owner/{owner_id}", response_model=list[EntityResponse])
def list_by_owner(owner_id: str, repo: EntityRepository = Depends(get_repository)):
    return [_response(e) for e in repo.list_by_owner(owner_id)]


@router.get("/{table}/by-parent/{parent_id}", response_model=list[EntityResponse])
def list_by_parent(parent_id: str, repo: EntityRepository = Depends(get_repository)):
    return [_response(e) for e in repo.list_by_parent(parent_id)]


@router.get("/{table}/-/pending", response_model=list[EntityResponse])
def list_pending(repo: EntityRepository = Depends(get_repository)):
    """Outbound queue: pending records, oldest change first."""
    return [_response(e) for e in repo.list_pending_sync()]


@router.get("/{table}/-/deleted", response_model=list[EntityResponse])
def list_deleted(repo: EntityRepository = Depends(get_repository)):
    return [_response(e) for e in repo.list_deleted()]


@router.get("/{table}/{entity_id}", response_model=EntityResponse)
def get_entity(entity_id: str, repo: EntityRepository = Depends(get_repository)):
    entity = repo.get(entity_id)
    if entity is None:
        raise _not_found(repo, entity_id)
    return _response(entity)


@router.post("/{table}", response_model=EntityResponse, status_code=201)
def create_entity(body: EntityWriteRequest, repo: EntityRepository = Depends(get_repository)):
    return _response(repo.create(_entity(repo, body)))


@router.patch("/{table}/{entity_id}", response_model=EntityResponse)
def update_entity(
    entity_id: str,
    body: EntityUpdateRequest,
    repo: EntityRepository = Depends(get_repository),
):
    entity = repo.update(entity_id, body.fields)
    if entity is None:
        raise _not_found(repo, entity_id)
    return _response(entity)


@router.delete("/{table}/{entity_id}", response_model=DeleteResponse)
def soft_delete_entity(entity_id: str, repo: EntityRepository = Depends(get_repository)):
    """Mark a record deleted; it stays queryable until hard-deleted."""
    return DeleteResponse(id=entity_id, deleted=repo.soft_delete(entity_id))


@router.delete("/{table}/{entity_id}/hard", response_model=DeleteResponse)
def hard_delete_entity(entity_id: str, repo: EntityRepository = Depends(get_repository)):
    """Physically remove a record after the remote confirmed its tombstone."""
    return DeleteResponse(id=entity_id, deleted=repo.hard_delete(entity_id))


@router.post("/{table}/{entity_id}/synced", response_model=EntityResponse)
def mark_synced(
    entity_id: str,
    body: MarkSyncedRequest,
    repo: EntityRepository = Depends(get_repository),
):
    if not repo.mark_synced(entity_id, body.server_updated_at):
        raise _not_found(repo, entity_id)
    entity = repo.get(entity_id)
    if entity is None:
        raise _not_found(repo, entity_id)
    return _response(entity)


@router.put("/{table}/{entity_id}/remote", response_model=EntityResponse)
def overwrite_from_remote(
    entity_id: str,
    body: EntityWriteRequest,
    repo: EntityRepository = Depends(get_repository),
):
    """Replace the local record with the remote's value (remote wins)."""
    if body.id != entity_id:
        raise ValidationError(
            f"Body id '{body.id}' does not match path id '{entity_id}'", table=repo.table
        )
    return _response(repo.overwrite_from_remote(_entity(repo, body)))
