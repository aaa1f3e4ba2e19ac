"""
Integration tests for the command routes.

The app is built around a store opened by the test, so every route runs
against a real store file through FastAPI's TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from learnstore.api.app import create_app, status_for
from learnstore.config import AppConfig
from learnstore.store import (
    ConflictError,
    LearnStoreError,
    LocalStore,
    LockError,
    NotFoundError,
    StoreError,
    TombstoneError,
    ValidationError,
)
from tests.conftest import NOW
from tests.factories import LATER, card, deck, note

API = "/api/v1"


def _body(entity):
    return {
        "id": entity.id,
        "fields": entity.fields,
        "sync_status": entity.sync_status,
        "local_updated_at": entity.local_updated_at,
    }


@pytest.fixture
def client(store):
    """Client over an app sharing the test's store."""
    return TestClient(create_app(config=AppConfig(), store=store))


class TestRecordRoutes:
    """Tests for per-relation routes."""

    def test_health(self, client):
        """Health reports the store version."""
        response = client.get(f"{API}/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_create_and_get(self, client):
        """POST creates, GET returns the stored record."""
        response = client.post(f"{API}/decks", json=_body(deck()))

        assert response.status_code == 201
        assert response.json()["fields"]["title"] == "Deck"

        response = client.get(f"{API}/decks/d1")
        assert response.status_code == 200
        assert response.json()["kind"] == "Deck"
        assert response.json()["sync_status"] == "pending"

    def test_entity_name_as_table(self, client):
        """Entity names resolve like table names."""
        client.post(f"{API}/decks", json=_body(deck()))

        assert client.get(f"{API}/Deck/d1").status_code == 200

    def test_get_missing(self, client):
        """Missing records are 404 with the error body."""
        response = client.get(f"{API}/decks/nope")

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"
        assert response.json()["details"]["id"] == "nope"

    def test_unknown_table(self, client):
        """Unknown relations are 404."""
        assert client.get(f"{API}/quizzes/x").status_code == 404

    def test_invalid_payload(self, client):
        """Validation failures are 400 and list the problems."""
        response = client.post(f"{API}/decks", json=_body(deck(is_public="yes")))

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"
        assert response.json()["details"]["errors"]

    def test_body_without_id(self, client):
        """Request models are checked before the store is touched."""
        assert client.post(f"{API}/decks", json={"fields": {}}).status_code == 422

    def test_duplicate_is_conflict(self, client):
        """A taken id is 409."""
        client.post(f"{API}/decks", json=_body(deck()))

        response = client.post(f"{API}/decks", json=_body(deck()))

        assert response.status_code == 409
        assert response.json()["error_code"] == "CONFLICT"

    def test_update(self, client):
        """PATCH applies fields and returns the pending record."""
        client.post(f"{API}/decks", json=_body(deck(status="synced")))

        response = client.patch(f"{API}/decks/d1", json={"fields": {"title": "Verbs"}})

        assert response.status_code == 200
        assert response.json()["fields"]["title"] == "Verbs"
        assert response.json()["sync_status"] == "pending"
        assert response.json()["local_updated_at"] == NOW

    def test_update_missing(self, client):
        """PATCH of a missing record is 404."""
        response = client.patch(f"{API}/decks/nope", json={"fields": {"title": "x"}})

        assert response.status_code == 404

    def test_update_tombstone(self, client):
        """PATCH of a deleted record is 409 TOMBSTONE."""
        client.post(f"{API}/decks", json=_body(deck()))
        client.delete(f"{API}/decks/d1")

        response = client.patch(f"{API}/decks/d1", json={"fields": {"title": "x"}})

        assert response.status_code == 409
        assert response.json()["error_code"] == "TOMBSTONE"

    def test_soft_and_hard_delete(self, client):
        """DELETE tombstones; DELETE .../hard removes."""
        client.post(f"{API}/decks", json=_body(deck()))

        assert client.delete(f"{API}/decks/d1").json() == {"id": "d1", "deleted": True}
        assert client.get(f"{API}/decks/by-owner/u1").json() == []
        assert [d["id"] for d in client.get(f"{API}/decks/-/deleted").json()] == ["d1"]

        assert client.delete(f"{API}/decks/d1/hard").json() == {"id": "d1", "deleted": True}
        assert client.get(f"{API}/decks/d1").status_code == 404
        assert client.delete(f"{API}/decks/d1").json()["deleted"] is False

    def test_listings(self, client):
        """Owner, parent and pending listings."""
        client.post(f"{API}/decks", json=_body(deck()))
        client.post(f"{API}/cards", json=_body(card()))

        assert [c["id"] for c in client.get(f"{API}/cards/by-parent/d1").json()] == ["c1"]
        assert [c["id"] for c in client.get(f"{API}/cards/by-owner/u1").json()] == ["c1"]
        assert [c["id"] for c in client.get(f"{API}/cards/-/pending").json()] == ["c1"]
        assert client.get(f"{API}/notes/by-parent/x").status_code == 404

    @pytest.mark.parametrize("entity_id", ["pending", "deleted"])
    def test_record_ids_not_shadowed_by_listings(self, client, entity_id):
        """Records named like a listing are still reachable by id."""
        client.post(f"{API}/decks", json=_body(deck(entity_id)))

        response = client.get(f"{API}/decks/{entity_id}")

        assert response.status_code == 200
        assert response.json()["id"] == entity_id
        assert [d["id"] for d in client.get(f"{API}/decks/-/pending").json()] == [entity_id]


class TestSyncRoutes:
    """Tests for the sync-facing routes."""

    def test_mark_synced(self, client):
        """Acknowledged records leave the pending queue."""
        client.post(f"{API}/notes", json=_body(note()))

        response = client.post(f"{API}/notes/n1/synced", json={"server_updated_at": LATER})

        assert response.status_code == 200
        assert response.json()["sync_status"] == "synced"
        assert response.json()["server_updated_at"] == LATER
        assert client.get(f"{API}/notes/-/pending").json() == []
        assert client.get(f"{API}/sync/summary").json()["notes"] == 0

    def test_mark_synced_missing(self, client):
        """Acknowledging an unknown record is 404."""
        response = client.post(f"{API}/notes/nope/synced", json={"server_updated_at": LATER})

        assert response.status_code == 404

    def test_overwrite_from_remote(self, client):
        """PUT .../remote replaces the local value."""
        client.post(f"{API}/notes", json=_body(note(title="Local")))

        remote = note(title="Remote", updated_at=LATER)
        response = client.put(f"{API}/notes/n1/remote", json=_body(remote))

        assert response.status_code == 200
        assert response.json()["fields"]["title"] == "Remote"
        assert response.json()["sync_status"] == "synced"
        assert response.json()["server_updated_at"] == LATER

    def test_overwrite_id_mismatch(self, client):
        """Path and body ids must agree."""
        response = client.put(f"{API}/notes/other/remote", json=_body(note(updated_at=LATER)))

        assert response.status_code == 400

    def test_sync_summary(self, client):
        """Pending counts for every relation."""
        client.post(f"{API}/decks", json=_body(deck("d1")))
        client.post(f"{API}/decks", json=_body(deck("d2")))

        summary = client.get(f"{API}/sync/summary").json()

        assert summary["decks"] == 2
        assert summary["cards"] == 0
        assert len(summary) == 8

    def test_due_cards(self, client):
        """Due cards at the store clock or an explicit time."""
        client.post(f"{API}/decks", json=_body(deck()))
        client.post(f"{API}/cards", json=_body(card("c1", next_review_at="2024-05-01T00:00:00.000000Z")))
        client.post(f"{API}/cards", json=_body(card("c2", next_review_at="2024-07-01T00:00:00.000000Z")))

        assert [c["id"] for c in client.get(f"{API}/cards/due/u1").json()] == ["c1"]
        response = client.get(f"{API}/cards/due/u1", params={"as_of": "2025-01-01T00:00:00.000000Z"})
        assert [c["id"] for c in response.json()] == ["c1", "c2"]

    def test_due_cards_bad_as_of(self, client):
        """An unparseable as_of is a 400, not an empty list."""
        response = client.get(f"{API}/cards/due/u1", params={"as_of": "tomorrow"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_schema(self, client, registry):
        """Schema route reports matching fingerprints."""
        info = client.get(f"{API}/schema").json()

        assert info["fingerprint"] == registry.fingerprint
        assert info["stored_fingerprint"] == registry.fingerprint


class TestErrorMapping:
    """Tests for store error to HTTP status mapping."""

    def test_lock_timeout_is_503(self, db_path, clock):
        """A busy store answers 503 with Retry-After."""
        store = LocalStore.open_at(db_path, clock=clock, lock_timeout_seconds=0.05)
        client = TestClient(create_app(config=AppConfig(), store=store))
        try:
            with store.manager.access():
                response = client.get(f"{API}/decks/d1")
        finally:
            store.close()

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["error_code"] == "LOCK_ERROR"

    @pytest.mark.parametrize(
        "error,status",
        [
            (ValidationError("bad"), 400),
            (NotFoundError("missing"), 404),
            (ConflictError("taken"), 409),
            (TombstoneError("decks", "d1"), 409),
            (LockError("busy"), 503),
            (StoreError("broken"), 500),
            (LearnStoreError("unknown"), 500),
        ],
    )
    def test_status_for(self, error, status):
        """Each error class maps to one status code."""
        assert status_for(error) == status
