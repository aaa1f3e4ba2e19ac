"""
Shared fixtures for learnstore tests.
"""

import pytest

from learnstore.schema import get_registry
from learnstore.store import LocalStore, ManualClock

NOW = "2024-06-01T00:00:00.000000Z"


@pytest.fixture
def registry():
    """The frozen registry of all entity types."""
    return get_registry()


@pytest.fixture
def clock():
    """Clock pinned to NOW."""
    return ManualClock(NOW)


@pytest.fixture
def db_path(tmp_path):
    """Store file path inside a directory that does not exist yet."""
    return tmp_path / "data" / "local.db"


@pytest.fixture
def store(db_path, clock):
    """Open, migrated store on a temporary file."""
    local = LocalStore.open_at(db_path, clock=clock)
    yield local
    local.close()
