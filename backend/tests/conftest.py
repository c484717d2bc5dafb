"""Pytest fixtures for testing."""
import os
from collections.abc import AsyncGenerator

import pytest

# Keep a developer's local .env from leaking into tests
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

from services.bookmark_sync import BookmarkSync  # noqa: E402
from services.exceptions import SyncError  # noqa: E402
from tests.fakes import FakeChangeFeed, FakeRecordStore  # noqa: E402


@pytest.fixture
def store() -> FakeRecordStore:
    """Empty in-memory record store."""
    return FakeRecordStore()


@pytest.fixture
def feed() -> FakeChangeFeed:
    """In-memory change feed."""
    return FakeChangeFeed()


@pytest.fixture
def errors() -> list[SyncError]:
    """Collects errors reported by the sync layer."""
    return []


@pytest.fixture
async def sync(
    store: FakeRecordStore,
    feed: FakeChangeFeed,
    errors: list[SyncError],
) -> AsyncGenerator[BookmarkSync]:
    """A BookmarkSync wired to in-memory collaborators; torn down after the test."""
    bookmark_sync = BookmarkSync(store, feed, "token-u1", on_error=errors.append)
    yield bookmark_sync
    await bookmark_sync.teardown()
