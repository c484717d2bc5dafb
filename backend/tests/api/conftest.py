"""Shared fixtures for API tests."""
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from api.main import app
from core.backend import Backend, get_backend
from core.config import Settings
from tests.fakes import USER, USER_TOKEN, FakeChangeFeed, FakeRecordStore, FakeSessionProvider


@pytest.fixture
def auth_provider() -> FakeSessionProvider:
    """Session provider that knows one signed-in user."""
    return FakeSessionProvider({USER_TOKEN: USER})


@pytest.fixture
async def backend(
    store: FakeRecordStore,
    feed: FakeChangeFeed,
    auth_provider: FakeSessionProvider,
) -> AsyncGenerator[Backend]:
    """Backend handle wired to in-memory collaborators."""
    backend = Backend(
        Settings(_env_file=None), store=store, feed=feed, auth=auth_provider,
    )
    yield backend
    await backend.aclose()


@pytest.fixture
async def client(backend: Backend) -> AsyncGenerator[AsyncClient]:
    """Client authenticated as USER through the Authorization header."""
    app.dependency_overrides[get_backend] = lambda: backend
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            headers={"Authorization": f"Bearer {USER_TOKEN}"},
        ) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
async def anonymous_client(backend: Backend) -> AsyncGenerator[AsyncClient]:
    """Client without credentials."""
    app.dependency_overrides[get_backend] = lambda: backend
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test",
        ) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
