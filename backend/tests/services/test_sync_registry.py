"""Tests for the per-owner sync registry."""
import asyncio

import pytest

from services.sync_registry import SyncRegistry
from tests.fakes import FakeChangeFeed, FakeRecordStore, make_bookmark


class TestSyncRegistry:
    """Tests for SyncRegistry."""

    async def test__acquire__initializes_once_per_owner(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """Two acquisitions for the same owner share one sync and one subscription."""
        store.rows = [make_bookmark(1, "A", "a", 10)]
        registry = SyncRegistry(store, feed)

        first, second = await asyncio.gather(
            registry.acquire("U1", "token-1"),
            registry.acquire("U1", "token-2"),
        )

        assert first is second
        assert len(registry) == 1
        assert "U1" in registry
        assert len(feed.subscriptions) == 1
        assert [b.title for b in first.sync.items] == ["A"]
        await registry.close()

    async def test__acquire__separate_owners_get_separate_syncs(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """Different owners never share a list."""
        registry = SyncRegistry(store, feed)

        one = await registry.acquire("U1", "token-1")
        two = await registry.acquire("U2", "token-2")

        assert one.sync is not two.sync
        assert [s.row_filter for s in feed.subscriptions] == ["user_id=eq.U1", "user_id=eq.U2"]
        await registry.close()

    async def test__acquire__refreshes_credential(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """A later acquisition's token is used for subsequent requests."""
        registry = SyncRegistry(store, feed)
        session = await registry.acquire("U1", "old-token")
        await registry.acquire("U1", "new-token")

        inserted_with = []
        original_insert = store.insert

        async def recording_insert(token: str, values: dict) -> object:
            inserted_with.append(token)
            return await original_insert(token, values)

        store.insert = recording_insert
        await session.sync.add("B", "b")

        assert inserted_with == ["new-token"]
        await registry.close()

    async def test__release__tears_down_subscription(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """Releasing an owner closes its subscription and forgets it."""
        registry = SyncRegistry(store, feed)
        await registry.acquire("U1", "token-1")

        assert await registry.release("U1") is True
        assert await registry.release("U1") is False
        assert feed.latest.close_calls == 1
        assert len(registry) == 0

    async def test__close__releases_everything(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """Shutdown closes every subscription."""
        registry = SyncRegistry(store, feed)
        await registry.acquire("U1", "token-1")
        await registry.acquire("U2", "token-2")

        await registry.close()

        assert [s.close_calls for s in feed.subscriptions] == [1, 1]
        assert len(registry) == 0

    async def test__toasts__use_configured_durations(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """Toast lifetimes come from the registry configuration."""
        registry = SyncRegistry(store, feed, add_toast_seconds=1.5, delete_toast_seconds=9.0)
        session = await registry.acquire("U1", "token-1")

        await session.toasts.add("A", "a")
        toast = session.toasts.describe()

        assert toast is not None
        assert toast.expires_in <= 1.5
        await registry.close()


class TestStartup:
    """Tests for concurrent and failing startups."""

    async def test__acquire__slow_owner_does_not_block_others(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """An owner whose initial load hangs does not delay another owner's startup."""
        store.select_gate = asyncio.Event()
        store.gated_owners = {"U1"}
        registry = SyncRegistry(store, feed)
        slow = asyncio.create_task(registry.acquire("U1", "token-1"))
        while "U1" not in store.select_calls:
            await asyncio.sleep(0)

        other = await asyncio.wait_for(registry.acquire("U2", "token-2"), timeout=1.0)

        assert other.sync.owner_id == "U2"
        assert "U1" not in registry
        store.select_gate.set()
        await slow
        assert "U1" in registry
        await registry.close()

    async def test__acquire__failed_startup_is_not_registered(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """A startup that raises leaves nothing behind and the next acquisition retries."""
        store.fail_select = RuntimeError("boom")
        registry = SyncRegistry(store, feed)

        with pytest.raises(RuntimeError, match="boom"):
            await registry.acquire("U1", "token-1")

        assert "U1" not in registry
        assert feed.latest.close_calls == 1

        store.fail_select = None
        session = await registry.acquire("U1", "token-1")

        assert session.sync.ready is True
        assert len(feed.subscriptions) == 2
        assert feed.latest.close_calls == 0
        await registry.close()

    async def test__acquire__waiters_share_failed_startup(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """Every acquisition waiting on a failed startup sees the failure."""
        store.fail_select = RuntimeError("boom")
        registry = SyncRegistry(store, feed)

        results = await asyncio.gather(
            registry.acquire("U1", "token-1"),
            registry.acquire("U1", "token-1"),
            return_exceptions=True,
        )

        assert [type(r) for r in results] == [RuntimeError, RuntimeError]
        assert len(feed.subscriptions) == 1
        assert len(registry) == 0

    async def test__acquire__cancelled_caller_does_not_cancel_startup(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """A request that goes away mid-startup leaves the startup running."""
        store.select_gate = asyncio.Event()
        registry = SyncRegistry(store, feed)
        caller = asyncio.create_task(registry.acquire("U1", "token-1"))
        while not store.select_calls:
            await asyncio.sleep(0)

        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        store.select_gate.set()
        session = await registry.acquire("U1", "token-1")

        assert session.sync.ready is True
        assert len(feed.subscriptions) == 1
        await registry.close()

    async def test__close__abandons_startup_in_progress(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """Shutdown cancels a hanging startup and closes its subscription."""
        store.select_gate = asyncio.Event()
        registry = SyncRegistry(store, feed)
        caller = asyncio.create_task(registry.acquire("U1", "token-1"))
        while not store.select_calls:
            await asyncio.sleep(0)

        await registry.close()

        with pytest.raises(asyncio.CancelledError):
            await caller
        assert feed.latest.close_calls == 1
        assert len(registry) == 0


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestIdleEviction:
    """Tests for releasing sessions nobody uses."""

    async def test__evict_idle__releases_unused_session(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """A session untouched for the idle period is released and unsubscribed."""
        clock = FakeClock()
        registry = SyncRegistry(store, feed, idle_seconds=60.0, clock=clock)
        await registry.acquire("U1", "token-1")

        clock.now = 59.0
        assert await registry.evict_idle() == 0
        assert "U1" in registry

        clock.now = 60.0
        assert await registry.evict_idle() == 1
        assert "U1" not in registry
        assert feed.latest.close_calls == 1

    async def test__evict_idle__acquire_counts_as_use(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        clock = FakeClock()
        registry = SyncRegistry(store, feed, idle_seconds=60.0, clock=clock)
        await registry.acquire("U1", "token-1")
        clock.now = 50.0
        await registry.acquire("U1", "token-1")

        clock.now = 100.0

        assert await registry.evict_idle() == 0
        await registry.close()

    async def test__evict_idle__keeps_watched_session(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        """A session with an open live view is kept however long it is open."""
        clock = FakeClock()
        registry = SyncRegistry(store, feed, idle_seconds=60.0, clock=clock)
        session = await registry.acquire("U1", "token-1")

        with registry.watching(session):
            assert session.viewers == 1
            clock.now = 1000.0
            assert await registry.evict_idle() == 0

        # Closing the view counts as the last use
        assert session.viewers == 0
        clock.now = 1059.0
        assert await registry.evict_idle() == 0
        clock.now = 1060.0
        assert await registry.evict_idle() == 1
        assert len(registry) == 0

    async def test__evict_idle__only_idle_owners(
        self, store: FakeRecordStore, feed: FakeChangeFeed,
    ) -> None:
        clock = FakeClock()
        registry = SyncRegistry(store, feed, idle_seconds=60.0, clock=clock)
        await registry.acquire("U1", "token-1")
        clock.now = 30.0
        await registry.acquire("U2", "token-2")

        clock.now = 70.0

        assert await registry.evict_idle() == 1
        assert "U1" not in registry
        assert "U2" in registry
        await registry.close()
