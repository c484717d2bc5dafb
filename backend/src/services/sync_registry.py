"""Keeps exactly one live `BookmarkSync` per signed-in owner."""
import asyncio
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager, suppress
from dataclasses import dataclass

from services.bookmark_sync import BookmarkSync
from services.change_feed import ChangeFeed
from services.record_store import RecordStore
from services.toasts import ToastCenter

logger = logging.getLogger(__name__)


@dataclass
class SyncSession:
    """The synchronized list and toast state of one owner."""

    sync: BookmarkSync
    toasts: ToastCenter
    # Open live views (event streams) of this list
    viewers: int = 0
    last_used: float = 0.0


class SyncRegistry:
    """
    Process-wide map of owner id to synchronized bookmark list.

    Acquiring an owner that is already live reuses its session, so two
    browser tabs for the same account share one change-feed subscription.
    Concurrent first acquisitions of one owner wait on a single startup;
    other owners are never blocked by it.

    A session nobody is viewing is released once it has been idle for
    `idle_seconds`; see `evict_idle`.
    """

    def __init__(
        self,
        store: RecordStore,
        feed: ChangeFeed,
        add_toast_seconds: float = 4.0,
        delete_toast_seconds: float = 5.0,
        idle_seconds: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._feed = feed
        self._add_toast_seconds = add_toast_seconds
        self._delete_toast_seconds = delete_toast_seconds
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._sessions: dict[str, SyncSession] = {}
        self._starting: dict[str, asyncio.Task[SyncSession]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, owner_id: object) -> bool:
        return owner_id in self._sessions

    async def acquire(self, owner_id: str, token: str) -> SyncSession:
        """
        Get the owner's session, starting synchronization on first use.

        Raises:
            Whatever the startup raised; nothing is registered in that case
            and the next acquisition starts over.
        """
        session = self._sessions.get(owner_id)
        if session is None:
            starting = self._starting.get(owner_id)
            if starting is None:
                starting = asyncio.create_task(
                    self._start(owner_id, token), name=f"bookmark-sync-start:{owner_id}",
                )
                self._starting[owner_id] = starting
            # A cancelled request must not cancel a startup others may be waiting on
            session = await asyncio.shield(starting)
        session.sync.set_token(token)
        session.last_used = self._clock()
        return session

    async def release(self, owner_id: str) -> bool:
        """Stop synchronizing `owner_id`. Returns False if it was not live."""
        session = self._sessions.pop(owner_id, None)
        if session is None:
            return False
        await session.sync.teardown()
        return True

    @contextmanager
    def watching(self, session: SyncSession) -> Iterator[SyncSession]:
        """Keep `session` from being evicted while a live view is open."""
        session.viewers += 1
        try:
            yield session
        finally:
            session.viewers -= 1
            session.last_used = self._clock()

    async def evict_idle(self) -> int:
        """
        Release sessions with no viewers that have not been used recently.

        Returns:
            Number of sessions released.
        """
        cutoff = self._clock() - self._idle_seconds
        idle = [
            owner_id
            for owner_id, session in self._sessions.items()
            if session.viewers == 0 and session.last_used <= cutoff
        ]
        for owner_id in idle:
            logger.info("Releasing idle bookmark synchronization for %s", owner_id)
            await self.release(owner_id)
        return len(idle)

    async def close(self) -> None:
        """Release every live session and abandon startups in progress."""
        starting = list(self._starting.values())
        for task in starting:
            task.cancel()
        for task in starting:
            # Startup failures are logged by _start
            with suppress(asyncio.CancelledError, Exception):
                await task
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.sync.teardown()

    async def _start(self, owner_id: str, token: str) -> SyncSession:
        try:
            sync = BookmarkSync(self._store, self._feed, token)
            session = SyncSession(
                sync=sync,
                toasts=ToastCenter(
                    sync,
                    add_seconds=self._add_toast_seconds,
                    delete_seconds=self._delete_toast_seconds,
                ),
                last_used=self._clock(),
            )
            logger.info("Starting bookmark synchronization for %s", owner_id)
            try:
                await sync.initialize(owner_id)
            except Exception:
                logger.exception("Could not start bookmark synchronization for %s", owner_id)
                await sync.teardown()
                raise
            except asyncio.CancelledError:
                await sync.teardown()
                raise
            self._sessions[owner_id] = session
            return session
        finally:
            self._starting.pop(owner_id, None)
