"""Process-wide handle on the hosted backend services."""
import asyncio
import logging
from contextlib import suppress

import httpx

from core.auth import SessionProvider
from core.config import Settings
from services.change_feed import ChangeFeed
from services.record_store import RecordStore
from services.sync_registry import SyncRegistry

logger = logging.getLogger(__name__)


class Backend:
    """
    One shared HTTP client and the service clients built on it.

    Constructed once at startup and injected where needed. Individual
    collaborators can be passed in to replace the HTTP-backed defaults.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        store: RecordStore | None = None,
        feed: ChangeFeed | None = None,
        auth: SessionProvider | None = None,
    ) -> None:
        self.http = http_client or httpx.AsyncClient(
            base_url=settings.backend_url,
            timeout=settings.http_timeout,
        )
        self.store = store or RecordStore(
            self.http, settings.supabase_anon_key, table=settings.bookmarks_table,
        )
        self.feed = feed or ChangeFeed(self.http, settings.supabase_anon_key, settings.realtime_path)
        self.auth = auth or SessionProvider(self.http, settings)
        self.registry = SyncRegistry(
            self.store,
            self.feed,
            add_toast_seconds=settings.add_toast_seconds,
            delete_toast_seconds=settings.delete_toast_seconds,
            idle_seconds=settings.session_idle_seconds,
        )
        self._sweep_seconds = settings.session_sweep_seconds
        self._sweeper: asyncio.Task | None = None

    def start(self) -> None:
        """Begin releasing idle bookmark lists in the background."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep(), name="bookmark-sync-sweeper")

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_seconds)
            try:
                released = await self.registry.evict_idle()
            except Exception:
                logger.exception("Idle bookmark list sweep failed")
                continue
            if released:
                logger.info("Released %d idle bookmark lists", released)

    async def aclose(self) -> None:
        """Stop the sweeper, release every live subscription and close the HTTP client."""
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
        await self.registry.close()
        if not self.http.is_closed:
            await self.http.aclose()
        logger.info("Backend client closed")


# Global backend state using a container to avoid global statement
class _BackendState:
    """Container for the global backend handle."""

    backend: Backend | None = None


_state = _BackendState()


def get_backend() -> Backend:
    """
    Get the global backend handle.

    Raises:
        RuntimeError: If called before application startup.
    """
    if _state.backend is None:
        raise RuntimeError("Backend is not initialized")
    return _state.backend


def set_backend(backend: Backend | None) -> None:
    """Set the global backend handle."""
    _state.backend = backend
