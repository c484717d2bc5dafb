"""
Client for the hosted realtime change feed.

A subscription is one long-lived `text/event-stream` request. Each `data:`
field carries a JSON change notification. The stream is read by a background
task that pushes notifications onto an `asyncio.Queue`; the consumer reads
the queue until it receives the `None` sentinel, which marks the channel as
closed.
"""
import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import suppress

import httpx
from pydantic import ValidationError

from schemas.change_feed import ChangeNotification, SubscriptionStatus

logger = logging.getLogger(__name__)

StatusCallback = Callable[[SubscriptionStatus, Exception | None], None]


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Yield the data payload of each server-sent event.

    Multi-line `data:` fields are joined with newlines. Comment lines (used as
    heartbeats) and other fields are skipped.
    """
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data.append(value.removeprefix(" "))
    if data:
        yield "\n".join(data)


class Subscription:
    """
    One active change-feed subscription.

    Created by `ChangeFeed.subscribe()`; released with `close()`, which is
    safe to call more than once. No status callbacks fire after `close()`.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict[str, str],
        headers: dict[str, str],
        on_status: StatusCallback | None = None,
    ) -> None:
        self._client = client
        self._path = path
        self._params = params
        self._headers = headers
        self._on_status = on_status
        self._task: asyncio.Task | None = None
        self._closed = False
        self.status: SubscriptionStatus | None = None
        self.notifications: asyncio.Queue[ChangeNotification | None] = asyncio.Queue()

    @property
    def closed(self) -> bool:
        """Whether `close()` has been called."""
        return self._closed

    def start(self) -> None:
        """Start reading the stream in a background task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"change-feed:{self._params}")

    async def close(self) -> None:
        """Stop reading the stream and release the connection."""
        if self._closed:
            return
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self.status = SubscriptionStatus.CLOSED
        self.notifications.put_nowait(None)

    def _set_status(self, status: SubscriptionStatus, error: Exception | None = None) -> None:
        if self._closed:
            return
        self.status = status
        logger.info("Change feed %s: %s", self._params.get("filter"), status.value)
        if self._on_status is not None:
            self._on_status(status, error)

    async def _run(self) -> None:
        try:
            async with self._client.stream(
                "GET",
                self._path,
                params=self._params,
                headers=self._headers,
                timeout=httpx.Timeout(self._client.timeout.connect, read=None),
            ) as response:
                response.raise_for_status()
                self._set_status(SubscriptionStatus.SUBSCRIBED)
                async for data in iter_sse_data(response.aiter_lines()):
                    try:
                        notification = ChangeNotification.model_validate_json(data)
                    except ValidationError as e:
                        logger.warning("Skipping malformed change notification: %s", e)
                        continue
                    await self.notifications.put(notification)
            self._set_status(SubscriptionStatus.CLOSED)
        except httpx.TimeoutException as e:
            logger.warning("Change feed timed out: %s", e)
            self._set_status(SubscriptionStatus.TIMED_OUT, e)
        except httpx.HTTPError as e:
            logger.warning("Change feed failed: %s", e)
            self._set_status(SubscriptionStatus.CHANNEL_ERROR, e)
        finally:
            if not self._closed:
                self.notifications.put_nowait(None)


class ChangeFeed:
    """Opens change-feed subscriptions scoped to a table and row filter."""

    def __init__(self, client: httpx.AsyncClient, anon_key: str, path: str) -> None:
        self._client = client
        self._anon_key = anon_key
        self._path = path

    async def subscribe(
        self,
        token: str,
        table: str,
        row_filter: str,
        on_status: StatusCallback | None = None,
        event: str = "*",
    ) -> Subscription:
        """
        Subscribe to changes on `table` matching `row_filter`.

        Args:
            token: Bearer credential of the subscribing user.
            table: Table to watch.
            row_filter: Server-side filter, e.g. "user_id=eq.<id>".
            on_status: Called with every status transition.
            event: "INSERT", "UPDATE", "DELETE" or "*" for all three.

        Returns:
            A started Subscription.
        """
        subscription = Subscription(
            self._client,
            self._path,
            params={"schema": "public", "table": table, "filter": row_filter, "event": event},
            headers={
                "apikey": self._anon_key,
                "Authorization": f"Bearer {token}",
                "Accept": "text/event-stream",
            },
            on_status=on_status,
        )
        subscription.start()
        return subscription
