"""
Live, reconciled bookmark list for one owner.

`BookmarkSync` loads the owner's bookmarks once, subscribes to the change
feed, and merges feed notifications and its own successful mutations into a
single list ordered newest first.

Mutations are applied optimistically: a successful insert or delete response
updates the list immediately, and the matching feed notification that follows
is a no-op. Notifications can also arrive before the response; every merge is
keyed by bookmark id so either order converges to the same list.

Changes merged while a query is in flight are journaled and replayed on top
of the query result, so nothing that happened between subscribing and the
query's answer is lost.
"""
import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Literal

import httpx
from pydantic import ValidationError

from schemas.bookmark import Bookmark, BookmarkState
from schemas.change_feed import ChangeKind, ChangeNotification, SubscriptionStatus
from services.change_feed import ChangeFeed, Subscription
from services.exceptions import MutationError, QueryError, SubscriptionError, SyncError
from services.record_store import RecordStore

logger = logging.getLogger(__name__)

StateListener = Callable[[BookmarkState], None]
ErrorCallback = Callable[[SyncError], None]

# ValueError covers undecodable bodies (json.JSONDecodeError) as well as
# rows that fail schema validation
_BACKEND_ERRORS = (httpx.HTTPError, ValidationError, ValueError)

_Change = tuple[Literal["insert", "replace"], Bookmark] | tuple[Literal["discard"], str]


@dataclass
class MutationResult:
    """
    Outcome of one add or delete request.

    `bookmark` is the created row for an add (None when the store did not
    return it) and the listed row that was removed for a delete.
    """

    bookmark: Bookmark | None = None
    error: MutationError | None = None

    @property
    def ok(self) -> bool:
        """True if the request succeeded."""
        return self.error is None


class BookmarkSync:
    """Owns the in-memory bookmark list of one authenticated owner."""

    def __init__(
        self,
        store: RecordStore,
        feed: ChangeFeed,
        token: str,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._store = store
        self._feed = feed
        self._token = token
        self._on_error = on_error
        self._owner_id: str | None = None
        self._items: list[Bookmark] = []
        self._ready = False
        self._connected = False
        self._subscription: Subscription | None = None
        self._consumer: asyncio.Task | None = None
        # Bumped on every (re)initialization and teardown; results of calls
        # started under an older generation are discarded.
        self._generation = 0
        # One journal per query in flight; see _load
        self._journals: list[list[_Change]] = []
        self._listeners: list[StateListener] = []
        self.last_error: SyncError | None = None

    @property
    def owner_id(self) -> str | None:
        """Identity whose bookmarks are being synchronized."""
        return self._owner_id

    @property
    def items(self) -> list[Bookmark]:
        """Bookmarks ordered by creation time, newest first."""
        return list(self._items)

    @property
    def ready(self) -> bool:
        """True once the initial load has finished, successfully or not."""
        return self._ready

    @property
    def connected(self) -> bool:
        """True while the change-feed subscription is established."""
        return self._connected

    @property
    def state(self) -> BookmarkState:
        """Snapshot of the list and its status flags."""
        return BookmarkState(items=self.items, ready=self._ready, connected=self._connected)

    def set_token(self, token: str) -> None:
        """Use a fresh bearer credential for subsequent requests."""
        self._token = token

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a callback receiving a state snapshot after every change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    async def initialize(self, owner_id: str | None) -> None:
        """
        Load `owner_id`'s bookmarks and subscribe to their changes.

        Any previous owner's subscription is released first. With no owner
        the list stays empty and nothing is sent to the backend.
        """
        if self._owner_id is not None or self._subscription is not None:
            await self.teardown()

        self._generation += 1
        generation = self._generation
        self._owner_id = owner_id or None
        self._items = []
        self._journals = []
        self._ready = False
        self._connected = False

        if self._owner_id is None:
            self._emit()
            return

        self._subscription = await self._feed.subscribe(
            self._token,
            self._store.table,
            f"user_id=eq.{self._owner_id}",
            on_status=self._status_handler(generation),
        )
        self._consumer = asyncio.create_task(
            self._consume(self._subscription, generation),
            name=f"bookmark-sync:{self._owner_id}",
        )
        await self._load(generation)

    async def refresh(self) -> None:
        """Re-query the owner's bookmarks and replace the list."""
        if self._owner_id is None:
            return
        await self._load(self._generation)

    async def reconnect(self) -> None:
        """Re-initialize for the current owner, e.g. after the feed dropped."""
        await self.initialize(self._owner_id)

    async def teardown(self) -> None:
        """Release the subscription and clear the list."""
        self._generation += 1
        subscription, self._subscription = self._subscription, None
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.cancel()
            with suppress(asyncio.CancelledError):
                await consumer
        if subscription is not None:
            await subscription.close()
        if self._owner_id is not None:
            logger.info("Stopped synchronizing bookmarks for %s", self._owner_id)
        self._owner_id = None
        self._items = []
        self._journals = []
        self._ready = False
        self._connected = False
        self._emit()

    async def add(self, title: str, url: str) -> Bookmark | None:
        """
        Insert a bookmark and show it at the top of the list.

        Returns:
            The created bookmark, or None if the insert failed or the row was
            not returned.
        """
        return (await self.create(title, url)).bookmark

    async def remove(self, bookmark_id: str) -> bool:
        """
        Delete a bookmark and drop it from the list.

        Returns:
            True if the delete request succeeded.
        """
        return (await self.delete(bookmark_id)).ok

    async def create(self, title: str, url: str) -> MutationResult:
        """Like `add`, but reports this request's own failure."""
        owner_id = self._owner_id
        if owner_id is None:
            error = MutationError("Could not add bookmark: no active session", "auth")
            self._report(error)
            return MutationResult(error=error)

        try:
            created = await self._store.insert(
                self._token, {"title": title, "url": url, "user_id": owner_id},
            )
        except _BACKEND_ERRORS as e:
            error = MutationError.from_exception("add bookmark", e)
            self._report(error)
            return MutationResult(error=error)

        if created is None:
            # Row not returned; the feed notification will bring it in.
            return MutationResult()
        if owner_id == self._owner_id and self._apply(("insert", created)):
            self._emit()
        return MutationResult(bookmark=created)

    async def delete(self, bookmark_id: str) -> MutationResult:
        """Like `remove`, but reports this request's own failure."""
        if self._owner_id is None:
            error = MutationError("Could not delete bookmark: no active session", "auth")
            self._report(error)
            return MutationResult(error=error)

        listed = next((b for b in self._items if b.id == bookmark_id), None)
        try:
            await self._store.delete(self._token, bookmark_id)
        except _BACKEND_ERRORS as e:
            error = MutationError.from_exception("delete bookmark", e)
            self._report(error)
            return MutationResult(error=error)

        if self._apply(("discard", bookmark_id)):
            self._emit()
        return MutationResult(bookmark=listed)

    def apply_notification(self, notification: ChangeNotification) -> bool:
        """
        Merge one change notification into the list.

        Rows belonging to another owner are ignored even though the feed is
        filtered server-side.

        Returns:
            True if the list changed.
        """
        record = notification.record
        owner = record.get("user_id")
        if self._owner_id is None or (owner is not None and str(owner) != self._owner_id):
            logger.debug("Ignoring %s notification for another owner", notification.kind)
            return False

        if notification.kind == ChangeKind.DELETE:
            record_id = notification.record_id
            changed = record_id is not None and self._apply(("discard", record_id))
        else:
            try:
                bookmark = Bookmark.model_validate(notification.new)
            except ValidationError as e:
                logger.warning("Ignoring malformed %s notification: %s", notification.kind, e)
                return False
            if notification.kind == ChangeKind.INSERT:
                changed = self._apply(("insert", bookmark))
            else:
                changed = self._apply(("replace", bookmark))

        if changed:
            self._emit()
        return changed

    async def _load(self, generation: int) -> None:
        owner_id = self._owner_id
        journal: list[_Change] = []
        self._journals.append(journal)
        try:
            bookmarks = await self._store.select_by_owner(self._token, owner_id)
        except _BACKEND_ERRORS as e:
            if generation == self._generation:
                self._report(QueryError.from_exception("load bookmarks", e))
                self._ready = True
                self._emit()
            return
        finally:
            with suppress(ValueError):
                self._journals.remove(journal)

        if generation != self._generation:
            logger.debug("Discarding stale bookmark query for %s", owner_id)
            return
        self._items = sorted(
            (b for b in bookmarks if b.user_id == owner_id),
            key=lambda b: b.created_at,
            reverse=True,
        )
        # Changes seen while the query was in flight may be missing from,
        # or already overtaken in, its result
        for change in journal:
            self._merge(change)
        self._ready = True
        logger.info(
            "Loaded %d bookmarks for %s (%d changes replayed)",
            len(self._items), owner_id, len(journal),
        )
        self._emit()

    async def _consume(self, subscription: Subscription, generation: int) -> None:
        queue = subscription.notifications
        while True:
            notification = await queue.get()
            try:
                if notification is None:
                    return
                if generation == self._generation:
                    self.apply_notification(notification)
            finally:
                queue.task_done()

    def _status_handler(
        self, generation: int,
    ) -> Callable[[SubscriptionStatus, Exception | None], None]:
        def handle(status: SubscriptionStatus, error: Exception | None) -> None:
            if generation != self._generation:
                return
            self._connected = status == SubscriptionStatus.SUBSCRIBED
            if status in (SubscriptionStatus.TIMED_OUT, SubscriptionStatus.CHANNEL_ERROR):
                if error is not None:
                    self._report(SubscriptionError.from_exception("stay connected", error))
                else:
                    self._report(SubscriptionError(f"Change feed {status.value.lower()}"))
            self._emit()

        return handle

    def _apply(self, change: _Change) -> bool:
        """Merge a change into the list and journal it for queries in flight."""
        for journal in self._journals:
            journal.append(change)
        return self._merge(change)

    def _merge(self, change: _Change) -> bool:
        action, value = change
        if action == "insert":
            return self._insert(value)
        if action == "replace":
            return self._replace(value)
        return self._discard(value)

    def _insert(self, bookmark: Bookmark) -> bool:
        if bookmark.user_id != self._owner_id:
            return False
        if any(b.id == bookmark.id for b in self._items):
            return False
        index = next(
            (i for i, b in enumerate(self._items) if b.created_at <= bookmark.created_at),
            len(self._items),
        )
        self._items.insert(index, bookmark)
        return True

    def _replace(self, bookmark: Bookmark) -> bool:
        if bookmark.user_id != self._owner_id:
            return False
        for i, existing in enumerate(self._items):
            if existing.id == bookmark.id:
                if existing == bookmark:
                    return False
                self._items[i] = bookmark
                if existing.created_at != bookmark.created_at:
                    self._items.sort(key=lambda b: b.created_at, reverse=True)
                return True
        return False

    def _discard(self, bookmark_id: str) -> bool:
        remaining = [b for b in self._items if b.id != bookmark_id]
        if len(remaining) == len(self._items):
            return False
        self._items = remaining
        return True

    def _report(self, error: SyncError) -> None:
        logger.warning("%s (%s)", error.message, error.category)
        self.last_error = error
        if self._on_error is not None:
            self._on_error(error)

    def _emit(self) -> None:
        if not self._listeners:
            return
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Bookmark state listener failed")
