"""Transient add/delete notifications, including undo for deletes."""
import time
from collections.abc import Callable
from dataclasses import dataclass

from schemas.bookmark import Bookmark, ToastResponse
from services.bookmark_sync import BookmarkSync, MutationResult

ADDED_MESSAGE = "Bookmark added successfully"
DELETED_MESSAGE = "Bookmark deleted"


@dataclass
class Toast:
    """A message shown until `expires_at` (monotonic seconds)."""

    message: str
    expires_at: float
    bookmark: Bookmark | None = None

    @property
    def undoable(self) -> bool:
        """Whether the toast offers to restore a deleted bookmark."""
        return self.bookmark is not None


class ToastCenter:
    """
    Wraps a `BookmarkSync` with the add/delete feedback shown to the user.

    Only one toast is visible at a time; a new one replaces the old. Undo of a
    delete re-adds the same title and URL as a new bookmark, so it comes back
    at the top of the list with a new id.
    """

    def __init__(
        self,
        sync: BookmarkSync,
        add_seconds: float = 4.0,
        delete_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sync = sync
        self._add_seconds = add_seconds
        self._delete_seconds = delete_seconds
        self._clock = clock
        self._toast: Toast | None = None

    def show(self, message: str, seconds: float, bookmark: Bookmark | None = None) -> Toast:
        """Show a toast for `seconds`."""
        self._toast = Toast(message, self._clock() + seconds, bookmark)
        return self._toast

    def current(self) -> Toast | None:
        """The visible toast, or None once it has expired."""
        if self._toast is not None and self._clock() >= self._toast.expires_at:
            self._toast = None
        return self._toast

    def dismiss(self) -> None:
        """Hide the current toast."""
        self._toast = None

    def describe(self) -> ToastResponse | None:
        """The visible toast as a response model."""
        toast = self.current()
        if toast is None:
            return None
        return ToastResponse(
            message=toast.message,
            expires_in=max(0.0, toast.expires_at - self._clock()),
            bookmark=toast.bookmark,
            undoable=toast.undoable,
        )

    async def add(self, title: str, url: str) -> MutationResult:
        """Add a bookmark and confirm it."""
        result = await self._sync.create(title, url)
        if result.ok:
            self.show(ADDED_MESSAGE, self._add_seconds)
        return result

    async def delete(self, bookmark_id: str) -> MutationResult:
        """Delete a bookmark and offer to undo it while the toast is visible."""
        result = await self._sync.delete(bookmark_id)
        if result.ok:
            self.show(DELETED_MESSAGE, self._delete_seconds, result.bookmark)
        return result

    async def undo(self) -> MutationResult | None:
        """
        Restore the bookmark named by the visible delete toast.

        Returns:
            The result of re-adding it, or None if there was nothing to undo.
            The toast stays up when the insert fails so the user can retry.
        """
        toast = self.current()
        if toast is None or toast.bookmark is None:
            return None
        result = await self._sync.create(toast.bookmark.title, toast.bookmark.url)
        if result.ok:
            self.dismiss()
        return result
