"""Bookmark endpoints backed by the user's synchronized bookmark list."""
import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import StreamingResponse

from api.dependencies import get_backend, get_sync_session
from core.backend import Backend
from schemas.bookmark import Bookmark, BookmarkCreate, BookmarkState, ToastResponse
from services.exceptions import SyncError
from services.sync_registry import SyncSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])

STREAM_KEEPALIVE_SECONDS = 15.0

_STATUS_BY_CATEGORY = {
    "auth": 401,
    "forbidden": 403,
    "not_found": 404,
    "validation": 422,
    "conflict": 409,
    "timeout": 504,
}


def _raise_for_error(error: SyncError) -> None:
    raise HTTPException(
        status_code=_STATUS_BY_CATEGORY.get(error.category, 502),
        detail=error.message,
    )


@router.get("/", response_model=BookmarkState)
async def list_bookmarks(session: SyncSession = Depends(get_sync_session)) -> BookmarkState:
    """Get the current user's bookmarks (newest first) and sync status."""
    return session.sync.state


@router.post("/", response_model=Bookmark | None, status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    response: Response,
    session: SyncSession = Depends(get_sync_session),
) -> Bookmark | None:
    """
    Add a bookmark.

    Returns 201 with the created bookmark, or 202 when the backend accepted
    the insert without returning the row (it arrives through the feed).
    """
    result = await session.toasts.add(data.title, data.url)
    if result.error is not None:
        _raise_for_error(result.error)
    if result.bookmark is None:
        response.status_code = 202
    return result.bookmark


@router.post("/refresh", response_model=BookmarkState)
async def refresh_bookmarks(session: SyncSession = Depends(get_sync_session)) -> BookmarkState:
    """Re-query the list from the backend, or reconnect if the change feed dropped."""
    if session.sync.connected:
        await session.sync.refresh()
    else:
        await session.sync.reconnect()
    return session.sync.state


@router.get("/toast", response_model=ToastResponse | None)
async def get_toast(session: SyncSession = Depends(get_sync_session)) -> ToastResponse | None:
    """Get the visible add/delete notification, if any."""
    return session.toasts.describe()


@router.delete("/toast", status_code=204)
async def dismiss_toast(session: SyncSession = Depends(get_sync_session)) -> None:
    """Dismiss the visible notification."""
    session.toasts.dismiss()


@router.post("/toast/undo", response_model=Bookmark | None, status_code=201)
async def undo_delete(
    response: Response,
    session: SyncSession = Depends(get_sync_session),
) -> Bookmark | None:
    """Restore the bookmark removed by the last delete while its toast is visible."""
    result = await session.toasts.undo()
    if result is None:
        raise HTTPException(status_code=404, detail="Nothing to undo")
    if result.error is not None:
        _raise_for_error(result.error)
    if result.bookmark is None:
        response.status_code = 202
    return result.bookmark


@router.get("/stream")
async def stream_bookmarks(
    request: Request,
    session: SyncSession = Depends(get_sync_session),
    backend: Backend = Depends(get_backend),
) -> StreamingResponse:
    """
    Server-sent events stream of bookmark list snapshots.

    The list is kept alive while at least one stream is open; once the last
    one closes it becomes eligible for idle release.
    """
    queue: asyncio.Queue[BookmarkState] = asyncio.Queue()

    async def event_generator() -> AsyncGenerator[str]:
        with backend.registry.watching(session):
            remove_listener = session.sync.add_listener(queue.put_nowait)
            try:
                yield f"data: {session.sync.state.model_dump_json()}\n\n"
                while not await request.is_disconnected():
                    try:
                        state = await asyncio.wait_for(
                            queue.get(), timeout=STREAM_KEEPALIVE_SECONDS,
                        )
                    except TimeoutError:
                        yield ": keepalive\n\n"
                        continue
                    yield f"data: {state.model_dump_json()}\n\n"
            finally:
                remove_listener()

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: str,
    session: SyncSession = Depends(get_sync_session),
) -> None:
    """Delete a bookmark; an undo toast is shown for it."""
    result = await session.toasts.delete(bookmark_id)
    if result.error is not None:
        _raise_for_error(result.error)
