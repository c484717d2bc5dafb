"""Pydantic schemas for bookmarks and the synchronized bookmark list."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator

REQUIRED_FIELDS_MESSAGE = "All fields are required."


class Bookmark(BaseModel):
    """A bookmark row as stored in the hosted `bookmarks` table."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    title: str
    url: str
    user_id: str
    created_at: datetime

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: object) -> object:
        """Row identifiers may arrive as integers or UUID strings; keep them opaque."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class BookmarkCreate(BaseModel):
    """
    Schema for the add-bookmark form.

    Both fields must be non-empty after trimming. The URL is not checked for
    being a well-formed URI; the table's own constraints apply upstream.
    """

    title: str
    url: str

    @field_validator("title", "url")
    @classmethod
    def require_non_blank(cls, v: str) -> str:
        """Reject blank input."""
        if not v.strip():
            raise ValueError(REQUIRED_FIELDS_MESSAGE)
        return v


class BookmarkState(BaseModel):
    """Snapshot of a synchronized bookmark list."""

    items: list[Bookmark]
    ready: bool
    connected: bool


class ToastResponse(BaseModel):
    """A transient notification shown after add or delete."""

    message: str
    expires_in: float
    bookmark: Bookmark | None = None
    undoable: bool = False
