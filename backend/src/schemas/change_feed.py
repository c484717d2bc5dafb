"""Schemas for row-level change notifications from the realtime feed."""
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChangeKind(StrEnum):
    """Kind of row change carried by a notification."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SubscriptionStatus(StrEnum):
    """Lifecycle status reported by a change-feed subscription."""

    SUBSCRIBED = "SUBSCRIBED"
    CLOSED = "CLOSED"
    TIMED_OUT = "TIMED_OUT"
    CHANNEL_ERROR = "CHANNEL_ERROR"


class ChangeNotification(BaseModel):
    """
    A single change notification.

    `new` carries the row after an insert or update. `old` carries the row (or
    at least its primary key) before an update or delete.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kind: ChangeKind = Field(validation_alias="eventType")
    table: str | None = None
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: str | None = None

    @property
    def record(self) -> dict[str, Any]:
        """The row this notification is about, preferring the new image."""
        return self.new or self.old

    @property
    def record_id(self) -> str | None:
        """Primary key of the affected row, as an opaque string."""
        value = self.record.get("id")
        return None if value is None else str(value)
