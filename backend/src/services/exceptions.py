"""Failure types reported by the bookmark synchronization layer."""
from shared.api_errors import ErrorCategory, describe_failure


class SyncError(Exception):
    """
    Base class for failures absorbed by the sync layer.

    These are never raised to callers of `BookmarkSync`; they are logged,
    stored as `last_error`, and handed to the `on_error` callback so the
    presentation layer can show them.
    """

    def __init__(self, message: str, category: ErrorCategory = "internal") -> None:
        self.message = message
        self.category = category
        super().__init__(message)

    @classmethod
    def from_exception(cls, action: str, e: Exception) -> "SyncError":
        """Build an error of this type describing a failed backend call."""
        parsed = describe_failure(e, entity_type="bookmark")
        error = cls(f"Could not {action}: {parsed.message}", parsed.category)
        error.__cause__ = e
        return error


class QueryError(SyncError):
    """Raised when the initial load or a refresh of the bookmark list fails."""


class MutationError(SyncError):
    """Raised when an add or delete request is rejected or cannot be sent."""


class SubscriptionError(SyncError):
    """Raised when the change feed closes with a timeout or channel error."""
