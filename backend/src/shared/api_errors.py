"""
Shared error parsing for calls into the hosted backend.

Classifies httpx failures into semantic categories so the sync layer can
report them and the API layer can pass a readable message to the browser.
"""

from dataclasses import dataclass
from typing import Any, Literal

import httpx

ErrorCategory = Literal[
    "auth",        # 401 - Invalid or expired token
    "forbidden",   # 403 - Row-level policy rejected the request
    "not_found",   # 404 - Table or row not found
    "validation",  # 400/422 - Column constraint or malformed request
    "conflict",    # 409 - Unique constraint violation
    "timeout",     # Backend did not answer in time
    "unavailable", # Transport failure (DNS, connection refused, reset)
    "internal",    # 5xx or unexpected errors
]


@dataclass
class ParsedApiError:
    """Parsed backend error with semantic category and message."""

    category: ErrorCategory
    message: str
    status_code: int | None = None


def parse_http_error(  # noqa: PLR0911
    e: httpx.HTTPStatusError,
    entity_type: str = "",
) -> ParsedApiError:
    """
    Parse HTTP error into semantic categories.

    Args:
        e: The HTTP status error from httpx
        entity_type: Type of entity (e.g., "bookmark") for error messages

    Returns:
        ParsedApiError with category and message
    """
    status = e.response.status_code

    if status == 401:
        return ParsedApiError("auth", "Invalid or expired token", status)

    if status == 403:
        return ParsedApiError("forbidden", "Access denied", status)

    if status == 404:
        msg = f"{entity_type.title()} not found" if entity_type else "Not found"
        return ParsedApiError("not_found", msg, status)

    if status == 409:
        return ParsedApiError(
            "conflict",
            _extract_message(e) or "A conflicting record already exists",
            status,
        )

    if status in (400, 422):
        return ParsedApiError("validation", _extract_message(e) or "Validation error", status)

    # Generic error for other status codes
    return ParsedApiError("internal", f"Backend error {status}", status)


def describe_failure(e: Exception, entity_type: str = "") -> ParsedApiError:
    """
    Classify any failure raised while talking to the backend.

    Covers HTTP status errors, transport errors, and responses whose body was
    not JSON or did not match the expected schema.
    """
    if isinstance(e, httpx.HTTPStatusError):
        return parse_http_error(e, entity_type)
    if isinstance(e, httpx.TimeoutException):
        return ParsedApiError("timeout", "Backend request timed out")
    if isinstance(e, httpx.HTTPError):
        return ParsedApiError("unavailable", "Could not reach the backend")
    # Undecodable JSON and pydantic ValidationError are both ValueErrors
    if isinstance(e, ValueError):
        return ParsedApiError("internal", "Backend returned an unexpected response")
    return ParsedApiError("internal", str(e) or type(e).__name__)


def _extract_message(e: httpx.HTTPStatusError) -> str:
    """
    Extract a message from a PostgREST/GoTrue style error body.

    PostgREST returns `{"message": ..., "details": ..., "hint": ...}` while the
    auth service uses `{"msg": ...}` or `{"error_description": ...}`.
    """
    try:
        body: Any = e.response.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    for key in ("message", "msg", "error_description", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return ""
