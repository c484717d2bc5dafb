"""HTTP client for the hosted `bookmarks` table (PostgREST dialect)."""
import logging
from typing import Any

import httpx

from schemas.bookmark import Bookmark

logger = logging.getLogger(__name__)

REST_PREFIX = "/rest/v1"


class RecordStore:
    """
    Select, insert and delete rows of one owner-keyed table.

    Failures are not translated here: `httpx.HTTPError` and pydantic
    `ValidationError` propagate so the caller can classify them.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        anon_key: str,
        table: str = "bookmarks",
    ) -> None:
        self._client = client
        self._anon_key = anon_key
        self._table = table

    @property
    def table(self) -> str:
        """Name of the table this store reads and writes."""
        return self._table

    @property
    def _path(self) -> str:
        return f"{REST_PREFIX}/{self._table}"

    def _get_headers(self, token: str, **extra: str) -> dict[str, str]:
        """Get common headers for table requests."""
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token}",
            "X-Client-Info": "bookmark-sync",
            **extra,
        }

    async def select_by_owner(self, token: str, owner_id: str) -> list[Bookmark]:
        """Fetch every row owned by `owner_id`, newest first."""
        response = await self._client.get(
            self._path,
            params={
                "select": "*",
                "user_id": f"eq.{owner_id}",
                "order": "created_at.desc",
            },
            headers=self._get_headers(token),
        )
        response.raise_for_status()
        rows: list[dict[str, Any]] = response.json()
        return [Bookmark.model_validate(row) for row in rows]

    async def insert(self, token: str, values: dict[str, Any]) -> Bookmark | None:
        """
        Insert one row and return it as created by the store.

        Returns None when the store accepted the insert but did not return the
        row (for example when a read policy hides it from this credential).
        """
        response = await self._client.post(
            self._path,
            json=[values],
            headers=self._get_headers(token, Prefer="return=representation"),
        )
        response.raise_for_status()
        rows: list[dict[str, Any]] = response.json()
        if not rows:
            logger.warning("Insert into %s returned no representation", self._table)
            return None
        return Bookmark.model_validate(rows[0])

    async def delete(self, token: str, bookmark_id: str) -> None:
        """Delete the row with `bookmark_id`. Deleting a missing row is not an error."""
        response = await self._client.delete(
            self._path,
            params={"id": f"eq.{bookmark_id}"},
            headers=self._get_headers(token, Prefer="return=minimal"),
        )
        response.raise_for_status()
