"""HTTP client polling post comments from the Facebook Graph API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..auction.models import Comment
from . import CommentSourceError

logger = logging.getLogger(__name__)

COMMENT_FIELDS = "id,message,from{name},created_time"


class GraphCommentSource:
    def __init__(
        self,
        *,
        access_token: str,
        base_url: str = "https://graph.facebook.com",
        api_version: str = "v19.0",
        page_size: int = 100,
        timeout_seconds: float = 10.0,
        max_pages: int = 50,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("graph access token missing")
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._api_version = api_version
        self._page_size = page_size
        self._max_pages = max_pages
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def poll(self, topic: str) -> list[Comment]:
        """Return every comment on post ``topic`` in chronological order."""
        url: str | None = f"{self._base_url}/{self._api_version}/{topic}/comments"
        params: dict[str, Any] | None = {
            "fields": COMMENT_FIELDS,
            "order": "chronological",
            "filter": "stream",
            "limit": self._page_size,
            "access_token": self._access_token,
        }
        comments: list[Comment] = []
        pages = 0
        while url and pages < self._max_pages:
            data = await self._get(url, params)
            comments.extend(
                Comment.from_graph(item) for item in data.get("data") or [] if isinstance(item, dict)
            )
            pages += 1
            # paging.next already carries the cursor and the token
            url = (data.get("paging") or {}).get("next")
            params = None
        if url:
            logger.warning("topic=%s comments truncated after %d pages", topic, pages)
        return comments

    async def _get(self, url: str, params: dict[str, Any] | None) -> dict[str, Any]:
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise CommentSourceError(f"graph request failed: {exc}") from exc
        try:
            data = response.json()
        except ValueError as exc:
            raise CommentSourceError(f"graph returned non-JSON body ({response.status_code})") from exc
        if not isinstance(data, dict):
            raise CommentSourceError("graph returned an unexpected body")
        error = data.get("error")
        if isinstance(error, dict):
            raise CommentSourceError(
                f"graph error {error.get('code')} ({error.get('type')}): {error.get('message')}"
            )
        if response.is_error:
            raise CommentSourceError(f"graph returned HTTP {response.status_code}")
        return data
