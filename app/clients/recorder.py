"""
Recording provider API: cursor-paginated meeting search used by manual imports.
"""

from typing import Any, AsyncIterator, Callable, Optional

import httpx
import structlog

from app.config import settings
from app.errors import ConfigError, UpstreamError

logger = structlog.get_logger(__name__)


def _strip_slash(url: Optional[str]) -> Optional[str]:
    return url.strip().rstrip("/") if isinstance(url, str) else None


class RecorderClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_pages: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        key = api_key or settings.RECORDER_API_KEY
        if not key:
            raise ConfigError("RECORDER_API_KEY not configured")
        self._api_key = key
        self._base_url = base_url or settings.RECORDER_API_URL
        self._max_pages = max_pages or settings.RECORDER_MAX_PAGES
        self._transport = transport

    async def iter_meeting_pages(self) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield pages of meetings (with transcripts), newest first."""
        cursor: Optional[str] = None
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=settings.RECORDER_TIMEOUT_SECONDS,
            headers={"X-Api-Key": self._api_key},
            transport=self._transport,
        ) as client:
            for page in range(self._max_pages):
                params = {"include_transcript": "true"}
                if cursor:
                    params["cursor"] = cursor
                try:
                    response = await client.get("/meetings", params=params)
                except httpx.HTTPError as e:
                    raise UpstreamError(f"Recording provider unreachable: {e}") from e
                if response.status_code != 200:
                    raise UpstreamError(f"Recording provider API error: {response.status_code}")

                data = response.json()
                items = data.get("items") or []
                logger.debug("recorder_page_fetched", page=page, items=len(items))
                yield items

                cursor = data.get("next_cursor")
                if not cursor:
                    return

    async def _find(self, predicate: Callable[[dict], bool]) -> Optional[dict[str, Any]]:
        async for items in self.iter_meeting_pages():
            for meeting in items:
                if predicate(meeting):
                    return meeting
        return None

    async def find_meeting_by_url(self, target_url: str) -> Optional[dict[str, Any]]:
        """Match either the recording URL or the share URL, ignoring a trailing slash."""
        target = _strip_slash(target_url)
        return await self._find(
            lambda m: target in (_strip_slash(m.get("url")), _strip_slash(m.get("share_url")))
        )

    async def find_meeting_by_recording_id(self, recording_id: Any) -> Optional[dict[str, Any]]:
        target = str(recording_id)
        return await self._find(lambda m: str(m.get("recording_id")) == target)
