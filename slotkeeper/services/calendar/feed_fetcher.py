# slotkeeper/services/calendar/feed_fetcher.py
import logging
from typing import Optional, Protocol

import httpx

from slotkeeper.config.settings import get_settings
from slotkeeper.core.exceptions import SyncError

logger = logging.getLogger(__name__)


class FeedFetcher(Protocol):
    async def fetch(self, url: str) -> bytes: ...


class HttpFeedFetcher:
    """Downloads calendar feeds over HTTP(S)"""

    def __init__(
            self,
            timeout: Optional[float] = None,
            max_bytes: Optional[int] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.FEED_FETCH_TIMEOUT_SECONDS
        self.max_bytes = max_bytes if max_bytes is not None else settings.FEED_MAX_BYTES
        self._transport = transport

    async def fetch(self, url: str) -> bytes:
        """
        Fetch raw feed bytes.

        Raises:
            SyncError: on timeout, transport failure, non-2xx status or an
                oversized body
        """
        # webcal:// is plain HTTP(S) with a calendar scheme
        if url.startswith("webcal://"):
            url = "https://" + url[len("webcal://"):]

        try:
            async with httpx.AsyncClient(
                    timeout=self.timeout,
                    follow_redirects=True,
                    transport=self._transport,
                    headers={"Accept": "text/calendar, */*;q=0.5"},
            ) as client:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        raise SyncError(
                            f"Failed to fetch feed {url}: HTTP {response.status_code}"
                        )

                    body = bytearray()
                    async for chunk in response.aiter_bytes():
                        body.extend(chunk)
                        if len(body) > self.max_bytes:
                            raise SyncError(
                                f"Feed {url} exceeds {self.max_bytes} bytes"
                            )
        except httpx.TimeoutException as e:
            raise SyncError(f"Timed out fetching feed {url}") from e
        except httpx.HTTPError as e:
            raise SyncError(f"Failed to fetch feed {url}: {e}") from e

        logger.debug(f"Fetched {len(body)} bytes from {url}")
        return bytes(body)
