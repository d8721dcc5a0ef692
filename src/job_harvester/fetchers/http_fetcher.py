import asyncio
import logging

import httpx

from job_harvester.fetchers.base import FetchError, PageFetcher

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF = 2  # seconds
HTTP_TIMEOUT = 30.0  # seconds
DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class HttpPageFetcher(PageFetcher):
    """
    Fetches pages over plain HTTP with a shared httpx client.
    Suitable for sites that serve their listings without a JavaScript challenge.
    An optional proxy URL (credentials inline) applies to every request.
    """

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF,
        timeout: float = HTTP_TIMEOUT,
        headers: dict[str, str] | None = None,
        proxy: str | None = None,
    ) -> None:
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers=headers or DEFAULT_HEADERS,
            follow_redirects=True,
            proxy=proxy,
        )
        if proxy:
            logger.info("HTTP fetcher routed through proxy.")

    async def fetch(self, url: str) -> str:
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.get(url)
                response.raise_for_status()
                return response.text
            except httpx.HTTPError as e:
                if attempt == self.max_retries:
                    logger.error(f"HTTP error after {self.max_retries} attempts fetching {url}: {e}")
                    raise FetchError(url, str(e)) from e
                backoff = self.initial_backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"Fetch attempt {attempt}/{self.max_retries} failed for {url}: {e}. "
                    f"Retrying in {backoff}s..."
                )
                await asyncio.sleep(backoff)

        raise FetchError(url, "no fetch attempts were made")

    async def close(self) -> None:
        await self._client.aclose()
