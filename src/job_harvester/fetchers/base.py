from abc import ABC, abstractmethod
from types import TracebackType


class FetchError(Exception):
    """Raised when a page could not be fetched after all retries."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class PageFetcher(ABC):
    """
    Abstract base class for page fetchers.
    Implementations own their retry, proxy and header policy.
    """

    @abstractmethod
    async def fetch(self, url: str) -> str:
        """
        Fetch a page and return its HTML.
        Raises FetchError once the fetcher gives up.
        """
        pass

    async def capture_screenshot(self, url: str) -> str | None:
        """
        Save a debug screenshot of the page and return its path.
        Transports without a rendered page return None.
        """
        return None

    async def close(self) -> None:
        """Release any transport resources."""

    async def __aenter__(self) -> "PageFetcher":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
