import os

import pytest

# Set environment variables for tests before any imports happen
os.environ["FETCHER"] = "http"
os.environ["DB_PATH"] = ":memory:"
os.environ["RESULTS_WANTED"] = "100"
os.environ["MAX_PAGES"] = "999"

from job_harvester.fetchers.base import FetchError, PageFetcher  # noqa: E402
from job_harvester.models import JobRecord, ListingStub  # noqa: E402


class FakeFetcher(PageFetcher):
    """Serves canned pages by URL. Exceptions in the mapping are raised."""

    def __init__(self, pages: dict[str, str | Exception]) -> None:
        self.pages = pages
        self.calls: list[str] = []
        self.closed = False

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise FetchError(url, "HTTP 404")
        if isinstance(page, Exception):
            raise page
        return page

    async def close(self) -> None:
        self.closed = True


class ListSink:
    """In-memory batch sink recording every batch it receives."""

    def __init__(self) -> None:
        self.batches: list[list[JobRecord]] = []

    def append(self, records: list[JobRecord]) -> int:
        self.batches.append(list(records))
        return len(records)

    @property
    def records(self) -> list[JobRecord]:
        return [record for batch in self.batches for record in batch]


@pytest.fixture
def fake_fetcher():
    """Factory for a FakeFetcher over a URL -> page mapping."""
    return FakeFetcher


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def sample_stub():
    """A reusable listing stub with every listing field set."""
    return ListingStub(
        url="https://www.michaelpage.com/job-detail/senior-python-developer/ref/jn-102024-001",
        listing_job_id="6543210",
        title="Senior Python Developer",
        location="London",
        salary="£70,000 - £85,000 per annum",
        job_type="Permanent",
        summary="Lead the platform team.",
        bullet_points=("Hybrid working", "Bonus & pension"),
    )


@pytest.fixture
def bare_stub():
    """A stub carrying only a URL and a title."""
    return ListingStub(
        url="https://www.michaelpage.com/job-detail/data-engineer/ref/jn-102024-002",
        title="Data Engineer",
    )
