import logging
from enum import Enum
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict

from job_harvester.fetchers.base import PageFetcher
from job_harvester.listing import DEFAULT_SELECTORS, ListingSelectors, iter_listing_stubs
from job_harvester.models import ListingStub
from job_harvester.text import normalize_whitespace

logger = logging.getLogger(__name__)

DEFAULT_SITE_BASE = "https://www.michaelpage.com"
PAGE_PARAM = "page"


class DedupIndex:
    """
    Canonical URL -> first-seen stub. Insertion order is the processing
    order for detail fetches, so no URL can be queued twice.
    """

    def __init__(self) -> None:
        self._stubs: dict[str, ListingStub] = {}

    def add(self, stub: ListingStub) -> bool:
        """Record a stub. Returns False if its URL was already seen."""
        if stub.url in self._stubs:
            return False
        self._stubs[stub.url] = stub
        return True

    def stubs(self) -> list[ListingStub]:
        return list(self._stubs.values())

    def __contains__(self, url: object) -> bool:
        return url in self._stubs

    def __len__(self) -> int:
        return len(self._stubs)


class StopReason(str, Enum):
    EMPTY_PAGE = "empty_page"
    NO_NEW_ROWS = "no_new_rows"
    TARGET_REACHED = "target_reached"
    MAX_PAGES = "max_pages"


class PaginationResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    stubs: list[ListingStub]
    dedup: DedupIndex
    pages_fetched: int
    stop_reason: StopReason


def build_search_url(keyword: str = "", location: str = "", site_base: str = DEFAULT_SITE_BASE) -> str:
    """Listing search URL for a keyword and location; blank filters are left out."""
    params = {}
    if keyword and keyword.strip():
        params["search"] = keyword.strip()
    if location and location.strip():
        params["location"] = location.strip()

    url = f"{site_base.rstrip('/')}/jobs"
    return f"{url}?{urlencode(params)}" if params else url


def page_url(base_url: str, page: int) -> str:
    """The base URL with its page parameter set; page 0 carries no parameter."""
    parsed = urlparse(base_url)
    query = [(key, value) for key, value in parse_qsl(parsed.query, keep_blank_values=True) if key != PAGE_PARAM]
    if page > 0:
        query.append((PAGE_PARAM, str(page)))
    return urlunparse(parsed._replace(query=urlencode(query)))


async def paginate(
    fetcher: PageFetcher,
    base_url: str,
    *,
    max_pages: int,
    target: int | None = None,
    dedup: DedupIndex | None = None,
    site_base: str = DEFAULT_SITE_BASE,
    selectors: ListingSelectors = DEFAULT_SELECTORS,
) -> PaginationResult:
    """
    Walk listing pages sequentially and collect new stubs.

    `target` caps the total size of the dedup index (None means no cap), so
    several start URLs can share one index and one cap. Listing fetch errors
    propagate to the caller.
    """
    dedup = dedup if dedup is not None else DedupIndex()
    found: list[ListingStub] = []
    pages_fetched = 0
    stop_reason = StopReason.MAX_PAGES

    page = 0
    while page < max_pages:
        if target is not None and len(dedup) >= target:
            stop_reason = StopReason.TARGET_REACHED
            break

        url = page_url(base_url, page)
        logger.info(f"Fetching listing page {page + 1}: {url}")
        document = await fetcher.fetch(url)
        pages_fetched += 1

        soup = BeautifulSoup(document, "html.parser")
        rows = 0
        new_rows = 0
        for stub in iter_listing_stubs(soup, site_base, selectors):
            rows += 1
            if target is not None and len(dedup) >= target:
                break
            if dedup.add(stub):
                found.append(stub)
                new_rows += 1

        logger.info(f"Listing page {page + 1}: {rows} rows, {new_rows} new (total {len(dedup)})")

        if rows == 0:
            if page == 0:
                title = normalize_whitespace(soup.title.get_text()) if soup.title else ""
                logger.warning(f"No jobs found on first listing page. Page: {title!r}")
                screenshot = await fetcher.capture_screenshot(url)
                if screenshot:
                    logger.info(f"Saved debug screenshot to {screenshot}")
            stop_reason = StopReason.EMPTY_PAGE
            break
        if new_rows == 0:
            stop_reason = StopReason.NO_NEW_ROWS
            break
        if target is not None and len(dedup) >= target:
            stop_reason = StopReason.TARGET_REACHED
            break

        page += 1

    logger.info(
        f"Pagination stopped ({stop_reason.value}) after {pages_fetched} pages "
        f"with {len(found)} new listings"
    )
    return PaginationResult(
        stubs=found,
        dedup=dedup,
        pages_fetched=pages_fetched,
        stop_reason=stop_reason,
    )
