import json
import logging
import re
from collections.abc import Iterator
from typing import Any
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup, Tag
from pydantic import BaseModel, ConfigDict, ValidationError

from job_harvester.models import ListingStub
from job_harvester.text import normalize_whitespace, text_or_none

logger = logging.getLogger(__name__)

MAX_JSON_DEPTH = 10
DETAIL_PATH_PREFIX = "/job-detail/"
REFERENCE_RE = re.compile(r"/ref/([^/?#]+)")


class ListingSelectors(BaseModel):
    """
    CSS selectors describing one site's listing markup.
    Each tuple is tried in order; the first selector that matches wins.
    """

    model_config = ConfigDict(frozen=True)

    rows: tuple[str, ...]
    about_attr: str = "about"
    links: tuple[str, ...]
    id_attrs: tuple[str, ...]
    title: tuple[str, ...]
    location: tuple[str, ...]
    job_type: tuple[str, ...]
    salary: tuple[str, ...]
    summary: tuple[str, ...]
    bullets: tuple[str, ...]
    icons: tuple[str, ...] = ("i", "svg", "img", ".icon", "[class*='icon']")


# Michael Page listing tiles (Drupal views rows)
DEFAULT_SELECTORS = ListingSelectors(
    rows=("li.views-row", "div.job-tile", "article.job-tile"),
    links=(f"a[href*='{DETAIL_PATH_PREFIX}']", ".job-title a[href]", "h3 a[href]"),
    id_attrs=("data-job-id", "data-jobid", "data-id", "data-reference"),
    title=(".job-title", "h3", "h2"),
    location=(".job-location", ".location"),
    job_type=(".job-contract-type", ".job-type", ".contract-type"),
    salary=(".job-salary", ".salary"),
    summary=(".job_advert__job-summary-text", ".job-summary", ".summary"),
    bullets=(".bullet_points li", ".job-bullets li", ".highlights li"),
)


def canonicalize_url(href: str | None, base_url: str) -> str | None:
    """
    Resolve a link to its canonical absolute form: lower-cased scheme and
    host, no fragment. Non-web links (javascript:, mailto:, ...) give None.
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(("javascript:", "mailto:", "tel:", "#")):
        return None

    parsed = urlparse(urljoin(base_url, href))
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        return None

    return urlunparse(
        (
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            parsed.path or "/",
            parsed.params,
            parsed.query,
            "",
        )
    )


def _tree_text(value: str) -> str | None:
    """Text already decoded by the parser: whitespace only, no second decode."""
    return normalize_whitespace(value) or None


def _select_first(scope: Tag, selectors: tuple[str, ...]) -> Tag | None:
    for selector in selectors:
        found = scope.select_one(selector)
        if found is not None:
            return found
    return None


def _block_text(scope: Tag, selectors: tuple[str, ...], icons: tuple[str, ...]) -> str | None:
    """Text of the first matching block, with leading iconography removed."""
    element = _select_first(scope, selectors)
    if element is None:
        return None

    # Work on a detached copy so the row itself stays intact
    fragment = BeautifulSoup(str(element), "html.parser")
    for selector in icons:
        for icon in fragment.select(selector):
            icon.decompose()
    return _tree_text(fragment.get_text(" "))


def _detail_href(row: Tag, selectors: ListingSelectors) -> str | None:
    """Prefer the row's structured "about" path over a plain hyperlink."""
    candidates = [row] if row.has_attr(selectors.about_attr) else []
    candidates.extend(row.select(f"[{selectors.about_attr}]"))
    for element in candidates:
        about = str(element.get(selectors.about_attr, "")).strip()
        if about:
            return about

    link = _select_first(row, selectors.links)
    if link is not None and link.get("href"):
        return str(link["href"])
    return None


def _listing_id(row: Tag, url: str, selectors: ListingSelectors) -> str | None:
    for attr in selectors.id_attrs:
        if row.has_attr(attr):
            return _tree_text(str(row[attr]))
        element = row.select_one(f"[{attr}]")
        if element is not None:
            return _tree_text(str(element[attr]))

    match = REFERENCE_RE.search(urlparse(url).path)
    return match.group(1) if match else None


def parse_listing_row(
    row: Tag,
    base_url: str,
    selectors: ListingSelectors = DEFAULT_SELECTORS,
) -> ListingStub | None:
    """Extract one stub from a row block, or None if it has no detail URL."""
    url = canonicalize_url(_detail_href(row, selectors), base_url)
    if not url:
        return None

    bullets = []
    for selector in selectors.bullets:
        items = row.select(selector)
        if items:
            bullets = [text for text in (_tree_text(item.get_text(" ")) for item in items) if text]
            break

    return ListingStub(
        url=url,
        listing_job_id=_listing_id(row, url, selectors),
        title=_block_text(row, selectors.title, selectors.icons),
        location=_block_text(row, selectors.location, selectors.icons),
        job_type=_block_text(row, selectors.job_type, selectors.icons),
        salary=_block_text(row, selectors.salary, selectors.icons),
        summary=_block_text(row, selectors.summary, selectors.icons),
        bullet_points=tuple(bullets),
    )


def mine_listing_rows(
    document: str | BeautifulSoup,
    base_url: str,
    selectors: ListingSelectors = DEFAULT_SELECTORS,
) -> Iterator[ListingStub]:
    """
    Yield a stub for every listing row in the page, in document order.
    Rows without an extractable detail URL are dropped.
    """
    soup = document if isinstance(document, BeautifulSoup) else BeautifulSoup(document, "html.parser")

    rows: list[Tag] = []
    for selector in selectors.rows:
        rows = soup.select(selector)
        if rows:
            logger.debug(f"Found {len(rows)} listing rows using selector: {selector}")
            break

    for row in rows:
        stub = parse_listing_row(row, base_url, selectors)
        if stub is None:
            logger.debug("Dropping listing row without a detail URL")
            continue
        yield stub


def _json_text(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("name")
    if isinstance(value, list):
        value = ", ".join(str(item) for item in value if isinstance(item, (str, int, float)))
    if isinstance(value, (str, int, float)):
        return text_or_none(str(value))
    return None


def _stub_from_json(obj: dict[str, Any], base_url: str) -> ListingStub | None:
    href = obj.get("url") or obj.get("link") or obj.get("href")
    if not isinstance(href, str):
        slug = obj.get("slug") or obj.get("id")
        href = f"{DETAIL_PATH_PREFIX}{slug}" if isinstance(slug, (str, int)) and slug != "" else None

    url = canonicalize_url(href, base_url)
    # Page-level metadata objects also carry title/url pairs
    if not url or DETAIL_PATH_PREFIX not in urlparse(url).path:
        return None

    try:
        return ListingStub(
            url=url,
            listing_job_id=_json_text(obj.get("id")),
            title=_json_text(obj.get("title")),
            company=_json_text(obj.get("company") or obj.get("hiringOrganization")),
            location=_json_text(obj.get("location")),
            salary=_json_text(obj.get("salary") or obj.get("compensation")),
            job_type=_json_text(obj.get("employmentType") or obj.get("type")),
            summary=_json_text(obj.get("summary") or obj.get("description")),
        )
    except ValidationError as e:
        logger.debug(f"Ignoring embedded job entry: {e}")
        return None


def _walk_json(value: Any, base_url: str, depth: int = 0) -> Iterator[ListingStub]:
    if depth > MAX_JSON_DEPTH:
        return
    if isinstance(value, list):
        for item in value:
            yield from _walk_json(item, base_url, depth + 1)
    elif isinstance(value, dict):
        if isinstance(value.get("title"), str) and value["title"].strip():
            stub = _stub_from_json(value, base_url)
            if stub is not None:
                yield stub
        for item in value.values():
            yield from _walk_json(item, base_url, depth + 1)


def mine_embedded_rows(document: str | BeautifulSoup, base_url: str) -> Iterator[ListingStub]:
    """
    Yield stubs from JSON state embedded in the listing page
    (e.g. __NEXT_DATA__), for pages that ship their results as data.
    """
    soup = document if isinstance(document, BeautifulSoup) else BeautifulSoup(document, "html.parser")
    for script in soup.find_all("script"):
        if not isinstance(script, Tag):
            continue
        if str(script.get("type", "")).strip().lower() != "application/json":
            continue
        raw = script.string
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping unparseable embedded JSON: {e}")
            continue
        yield from _walk_json(data, base_url)


def iter_listing_stubs(
    document: str | BeautifulSoup,
    base_url: str,
    selectors: ListingSelectors = DEFAULT_SELECTORS,
) -> Iterator[ListingStub]:
    """HTML rows first, then embedded-JSON rows the markup did not already list."""
    soup = document if isinstance(document, BeautifulSoup) else BeautifulSoup(document, "html.parser")

    yielded: set[str] = set()
    for stub in mine_listing_rows(soup, base_url, selectors):
        yielded.add(stub.url)
        yield stub

    for stub in mine_embedded_rows(soup, base_url):
        if stub.url not in yielded:
            yielded.add(stub.url)
            yield stub
