import json
import logging
from collections.abc import Iterable, Iterator
from typing import Any

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError

from job_harvester.models import StructuredPosting

logger = logging.getLogger(__name__)

JOB_POSTING_TYPE = "JobPosting"
METADATA_SCRIPT_TYPE = "application/ld+json"

# Raw control characters that are illegal inside a JSON string literal,
# mapped to their two-character escapes.
CONTROL_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\f": "\\f",
    "\b": "\\b",
}


def sanitize_control_chars(raw: Iterable[str]) -> str:
    """
    Escape raw control characters that appear inside JSON string literals.

    Walks the characters once, tracking whether we are inside a quoted
    string and whether the previous character was a backslash escape.
    Characters outside strings, and everything else inside them, are copied
    unchanged, so valid JSON comes back byte-for-byte identical.
    """
    out: list[str] = []
    in_string = False
    escaped = False

    for char in raw:
        if escaped:
            out.append(char)
            escaped = False
            continue

        if in_string:
            if char == "\\":
                escaped = True
                out.append(char)
            elif char == '"':
                in_string = False
                out.append(char)
            else:
                out.append(CONTROL_ESCAPES.get(char, char))
        else:
            if char == '"':
                in_string = True
            out.append(char)

    return "".join(out)


def parse_metadata_block(raw: str) -> Any | None:
    """
    Parse one metadata block, retrying once on a sanitized copy.
    Returns None when the block cannot be recovered.
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass

    try:
        return json.loads(sanitize_control_chars(raw))
    except json.JSONDecodeError as e:
        logger.debug(f"Skipping unparseable metadata block: {e}")
        return None


def iter_metadata_blocks(document: str | BeautifulSoup) -> Iterator[str]:
    """Yield the raw text of every JSON-LD script in the document."""
    soup = document if isinstance(document, BeautifulSoup) else BeautifulSoup(document, "html.parser")
    for script in soup.find_all("script"):
        if not isinstance(script, Tag):
            continue
        script_type = str(script.get("type", "")).strip().lower()
        if script_type != METADATA_SCRIPT_TYPE:
            continue
        raw = script.string if script.string is not None else script.get_text()
        if raw and raw.strip():
            yield raw


def iter_candidates(value: Any) -> Iterator[dict[str, Any]]:
    """Flatten a parsed block into its objects, following lists and @graph."""
    if isinstance(value, list):
        for item in value:
            yield from iter_candidates(item)
    elif isinstance(value, dict):
        yield value
        graph = value.get("@graph")
        if isinstance(graph, list):
            yield from iter_candidates(graph)


def matches_type(obj: dict[str, Any], target_type: str = JOB_POSTING_TYPE) -> bool:
    """True if the object's @type is the target or a list containing it."""
    obj_type = obj.get("@type")
    if isinstance(obj_type, str):
        return obj_type == target_type
    if isinstance(obj_type, list):
        return target_type in obj_type
    return False


def extract_structured_posting(
    document: str | BeautifulSoup,
    target_type: str = JOB_POSTING_TYPE,
) -> StructuredPosting | None:
    """
    Return the first embedded structured-data object of the target type,
    searching every JSON-LD block in document order.
    """
    for raw in iter_metadata_blocks(document):
        parsed = parse_metadata_block(raw)
        if parsed is None:
            continue

        for candidate in iter_candidates(parsed):
            if not matches_type(candidate, target_type):
                continue
            try:
                return StructuredPosting.model_validate(candidate)
            except ValidationError as e:
                logger.debug(f"Ignoring malformed {target_type} object: {e}")

    return None
