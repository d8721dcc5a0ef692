import html
import re

from bs4 import BeautifulSoup

# \s already covers \xa0 in str patterns, but not the zero-width characters
# some listing templates sprinkle between words.
WHITESPACE_RE = re.compile(r"[\s\u200b\ufeff]+")

NON_CONTENT_TAGS = ("script", "style", "noscript")


def decode_entities(text: str) -> str:
    """
    Decode HTML entities. Feeds occasionally double-encode (`&amp;amp;`),
    so decoding is repeated once more if the first pass changed the text.
    """
    if not text:
        return ""
    decoded = html.unescape(text)
    if decoded != text:
        decoded = html.unescape(decoded)
    return decoded


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and trim."""
    if not text:
        return ""
    return WHITESPACE_RE.sub(" ", text).strip()


def strip_tags(markup: str) -> str:
    """Return the visible text of an HTML fragment, without scripts and styles."""
    if not markup:
        return ""
    if "<" not in markup:
        return markup

    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup.find_all(NON_CONTENT_TAGS):
        tag.decompose()
    return soup.get_text(" ")


def clean_text(value: str | None) -> str:
    """Decode entities, strip markup and normalize whitespace."""
    if value is None:
        return ""
    return normalize_whitespace(strip_tags(decode_entities(str(value))))


def text_or_none(value: str | None) -> str | None:
    """Like clean_text, but an empty result means unknown."""
    cleaned = clean_text(value)
    return cleaned or None
