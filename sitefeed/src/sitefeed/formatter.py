"""
Final-shape normalization of raw candidates into FeedItems.

Raw candidates come from selector extraction, feed parsing or scripts and
may miss any field. Rules run in a fixed order: title, content, link,
guid, pub_date, then pass-through fields.
"""

import html
import re
import warnings
import zlib
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Union

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

from .dates import parse_date
from .logging_conf import get_logger
from .models import FeedItem

logger = get_logger(__name__)

DEFAULT_TITLE = "Untitled"
DEFAULT_LINK = "#"
GUID_PREFIX = "item"

_BARE_AMPERSAND = re.compile(r"&(?!(?:[a-zA-Z][a-zA-Z0-9]*|#\d+|#[xX][0-9a-fA-F]+);)")

# Accepted spellings of each field in raw candidates
TITLE_KEYS = ("title", "name", "headline")
LINK_KEYS = ("link", "url", "href")
CONTENT_KEYS = ("content", "description", "summary", "body")
DATE_KEYS = ("pubDate", "date", "publishedAt", "published", "updated")
IMAGE_KEYS = ("image", "coverImage", "thumbnail")


def escape_text(text: Optional[str]) -> str:
    """
    Escape ``& < > " '`` for markup placement.

    Existing entities (``&amp;``, ``&#39;``, ``&lt;`` ...) are left alone so
    pre-escaped input is not escaped twice.
    """
    if not text:
        return ""
    text = _BARE_AMPERSAND.sub("&amp;", text)
    return (
        text.replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#39;")
    )


def clean_text(text: Optional[str]) -> str:
    """Plain text with entities decoded and whitespace collapsed; angle brackets are kept as text."""
    if not text:
        return ""
    return " ".join(html.unescape(text).split())


def strip_markup(text: Optional[str]) -> str:
    """Remove HTML tags (and decode entities), collapsing whitespace."""
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return " ".join(text.split())
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        soup = BeautifulSoup(text, "lxml")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return soup.get_text(separator=" ", strip=True)


def sanitize_content(content: str) -> str:
    """Drop executable and style elements from HTML content, keeping the rest."""
    if "<" not in content:
        return content.strip()
    soup = BeautifulSoup(content, "html.parser")
    for tag in soup(["script", "style", "noscript", "iframe"]):
        tag.decompose()
    return str(soup).strip()


def make_snippet(text: str, length: int) -> str:
    """Cap plain text at ``length`` characters with an ellipsis."""
    if len(text) <= length:
        return text
    return text[:length].rstrip() + "..."


def make_guid(title: str, link: str, timestamp: str = "") -> str:
    """
    Deterministic id from title, link and publish timestamp.

    CRC-32 is fast and reproducible across processes and platforms.
    """
    digest = zlib.crc32(f"{title}|{link}|{timestamp}".encode("utf-8"))
    return f"{GUID_PREFIX}-{digest:08x}"


def _first(raw: dict, keys: Iterable[str]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        value = value.get("name") or value.get("title") or ""
    if isinstance(value, (list, tuple)):
        value = ", ".join(_as_text(v) for v in value if _as_text(v))
    return str(value).strip()


class FeedFormatter:
    """
    Normalizes raw candidates into FeedItems.

    Args:
        snippet_length: Max characters of the plain-text snippet
        now: Clock used when a candidate has no parseable date
        date_format: Optional strptime format for candidate dates
    """

    def __init__(
        self,
        snippet_length: int = 300,
        now: Optional[Union[datetime, Callable[[], datetime]]] = None,
        date_format: Optional[str] = None,
    ):
        self.snippet_length = snippet_length
        self._now = now
        self.date_format = date_format

    def now(self) -> datetime:
        if callable(self._now):
            return self._now()
        if self._now is not None:
            return self._now
        return datetime.now(timezone.utc)

    def format(self, raw: dict, index: Optional[int] = None) -> FeedItem:
        """Normalize one raw candidate."""
        if not isinstance(raw, dict):
            raise TypeError(f"candidate must be a dict, got {type(raw).__name__}")

        # title
        title = clean_text(_as_text(_first(raw, TITLE_KEYS)))
        if not title:
            title = f"Item {index + 1}" if index is not None else DEFAULT_TITLE

        # content
        content = sanitize_content(_as_text(_first(raw, CONTENT_KEYS)))
        snippet = clean_text(_as_text(raw.get("contentSnippet"))) or strip_markup(content)
        snippet = make_snippet(snippet, self.snippet_length)

        # link
        link = _as_text(_first(raw, LINK_KEYS)) or DEFAULT_LINK

        # guid
        raw_date = _first(raw, DATE_KEYS)
        guid = _as_text(raw.get("guid")) or _as_text(raw.get("id"))
        if not guid:
            guid = make_guid(title, link, _as_text(raw_date))

        # pub_date
        pub_date = parse_date(raw_date, self.date_format, now=self.now()) if raw_date else None
        if pub_date is None:
            if raw_date:
                logger.debug("pub_date_fallback", raw=_as_text(raw_date)[:40])
            pub_date = self.now()

        image = _as_text(_first(raw, IMAGE_KEYS)) or None
        category = clean_text(_as_text(raw.get("category") or raw.get("categories"))) or None

        return FeedItem(
            title=escape_text(title),
            link=escape_text(link),
            content=content,
            content_snippet=escape_text(snippet),
            author=escape_text(clean_text(_as_text(raw.get("author")))),
            pub_date=pub_date,
            guid=escape_text(guid),
            image=escape_text(image) or None,
            category=escape_text(category) if category else None,
        )

    def format_many(self, candidates: Iterable[Any], numbered: bool = False) -> list[FeedItem]:
        """
        Normalize a list of candidates, skipping entries that are not dicts.

        ``numbered`` gives untitled items an ``Item N`` placeholder instead of
        the generic one.
        """
        items = []
        for index, raw in enumerate(candidates):
            if not isinstance(raw, dict):
                logger.warning("candidate_skipped", index=index, type=type(raw).__name__)
                continue
            items.append(self.format(raw, index if numbered else None))
        return items
