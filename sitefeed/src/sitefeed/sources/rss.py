"""
Feed-mode sources: existing RSS/Atom documents.

Entries are mapped onto the same raw candidate shape the other modes
produce, so they go through the same FeedFormatter rules.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional

import feedparser

from ..errors import SourceFetchError
from ..formatter import strip_markup
from ..logging_conf import get_logger
from .base import ContentSource, RawFeed

logger = get_logger(__name__)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8"


class RSSSource(ContentSource):
    """
    Parser for RSS/Atom feeds.

    Supports:
    - Standard RSS 2.0 and Atom feeds
    - Channel metadata (title, description, link, language, image)
    - Media thumbnails and image enclosures
    """

    async def fetch(self, route_params: Optional[dict[str, str]] = None) -> RawFeed:
        """Fetch and parse the feed document."""
        logger.debug("fetching_rss", source=self.config.id, url=self.config.url)

        text = await self.get_document(accept=FEED_ACCEPT)
        feed = feedparser.parse(text)

        if feed.bozo and feed.bozo_exception:
            if not feed.entries:
                raise SourceFetchError(
                    f"unparseable feed: {feed.bozo_exception}",
                    source_id=self.config.id,
                )
            logger.warning(
                "rss_parse_warning",
                source=self.config.id,
                error=str(feed.bozo_exception),
            )

        candidates = []
        for entry in feed.entries:
            candidate = self._parse_entry(entry)
            if candidate is not None:
                candidates.append(candidate)

        logger.info(
            "rss_fetched",
            source=self.config.id,
            total_entries=len(feed.entries),
            items=len(candidates),
        )

        channel = feed.feed
        image = channel.get("image") or {}
        return RawFeed(
            candidates=candidates,
            title=channel.get("title", ""),
            description=channel.get("subtitle", "") or channel.get("description", ""),
            link=channel.get("link", ""),
            language=channel.get("language", ""),
            image=image.get("href") or image.get("url") or None,
        )

    def _parse_entry(self, entry: dict) -> Optional[dict]:
        """Map a single feed entry onto a raw candidate."""
        title = entry.get("title", "")
        if entry.get("title_detail", {}).get("type") == "text/html":
            title = strip_markup(title)
        candidate = {
            "title": title,
            "link": entry.get("link", ""),
        }
        if not candidate["title"] and not candidate["link"]:
            return None

        if entry.get("id"):
            candidate["guid"] = entry.id

        # Full content beats the summary
        if entry.get("content"):
            candidate["content"] = entry.content[0].get("value", "")
        elif "summary" in entry:
            candidate["content"] = entry.summary
        elif "description" in entry:
            candidate["content"] = entry.description

        published = self._parse_date(entry)
        if published:
            candidate["pubDate"] = published

        # Get authors
        if entry.get("authors"):
            names = [a.get("name", "") for a in entry.authors if a.get("name")]
            candidate["author"] = ", ".join(names)
        elif "author" in entry:
            candidate["author"] = entry.author

        # Get categories
        if "tags" in entry:
            terms = [t.term for t in entry.tags if getattr(t, "term", None)]
            if terms:
                candidate["category"] = ", ".join(terms)

        image = self._find_image(entry)
        if image:
            candidate["image"] = image

        return candidate

    def _parse_date(self, entry: dict):
        """Parse date from various feed formats."""
        for field in ["published_parsed", "updated_parsed", "created_parsed"]:
            parsed = entry.get(field)
            if parsed:
                try:
                    # feedparser normalizes to a UTC struct_time
                    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
                except (ValueError, OverflowError):
                    continue

        # Left to the formatter's date parser
        for field in ["published", "updated", "created"]:
            if entry.get(field):
                return entry[field]

        return None

    def _find_image(self, entry: dict) -> Optional[str]:
        for key in ("media_thumbnail", "media_content"):
            for media in entry.get(key) or []:
                if media.get("url"):
                    return media["url"]
        for link in entry.get("links") or []:
            if link.get("rel") == "enclosure" and str(link.get("type", "")).startswith("image/"):
                return link.get("href")
        return None
