"""
Single-source fetch pipeline.

Dispatches a SourceConfig to the source class for its fetch mode, then
normalizes the raw candidates with FeedFormatter:

    CONFIGURED -> FETCHING -> EXTRACTED | FAILED
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import httpx

from .config import Settings, get_settings
from .errors import SiteFeedError
from .formatter import FeedFormatter
from .logging_conf import get_logger, source_context
from .models import FeedEnvelope, FeedItem, FetchMode, SourceConfig
from .renderer import PageRenderer
from .sources import ContentSource, HTMLSource, RawFeed, RSSSource, ScriptRunner, ScriptSource

logger = get_logger(__name__)


class FetchStatus(str, Enum):
    CONFIGURED = "configured"
    FETCHING = "fetching"
    EXTRACTED = "extracted"
    FAILED = "failed"


@dataclass
class FetchOutcome:
    """Result of one source fetch with the failure captured instead of raised."""
    source_id: str
    status: FetchStatus = FetchStatus.CONFIGURED
    items: list[FeedItem] = field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    logs: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.EXTRACTED

    @property
    def last_content(self) -> str:
        """Items serialized as JSON, for the store's debugging snapshot."""
        return json.dumps(
            [item.to_dict("iso8601") for item in self.items],
            ensure_ascii=False,
        )

    def store_fields(self) -> dict:
        """Status fields to write back to the source record (camelCase keys)."""
        return {
            "lastFetchStatus": self.status.value,
            "lastFetchError": self.error,
            "lastContent": self.last_content if self.ok else None,
            "lastFetchTime": self.fetched_at.isoformat(),
        }


class FetchPipeline:
    """
    Fetches and normalizes one source at a time.

    Args:
        settings: Settings (defaults to the cached application settings)
        renderer: PageRenderer for rendered sources (defaults to the shared one)
        script_runner: ScriptRunner for script sources
        transport: Optional httpx transport for all HTTP traffic (used by tests)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        renderer: Optional[PageRenderer] = None,
        script_runner: Optional[ScriptRunner] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.renderer = renderer
        self.transport = transport
        self.script_runner = script_runner or ScriptRunner(self.settings, transport=transport)

    def source_for(self, config: SourceConfig) -> ContentSource:
        """Build the source object for a config's fetch mode."""
        if config.fetch_mode == FetchMode.SCRIPT:
            return ScriptSource(config, self.settings, runner=self.script_runner, transport=self.transport)
        if config.fetch_mode == FetchMode.FEED:
            return RSSSource(config, self.settings, transport=self.transport)
        return HTMLSource(config, self.settings, renderer=self.renderer, transport=self.transport)

    def formatter(self, raw: RawFeed) -> FeedFormatter:
        return FeedFormatter(
            snippet_length=self.settings.snippet_length,
            date_format=raw.date_format,
        )

    async def fetch_raw(
        self,
        config: SourceConfig,
        route_params: Optional[dict[str, str]] = None,
    ) -> RawFeed:
        """Fetch candidates without normalizing them."""
        with source_context(config.id, mode=config.fetch_mode.value):
            logger.debug("source_fetching")
            try:
                return await self.source_for(config).fetch(route_params)
            except SiteFeedError as e:
                if e.source_id is None:
                    e.source_id = config.id
                raise

    async def _fetch(
        self,
        config: SourceConfig,
        route_params: Optional[dict[str, str]] = None,
    ) -> tuple[RawFeed, list[FeedItem]]:
        raw = await self.fetch_raw(config, route_params)
        items = self.formatter(raw).format_many(raw.candidates, numbered=raw.numbered)
        logger.info("source_extracted", source=config.id, items=len(items))
        return raw, items

    async def fetch(
        self,
        config: SourceConfig,
        route_params: Optional[dict[str, str]] = None,
    ) -> list[FeedItem]:
        """
        Fetch and normalize one source.

        Raises:
            SiteFeedError subclasses; nothing is swallowed
        """
        _, items = await self._fetch(config, route_params)
        return items

    async def build_feed(
        self,
        config: SourceConfig,
        route_params: Optional[dict[str, str]] = None,
    ) -> FeedEnvelope:
        """
        Fetch one source and wrap its items in a feed envelope.

        Channel fields declared by the source (a script envelope or feed
        header) win over the stored recipe's.
        """
        raw, items = await self._fetch(config, route_params)
        return FeedEnvelope(
            title=raw.title or config.title or config.url,
            description=raw.description or config.description,
            link=raw.link or config.url,
            language=raw.language,
            image=raw.image,
            items=items,
        )

    async def fetch_outcome(
        self,
        config: SourceConfig,
        route_params: Optional[dict[str, str]] = None,
    ) -> FetchOutcome:
        """Fetch one source, recording any failure on the outcome."""
        outcome = FetchOutcome(source_id=config.id, status=FetchStatus.FETCHING)
        try:
            raw, outcome.items = await self._fetch(config, route_params)
            outcome.logs = raw.logs
            outcome.status = FetchStatus.EXTRACTED
        except Exception as e:
            logger.error("source_fetch_failed", source=config.id, error=str(e))
            outcome.status = FetchStatus.FAILED
            outcome.error = str(e)
            outcome.error_type = type(e).__name__
        outcome.fetched_at = datetime.now(timezone.utc)
        return outcome
