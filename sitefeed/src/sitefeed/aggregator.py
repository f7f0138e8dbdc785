"""
Multi-source aggregation.

Fetches many sources concurrently, merges their items into one feed, and
reports per-source failures alongside the result instead of failing the
whole feed.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from .errors import AggregateEmptyError
from .logging_conf import get_logger
from .models import FeedEnvelope, FeedItem, SourceConfig
from .pipeline import FetchPipeline

logger = get_logger(__name__)

DEFAULT_TITLE = "Aggregated feed"

SORT_KEYS: dict[str, Callable[[FeedItem], object]] = {
    "pub_date": lambda item: item.pub_date,
    "title": lambda item: item.title.lower(),
}


class AggregateStatus(str, Enum):
    OK = "ok"  # At least one item
    EMPTY = "empty"  # No items, no source failed
    UNAVAILABLE = "unavailable"  # No items, at least one source failed


@dataclass
class SourceFailure:
    """One source that could not be fetched."""
    source_id: str
    error: str
    error_type: str

    def __str__(self) -> str:
        return f"{self.source_id}: {self.error_type}: {self.error}"


@dataclass
class AggregationResult:
    """Per-source result inside one aggregation run."""
    source_id: str
    items: list[FeedItem] = field(default_factory=list)
    error: Optional[Exception] = None


@dataclass
class AggregateFeed:
    """A merged feed plus the failures that were tolerated to build it."""
    envelope: FeedEnvelope
    failures: list[SourceFailure] = field(default_factory=list)
    sources_total: int = 0

    @property
    def items(self) -> list[FeedItem]:
        return self.envelope.items

    @property
    def status(self) -> AggregateStatus:
        if self.envelope.items:
            return AggregateStatus.OK
        if self.failures:
            return AggregateStatus.UNAVAILABLE
        return AggregateStatus.EMPTY

    def raise_for_status(self) -> "AggregateFeed":
        """Raise AggregateEmptyError when nothing was produced because sources failed."""
        if self.status == AggregateStatus.UNAVAILABLE:
            raise AggregateEmptyError(self.failures)
        return self

    def to_dict(self, date_format: str = "rfc2822") -> dict:
        data = self.envelope.to_dict(date_format)
        data["status"] = self.status.value
        data["failures"] = [
            {"sourceId": f.source_id, "error": f.error, "errorType": f.error_type}
            for f in self.failures
        ]
        return data


def check_merge_args(limit: int, sort_by: Optional[str]) -> None:
    if sort_by is not None and sort_by not in SORT_KEYS:
        raise ValueError(f"unsupported sort key {sort_by!r}; expected one of {sorted(SORT_KEYS)}")
    if limit < 0:
        raise ValueError("limit must be >= 0")


def merge_items(
    results: Sequence[AggregationResult],
    limit: int,
    sort_by: Optional[str] = "pub_date",
    descending: bool = True,
) -> list[FeedItem]:
    """
    Flatten per-source items, de-duplicate, sort and truncate.

    Items are taken in source order; for duplicate (title, link) pairs the
    first occurrence wins. Sorting is stable, so ties keep that order.
    """
    check_merge_args(limit, sort_by)

    seen: set[tuple[str, str]] = set()
    merged: list[FeedItem] = []
    duplicates = 0
    for result in results:
        for item in result.items:
            if item.identity in seen:
                duplicates += 1
                continue
            seen.add(item.identity)
            merged.append(item)

    if duplicates:
        logger.debug("duplicates_dropped", count=duplicates)

    if sort_by is not None:
        merged.sort(key=SORT_KEYS[sort_by], reverse=descending)

    return merged[:limit]


class SourceAggregator:
    """
    Fetches many sources concurrently and merges them into one feed.

    Args:
        pipeline: FetchPipeline used for every source
        max_concurrent: Max sources fetched at the same time
    """

    def __init__(
        self,
        pipeline: Optional[FetchPipeline] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.pipeline = pipeline or FetchPipeline()
        self.max_concurrent = max_concurrent or self.pipeline.settings.max_concurrent_sources

    async def fetch_all(self, sources: Sequence[SourceConfig]) -> list[AggregationResult]:
        """
        Fetch every source, capturing failures per source.

        Results come back in input order regardless of completion order.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def fetch_with_semaphore(config: SourceConfig) -> AggregationResult:
            async with semaphore:
                try:
                    items = await self.pipeline.fetch(config)
                    logger.debug("source_fetch_complete", source=config.id, items=len(items))
                    return AggregationResult(source_id=config.id, items=items)
                except Exception as e:
                    logger.error(
                        "source_fetch_failed",
                        source=config.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return AggregationResult(source_id=config.id, error=e)

        tasks = [fetch_with_semaphore(c) for c in sources]
        return list(await asyncio.gather(*tasks))

    async def aggregate(
        self,
        sources: Sequence[SourceConfig],
        limit: Optional[int] = None,
        sort_by: Optional[str] = "pub_date",
        descending: bool = True,
        title: str = DEFAULT_TITLE,
        description: str = "",
        link: str = "",
        language: str = "",
    ) -> AggregateFeed:
        """
        Build one feed from many sources.

        Args:
            sources: Source recipes, in priority order
            limit: Max items in the merged feed (defaults to settings)
            sort_by: ``"pub_date"``, ``"title"`` or None to keep source order
            descending: Sort direction
            title, description, link, language: Envelope fields

        Returns:
            AggregateFeed; check ``status`` or call ``raise_for_status()``
        """
        if limit is None:
            limit = self.pipeline.settings.default_limit
        check_merge_args(limit, sort_by)

        logger.info("starting_aggregate", total_sources=len(sources), limit=limit)

        results = await self.fetch_all(sources)
        failures = [
            SourceFailure(
                source_id=r.source_id,
                error=str(r.error),
                error_type=type(r.error).__name__,
            )
            for r in results
            if r.error is not None
        ]

        items = merge_items(results, limit, sort_by=sort_by, descending=descending)
        feed = AggregateFeed(
            envelope=FeedEnvelope(
                title=title,
                description=description,
                link=link,
                language=language,
                items=items,
            ),
            failures=failures,
            sources_total=len(sources),
        )

        logger.info(
            "aggregate_complete",
            total_items=len(items),
            sources_succeeded=len(sources) - len(failures),
            sources_failed=len(failures),
            status=feed.status.value,
        )
        return feed
