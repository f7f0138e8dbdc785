"""
sitefeed: turn arbitrary web pages into structured feeds.

Sources are described by stored recipes (``SourceConfig``). Each recipe is
fetched through one of three modes (selector extraction over static or
rendered HTML, an RSS/Atom document, or a user script), normalized into
``FeedItem``s, and optionally merged with other sources into one feed.
"""

from .aggregator import AggregateFeed, AggregateStatus, SourceAggregator, SourceFailure
from .config import Settings, get_settings
from .errors import (
    AggregateEmptyError,
    AuthConfigInvalidError,
    RenderError,
    RenderNavigationError,
    RenderTimeoutError,
    ScriptError,
    ScriptRuntimeError,
    ScriptTimeoutError,
    SiteFeedError,
    SourceConfigError,
    SourceFetchError,
)
from .logging_conf import get_logger, setup_logging, source_context
from .models import FeedEnvelope, FeedItem, SelectorSpec, SourceConfig
from .pipeline import FetchOutcome, FetchPipeline, FetchStatus
from .renderer import PageRenderer, get_page_renderer, shutdown_page_renderer

__version__ = "0.1.0"

__all__ = [
    "AggregateEmptyError",
    "AggregateFeed",
    "AggregateStatus",
    "AuthConfigInvalidError",
    "FeedEnvelope",
    "FeedItem",
    "FetchOutcome",
    "FetchPipeline",
    "FetchStatus",
    "PageRenderer",
    "RenderError",
    "RenderNavigationError",
    "RenderTimeoutError",
    "ScriptError",
    "ScriptRuntimeError",
    "ScriptTimeoutError",
    "SelectorSpec",
    "Settings",
    "SiteFeedError",
    "SourceAggregator",
    "SourceConfig",
    "SourceConfigError",
    "SourceFailure",
    "SourceFetchError",
    "get_page_renderer",
    "get_logger",
    "get_settings",
    "setup_logging",
    "shutdown_page_renderer",
    "source_context",
]
