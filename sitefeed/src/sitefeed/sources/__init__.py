"""
Content sources module.

One source class per fetch mode:
- HTML list pages scraped with a selector spec (static or rendered)
- RSS/Atom feeds
- User scripts run in a worker process
"""

from .base import ContentSource, RawFeed
from .html import HTMLSource
from .rss import RSSSource
from .script import ScriptResult, ScriptRunner, ScriptSource, split_result

__all__ = [
    "ContentSource",
    "RawFeed",
    "HTMLSource",
    "RSSSource",
    "ScriptSource",
    "ScriptRunner",
    "ScriptResult",
    "split_result",
]
