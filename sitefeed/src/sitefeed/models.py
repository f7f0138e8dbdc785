"""
Data model for source recipes and normalized feeds.

Source recipes (``SourceConfig`` and friends) are pydantic models: they come
from an external store as JSON with camelCase keys and are validated once,
then treated as immutable snapshots for the duration of one invocation.

Feed output (``FeedItem``, ``FeedEnvelope``) uses plain dataclasses, the
normalized format shared by every fetch mode.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


REGEX_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "g": 0,  # global matching has no meaning for a single extraction
    "u": 0,
}

DateFormat = Literal["rfc2822", "iso8601"]


class SelectorType(str, Enum):
    CSS = "css"
    XPATH = "xpath"


class ExtractType(str, Enum):
    TEXT = "text"
    ATTR = "attr"
    HTML = "html"


class AuthType(str, Enum):
    NONE = "none"
    COOKIE = "cookie"
    BASIC = "basic"
    BEARER = "bearer"
    CUSTOM = "custom"


class FetchMode(str, Enum):
    SELECTOR = "selector"
    SCRIPT = "script"
    FEED = "feed"  # RSS/Atom document parsed with feedparser


class RenderMode(str, Enum):
    STATIC = "static"
    RENDERED = "rendered"


class RecipeModel(BaseModel):
    """Base for stored recipe models: camelCase on the wire, frozen in memory."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


def regex_flags_value(flags: Optional[str]) -> int:
    """Translate a flag string such as ``"im"`` into ``re`` flags."""
    value = 0
    for letter in flags or "":
        if letter not in REGEX_FLAG_MAP:
            raise ValueError(f"unsupported regex flag {letter!r}")
        value |= REGEX_FLAG_MAP[letter]
    return value


class SelectorField(RecipeModel):
    """Where one output field lives relative to its container."""

    selector: str = ""
    extract_type: Optional[ExtractType] = None
    attr_name: Optional[str] = None
    regex_pattern: Optional[str] = None
    regex_flags: Optional[str] = None
    regex_group: Optional[int | str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_plain_selector(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"selector": data}
        return data

    @model_validator(mode="after")
    def check_regex(self) -> "SelectorField":
        if self.regex_pattern:
            try:
                re.compile(self.regex_pattern, regex_flags_value(self.regex_flags))
            except re.error as e:
                raise ValueError(f"invalid regexPattern {self.regex_pattern!r}: {e}") from e
        if self.extract_type == ExtractType.ATTR and not self.attr_name:
            raise ValueError("attrName is required when extractType is 'attr'")
        return self

    def compiled_regex(self) -> Optional[re.Pattern]:
        """Compiled refinement pattern (``re`` keeps its own compile cache)."""
        if not self.regex_pattern:
            return None
        return re.compile(self.regex_pattern, regex_flags_value(self.regex_flags))


class SelectorSpec(RecipeModel):
    """Declarative description of where each item field lives in a document."""

    selector_type: SelectorType = SelectorType.CSS
    container: str
    title: SelectorField
    content: Optional[SelectorField] = None
    date: Optional[SelectorField] = None
    link: Optional[SelectorField] = None
    author: Optional[SelectorField] = None
    image: Optional[SelectorField] = None
    date_format: Optional[str] = None

    def fields(self) -> dict[str, SelectorField]:
        """Declared fields by output name, skipping absent ones."""
        declared = {
            "title": self.title,
            "content": self.content,
            "date": self.date,
            "link": self.link,
            "author": self.author,
            "image": self.image,
        }
        return {name: f for name, f in declared.items() if f is not None}


class BasicAuth(RecipeModel):
    username: str = ""
    password: str = ""


class AuthSpec(RecipeModel):
    """Credentials attached to outgoing requests for a source."""

    enabled: bool = False
    auth_type: AuthType = AuthType.NONE
    cookie: Optional[str] = None
    basic_auth: Optional[BasicAuth] = None
    bearer_token: Optional[str] = None
    # Values are validated lazily by AuthInjector so one bad header cannot
    # invalidate the whole recipe.
    custom_headers: Optional[dict[str, Any]] = None

    @property
    def active(self) -> bool:
        return self.enabled and self.auth_type != AuthType.NONE


class ScriptSpec(RecipeModel):
    """A caller-supplied script defining ``main(ctx)``."""

    script: str
    enabled: bool = True
    timeout_ms: Optional[int] = Field(None, gt=0)


class RenderSettings(RecipeModel):
    """Per-source tuning for rendered fetches."""

    wait_for_selector: Optional[str] = None
    timeout_ms: Optional[int] = Field(None, gt=0)
    extra_wait_ms: Optional[int] = Field(None, ge=0)


class RenderOptions(RecipeModel):
    """One render request."""

    url: str
    auth: Optional[AuthSpec] = None
    timeout_ms: int = Field(30000, gt=0)
    wait_for_selector: Optional[str] = None
    extra_wait_ms: int = Field(2000, ge=0)


class SourceConfig(RecipeModel):
    """One scraping/aggregation recipe, as held by the external store."""

    id: str
    url: str
    title: str = ""
    description: str = ""
    fetch_mode: FetchMode = FetchMode.SELECTOR
    selector: Optional[SelectorSpec] = None
    script: Optional[ScriptSpec] = None
    auth: AuthSpec = Field(default_factory=AuthSpec)
    render_mode: RenderMode = RenderMode.STATIC
    render: Optional[RenderSettings] = None
    fetch_interval_minutes: int = 60
    last_fetch_status: Optional[str] = None
    last_fetch_error: Optional[str] = None
    last_content: Optional[str] = None
    last_fetch_time: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        # Stores commonly use integer primary keys
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("auth", mode="before")
    @classmethod
    def default_auth(cls, v: Any) -> Any:
        return AuthSpec() if v is None else v

    @model_validator(mode="after")
    def check_mode_requirements(self) -> "SourceConfig":
        if self.fetch_mode == FetchMode.SELECTOR and self.selector is None:
            raise ValueError("selector mode requires a selector spec")
        if self.fetch_mode == FetchMode.SCRIPT and (
            self.script is None or not self.script.script.strip()
        ):
            raise ValueError("script mode requires a non-empty script")
        return self

    def __str__(self) -> str:
        return f"[{self.id}] {self.fetch_mode.value} {self.url[:60]}"


def format_feed_date(value: datetime, date_format: DateFormat = "rfc2822") -> str:
    """Render a timestamp in the caller's target feed format."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if date_format == "iso8601":
        return value.isoformat()
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


@dataclass
class FeedItem:
    """
    A normalized feed entry.

    Produced by FeedFormatter for every fetch mode. Textual fields are
    already escaped for markup placement; ``content`` keeps its markup.
    """
    title: str
    link: str
    content: str
    content_snippet: str
    author: str
    pub_date: datetime
    guid: str
    image: Optional[str] = None
    category: Optional[str] = None

    @property
    def identity(self) -> tuple[str, str]:
        """De-duplication key."""
        return (self.title, self.link)

    def to_dict(self, date_format: DateFormat = "rfc2822") -> dict:
        """Convert to a dictionary using feed (camelCase) keys."""
        data = {
            "title": self.title,
            "link": self.link,
            "content": self.content,
            "contentSnippet": self.content_snippet,
            "author": self.author,
            "pubDate": format_feed_date(self.pub_date, date_format),
            "guid": self.guid,
        }
        if self.image:
            data["image"] = self.image
        if self.category:
            data["category"] = self.category
        return data

    def __str__(self) -> str:
        return f"{self.title[:60]} <{self.link}>"


@dataclass
class FeedEnvelope:
    """Top-level channel description plus its items."""
    title: str
    description: str = ""
    link: str = ""
    language: str = ""
    last_build_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    items: list[FeedItem] = field(default_factory=list)
    generator: str = "sitefeed"
    image: Optional[str] = None

    def to_dict(self, date_format: DateFormat = "rfc2822") -> dict:
        data = {
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "language": self.language,
            "lastBuildDate": format_feed_date(self.last_build_date, date_format),
            "generator": self.generator,
            "items": [item.to_dict(date_format) for item in self.items],
        }
        if self.image:
            data["image"] = self.image
        return data
