"""
Publication date parsing for scraped text.

Listing pages rarely use machine dates, so besides ISO/RFC strings this
understands explicit strptime formats, Unix timestamps, relative phrases
("3 hours ago", "昨天") and Chinese year/month/day dates.
"""

import re
from datetime import datetime, timezone
from typing import Callable, Optional

from dateutil.parser import ParserError, parse as parse_date_string
from dateutil.relativedelta import relativedelta

from .logging_conf import get_logger

logger = get_logger(__name__)

_BRACKETS = re.compile(r"[\[\](){}「」『』<>《》]")
_EDGE_PUNCT = re.compile(r"^[\s\-_:：.,，。、]+|[\s\-_:：.,，。、]+$")

Handler = Callable[[re.Match, datetime], datetime]


def _ago(unit: str) -> Handler:
    return lambda m, now: now - relativedelta(**{unit: int(m.group(1))})


def _fixed(**delta) -> Handler:
    return lambda m, now: now - relativedelta(**delta)


RELATIVE_PATTERNS: list[tuple[re.Pattern, Handler]] = [
    (re.compile(r"(\d+)\s*分钟前"), _ago("minutes")),
    (re.compile(r"(\d+)\s*小时前"), _ago("hours")),
    (re.compile(r"(\d+)\s*天前"), _ago("days")),
    (re.compile(r"(\d+)\s*周前"), _ago("weeks")),
    (re.compile(r"(\d+)\s*个月前"), _ago("months")),
    (re.compile(r"大前天"), _fixed(days=3)),
    (re.compile(r"前天"), _fixed(days=2)),
    (re.compile(r"昨天"), _fixed(days=1)),
    (re.compile(r"上周"), _fixed(weeks=1)),
    (re.compile(r"上个月"), _fixed(months=1)),
    (re.compile(r"刚刚|刚才"), _fixed()),
    (re.compile(r"(\d+)\s*min(?:ute)?s?\s*ago", re.I), _ago("minutes")),
    (re.compile(r"(\d+)\s*h(?:ou)?rs?\s*ago", re.I), _ago("hours")),
    (re.compile(r"(\d+)\s*days?\s*ago", re.I), _ago("days")),
    (re.compile(r"(\d+)\s*weeks?\s*ago", re.I), _ago("weeks")),
    (re.compile(r"(\d+)\s*months?\s*ago", re.I), _ago("months")),
    (re.compile(r"yesterday", re.I), _fixed(days=1)),
    (re.compile(r"last\s*week", re.I), _fixed(weeks=1)),
    (re.compile(r"last\s*month", re.I), _fixed(months=1)),
    (re.compile(r"just\s*now", re.I), _fixed()),
]

_CN_FULL = re.compile(r"(\d{4})年(\d{1,2})月(\d{1,2})日")
_CN_SHORT_YEAR = re.compile(r"(?<!\d)(\d{2})年(\d{1,2})月(\d{1,2})日")
_CN_MONTH_DAY = re.compile(r"(\d{1,2})月(\d{1,2})日")
_CN_TIME = re.compile(r"(\d{1,2})[:：](\d{2})")


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def clean_date_text(text: str) -> str:
    """Drop brackets and leading/trailing punctuation around a date."""
    cleaned = _BRACKETS.sub("", text.strip())
    return _EDGE_PUNCT.sub("", cleaned.strip())


def _parse_chinese(text: str, now: datetime) -> Optional[datetime]:
    match = _CN_FULL.search(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
    else:
        match = _CN_SHORT_YEAR.search(text)
        if match:
            year = 2000 + int(match.group(1))
            month, day = int(match.group(2)), int(match.group(3))
        else:
            match = _CN_MONTH_DAY.search(text)
            if not match:
                return None
            year = now.year
            month, day = int(match.group(1)), int(match.group(2))

    hour = minute = 0
    time_match = _CN_TIME.search(text, match.end())
    if time_match:
        hour, minute = int(time_match.group(1)), int(time_match.group(2))
    try:
        return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    except ValueError:
        return None


def _parse_timestamp(text: str) -> Optional[datetime]:
    if not re.fullmatch(r"\d{9,13}", text):
        return None
    value = int(text)
    # Millisecond timestamps have 13 digits
    seconds = value / 1000 if value > 100_000_000_000 else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_date(
    text: Optional[str],
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Parse a scraped date string into an aware UTC datetime.

    Args:
        text: Raw date text (may carry surrounding noise)
        date_format: Optional strptime format tried first
        now: Reference time for relative phrases (defaults to current time)

    Returns:
        Parsed datetime, or None when nothing matched
    """
    if isinstance(text, datetime):
        return _as_utc(text)
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        text = str(int(text))
    if not text or not isinstance(text, str):
        return None

    cleaned = clean_date_text(text)
    if not cleaned:
        return None

    now = _as_utc(now or datetime.now(timezone.utc))

    if date_format:
        try:
            return _as_utc(datetime.strptime(cleaned, date_format))
        except ValueError:
            logger.debug("date_format_mismatch", text=cleaned[:40], date_format=date_format)

    timestamp = _parse_timestamp(cleaned)
    if timestamp:
        return timestamp

    for pattern, handler in RELATIVE_PATTERNS:
        match = pattern.search(cleaned)
        if match:
            return handler(match, now)

    chinese = _parse_chinese(cleaned, now)
    if chinese:
        return chinese

    try:
        return _as_utc(parse_date_string(cleaned))
    except (ParserError, ValueError, OverflowError):
        pass

    try:
        # Free text such as "Posted on March 3, 2024 by Jane"
        return _as_utc(parse_date_string(cleaned, fuzzy=True))
    except (ParserError, ValueError, OverflowError):
        logger.debug("date_unparseable", text=cleaned[:40])
        return None
