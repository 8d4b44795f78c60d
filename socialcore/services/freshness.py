"""
Candidate normalization and recency filtering for monitor runs.

Search engines report dates either absolutely ("06/18/2024, 07:00 AM, +0000 UTC",
"Jun 18, 2024", ISO-8601) or relative to the fetch ("3 hours ago"). Both are
turned into epoch milliseconds; items whose date cannot be parsed keep
``timestamp_ms=None`` and are never disqualified on time alone.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..models.core import MonitorItem
from ..utils.logging_config import get_logger
from .dedup import item_fingerprint

logger = get_logger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

UNIT_MS = {
    'minute': MINUTE_MS,
    'hour': HOUR_MS,
    'day': DAY_MS,
    'week': 7 * DAY_MS,
    'month': 30 * DAY_MS,
    'year': 365 * DAY_MS,
}

UNIT_ALIASES = {
    'm': 'minute', 'min': 'minute', 'mins': 'minute', 'minute': 'minute', 'minutes': 'minute',
    'h': 'hour', 'hr': 'hour', 'hrs': 'hour', 'hour': 'hour', 'hours': 'hour',
    'd': 'day', 'day': 'day', 'days': 'day',
    'w': 'week', 'wk': 'week', 'wks': 'week', 'week': 'week', 'weeks': 'week',
    'mo': 'month', 'month': 'month', 'months': 'month',
    'y': 'year', 'yr': 'year', 'yrs': 'year', 'year': 'year', 'years': 'year',
}

_RELATIVE = re.compile(r'^(\d+|an?|one)\s*([a-z]+)\.?\s+ago$')

ABSOLUTE_FORMATS = (
    '%m/%d/%Y, %I:%M %p, %z',  # SerpAPI google_news
    '%a, %d %b %Y %H:%M:%S %z',  # RFC 822
    '%a, %d %b %Y %H:%M:%S',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d',
    '%m/%d/%Y',
    '%b %d, %Y',
    '%B %d, %Y',
    '%d %b %Y',
    '%d %B %Y',
)

TITLE_FIELDS = ('title', 'name', 'headline')
LINK_FIELDS = ('link', 'url', 'redirect_link')
DATE_FIELDS = ('iso_date', 'date', 'date_ago', 'published_date', 'published', 'time')


def _text(value: Any) -> str:
    """Flatten the string/number/object shapes SerpAPI uses for scalar fields."""
    if value is None:
        return ''
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        for key in ('name', 'publisher', 'text', 'title'):
            if value.get(key):
                return str(value[key]).strip()
    return ''


def _first(raw: Dict[str, Any], fields: Iterable[str]) -> str:
    for field in fields:
        value = _text(raw.get(field))
        if value:
            return value
    return ''


def _epoch_to_ms(number: float) -> Optional[int]:
    if number <= 0:
        return None
    # Seconds vs. milliseconds
    return int(number if number > 1e11 else number * 1000)


def parse_relative(value: str, now_ms: int) -> Optional[int]:
    """Parse '3 hours ago', 'an hour ago', '2d ago', 'yesterday' against now."""
    phrase = ' '.join(value.strip().lower().split())
    if phrase in ('just now', 'now', 'today'):
        return now_ms
    if phrase == 'yesterday':
        return now_ms - DAY_MS

    match = _RELATIVE.match(phrase)
    if not match:
        return None
    amount, unit = match.groups()
    unit = UNIT_ALIASES.get(unit)
    if unit is None:
        return None
    count = 1 if amount in ('a', 'an', 'one') else int(amount)
    return now_ms - count * UNIT_MS[unit]


def parse_absolute(value: str) -> Optional[int]:
    """Parse an absolute date string; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith(' UTC'):
        text = text[:-4]

    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        for fmt in ABSOLUTE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def parse_timestamp(value: Any, now_ms: int) -> Tuple[Optional[int], str]:
    """Parse an item date.

    Returns:
        (timestamp_ms or None, date_token). The date token feeds the item
        fingerprint: it is the UTC calendar day for absolute dates and empty for
        relative ones, whose text drifts between fetches.
    """
    if value is None or value == '':
        return None, ''
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _dated(_epoch_to_ms, float(value), str(value))

    text = _text(value)
    if not text:
        return None, ''
    if re.fullmatch(r'\d{9,13}(\.\d+)?', text):
        return _dated(_epoch_to_ms, float(text), text)

    if parse_relative(text, now_ms) is not None:
        return _dated(parse_relative, text, text, now_ms=now_ms)

    return _dated(parse_absolute, text, text)


def _dated(parse, value: Any, text: str, now_ms: Optional[int] = None) -> Tuple[Optional[int], str]:
    """Apply ``parse`` and derive the day token; out-of-range dates leave the item undated.

    Relative dates (``now_ms`` given) get an empty token.
    """
    try:
        millis = parse(value) if now_ms is None else parse(value, now_ms)
        if millis is None:
            return None, text
        token = _day_token(millis)
        return millis, ('' if now_ms is not None else token)
    except (OverflowError, OSError, ValueError) as e:
        logger.debug(f'Ignoring out-of-range date {text!r}: {e}')
        return None, text


def _day_token(millis: Optional[int]) -> str:
    if millis is None:
        return ''
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).strftime('%Y-%m-%d')


def normalize_item(engine: str, raw: Dict[str, Any], now_ms: int) -> Optional[MonitorItem]:
    """Reduce one engine result to a MonitorItem; None if it has neither title nor link."""
    title = _first(raw, TITLE_FIELDS)
    link = _first(raw, LINK_FIELDS)
    if not title and not link:
        return None

    timestamp_ms, date_token = None, ''
    for field in DATE_FIELDS:
        if raw.get(field) not in (None, ''):
            timestamp_ms, date_token = parse_timestamp(raw.get(field), now_ms)
            if timestamp_ms is not None:
                break

    return MonitorItem(key=item_fingerprint(engine, link, title, date_token),
                       title=title or link,
                       link=link,
                       timestamp_ms=timestamp_ms,
                       source=_first(raw, ('source', 'displayed_link', 'channel', 'author')),
                       snippet=_first(raw, ('snippet', 'description')))


def normalize_items(engine: str, raw_items: Iterable[Dict[str, Any]], now_ms: int) -> List[MonitorItem]:
    """Normalize a batch, keeping the first occurrence of each fingerprint."""
    items = {}
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        item = normalize_item(engine, raw, now_ms)
        if item is not None and item.key not in items:
            items[item.key] = item
    return list(items.values())


def is_fresh_by_time(item: MonitorItem, threshold_ms: int) -> bool:
    return item.timestamp_ms is None or item.timestamp_ms > threshold_ms


def freshest(items: Iterable[MonitorItem], limit: int) -> List[MonitorItem]:
    """Newest dated items first, undated ones after in their original order."""
    ordered = sorted(items, key=lambda item: (item.timestamp_ms is None, -(item.timestamp_ms or 0)))
    return ordered[:max(limit, 0)]
