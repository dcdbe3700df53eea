"""
Datetime utilities for CRM sync services.
"""
import calendar
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now() -> datetime:
    """Current time as an aware UTC datetime. Default clock for stores and importers."""
    return datetime.now(timezone.utc)


def to_storage(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for SQLite (UTC ISO-8601 so text ordering matches time ordering)."""
    if dt is None:
        return None
    return make_aware(dt).astimezone(timezone.utc).isoformat()


def from_storage(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware datetime."""
    if not value:
        return None
    return make_aware(datetime.fromisoformat(value))


def months_before(dt: datetime, months: int) -> datetime:
    """
    Subtract calendar months, clamping the day to the target month's length.

    months_before(2024-08-31, 6) -> 2024-02-29
    """
    month_index = dt.year * 12 + (dt.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def parse_rfc3339(value: Optional[str]) -> Optional[datetime]:
    """Parse a Google API RFC 3339 timestamp (e.g. 2024-01-15T10:00:00Z)."""
    if not value:
        return None
    return make_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))


# Trailing zone comment some mailers append, e.g. "... -0800 (PST)"
_TZ_COMMENT = re.compile(r"\s*\([^)]*\)\s*$")


def parse_email_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an RFC 2822 Date header.

    Returns None when the header is missing or unparseable so the caller
    can fall back to the message's internal date.
    """
    if not value:
        return None
    cleaned = _TZ_COMMENT.sub("", value.strip())
    try:
        return make_aware(parsedate_to_datetime(cleaned))
    except (TypeError, ValueError):
        return None


def format_time_since(then: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Human readable age, e.g. 'just now', '5 minutes ago', '2 days ago'."""
    if then is None:
        return "never"
    now = now or utc_now()
    delta = now - make_aware(then)

    if delta < timedelta(minutes=1):
        return "just now"
    if delta < timedelta(hours=1):
        minutes = int(delta.total_seconds() // 60)
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    if delta < timedelta(days=1):
        hours = int(delta.total_seconds() // 3600)
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    days = delta.days
    return "1 day ago" if days == 1 else f"{days} days ago"
