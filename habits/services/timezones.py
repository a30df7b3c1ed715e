"""
Timezone-aware day boundaries.

All "what day is it" decisions go through a date key: a ``YYYY-MM-DD``
string for the calendar day an instant falls on in the user's zone.
"""
import re
from datetime import date, datetime, timedelta
from datetime import timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.utils import timezone

from habits.exceptions import InvalidDateKey

FALLBACK_TIME_ZONE = "UTC"

DATE_KEY_RE = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)


def normalize_time_zone(raw: Optional[str]) -> str:
    """Return ``raw`` if it names a loadable IANA zone, otherwise ``"UTC"``."""
    if not raw or not isinstance(raw, str):
        return FALLBACK_TIME_ZONE
    try:
        ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return FALLBACK_TIME_ZONE
    return raw


def date_key(instant: datetime, time_zone: str = FALLBACK_TIME_ZONE) -> str:
    if timezone.is_naive(instant):
        instant = instant.replace(tzinfo=dt_timezone.utc)
    local = timezone.localtime(instant, ZoneInfo(normalize_time_zone(time_zone)))
    return local.date().isoformat()


def today_key(time_zone: str = FALLBACK_TIME_ZONE, now: Optional[datetime] = None) -> str:
    return date_key(now or timezone.now(), time_zone)


def yesterday_key(time_zone: str = FALLBACK_TIME_ZONE, now: Optional[datetime] = None) -> str:
    # Exactly 24 hours back, then projected into the zone. Across a DST
    # transition this can land two calendar days back.
    return date_key((now or timezone.now()) - timedelta(hours=24), time_zone)


def days_ago_key(days: int, time_zone: str = FALLBACK_TIME_ZONE, now: Optional[datetime] = None) -> str:
    return date_key((now or timezone.now()) - timedelta(days=days), time_zone)


def is_date_key(value) -> bool:
    if not isinstance(value, str) or not DATE_KEY_RE.fullmatch(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def parse_date_key(value) -> date:
    if not is_date_key(value):
        raise InvalidDateKey(f"Invalid date {value!r}: must be in YYYY-MM-DD format")
    return date.fromisoformat(value)


def previous_date_key(key: str) -> str:
    """Calendar day before ``key`` (no clock arithmetic involved)."""
    return (parse_date_key(key) - timedelta(days=1)).isoformat()


def days_between(start_key: str, end_key: str) -> int:
    return (parse_date_key(end_key) - parse_date_key(start_key)).days
