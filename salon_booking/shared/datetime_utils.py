"""
Time and normalization helpers

Every instant leaving this module is timezone-aware. Inputs without an offset
are interpreted in the salon's timezone.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import DEFAULT_TIMEZONE
from ..domain.scheduling.errors import InvalidDateError

# Portuguese day names, index 0 = Sunday
DAY_NAMES = ["Domingo", "Segunda", "Terça", "Quarta", "Quinta", "Sexta", "Sábado"]

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LOCAL_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?$")
_OFFSET_DATETIME = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?(Z|[+-]\d{2}:\d{2})$"
)

# Date-only inputs are booked at the start of a business day
DATE_ONLY_DEFAULT_TIME = time(9, 0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def normalize_instant(value: Union[str, datetime, None], tz_name: Optional[str] = None) -> datetime:
    """
    Convert caller input into an aware instant.

    Accepted:
        - aware datetime (kept), naive datetime (salon timezone assumed)
        - "2026-03-02T10:00:00-03:00" / "...Z" (kept)
        - "2026-03-02T10:00[:00]" (salon timezone assumed)
        - "2026-03-02" (09:00 in the salon timezone)

    Raises:
        InvalidDateError: for anything else, including DD/MM/YYYY style input
    """
    zone = get_zone(tz_name)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=zone)
        return value

    if not isinstance(value, str) or not value.strip():
        raise InvalidDateError(value)

    raw = value.strip()
    try:
        if _OFFSET_DATETIME.match(raw):
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        if _LOCAL_DATETIME.match(raw):
            return datetime.fromisoformat(raw).replace(tzinfo=zone)
        if _DATE_ONLY.match(raw):
            return datetime.combine(date.fromisoformat(raw), DATE_ONLY_DEFAULT_TIME, tzinfo=zone)
    except ValueError as e:
        # Shape was right but the calendar values were not (e.g. 2026-02-30)
        raise InvalidDateError(value) from e

    raise InvalidDateError(value)


def parse_local_date(value: Union[str, date, datetime, None], tz_name: Optional[str] = None) -> date:
    """Resolve a calendar date in the salon timezone"""
    if isinstance(value, datetime):
        return normalize_instant(value, tz_name).astimezone(get_zone(tz_name)).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _DATE_ONLY.match(value.strip()):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as e:
            raise InvalidDateError(value) from e
    return normalize_instant(value, tz_name).astimezone(get_zone(tz_name)).date()


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def day_name(dow: int) -> str:
    return DAY_NAMES[dow]


def combine_local(day: date, at: time, tz_name: Optional[str] = None) -> datetime:
    return datetime.combine(day, at, tzinfo=get_zone(tz_name))


def local_day_bounds(day: date, tz_name: Optional[str] = None) -> tuple[datetime, datetime]:
    start = combine_local(day, time(0, 0), tz_name)
    return start, combine_local(day + timedelta(days=1), time(0, 0), tz_name)


def today_local(tz_name: Optional[str] = None) -> date:
    return utcnow().astimezone(get_zone(tz_name)).date()


def parse_hhmm(value: str) -> time:
    """Parse "HH:MM" as stored in salon work hours"""
    try:
        hours, minutes = value.strip().split(":")[:2]
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError) as e:
        raise InvalidDateError(value) from e


def to_iso(instant: datetime, tz_name: Optional[str] = None) -> str:
    """ISO-8601 with explicit offset, rendered in the salon timezone"""
    return instant.astimezone(get_zone(tz_name)).isoformat()
