from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import List, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from revenue_ingest.api.schemas import DateRange
from revenue_ingest.ingest.pipeline.errors import InvalidDateRangeError


def resolve_timezone(tz: str | ZoneInfo) -> ZoneInfo:
    if isinstance(tz, ZoneInfo):
        return tz
    try:
        return ZoneInfo(str(tz))
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidDateRangeError(f"unknown timezone: {tz!r}") from e


def _month_start(year: int, month: int, zone: ZoneInfo) -> datetime:
    return datetime(year, month, 1, tzinfo=zone)


def month_date_range(tz: str | ZoneInfo, year: int, month: int) -> DateRange:
    """
    Calendar-month bounds in tz: first instant of day 1 to the last microsecond
    of the month. month is 1-based.
    """
    if not 1 <= month <= 12:
        raise InvalidDateRangeError(f"month must be 1..12, got {month}")
    if not 1970 <= year <= 9999:
        raise InvalidDateRangeError(f"year out of range: {year}")
    zone = resolve_timezone(tz)
    start = _month_start(year, month, zone)
    if month == 12:
        next_start = _month_start(year + 1, 1, zone) if year < 9999 else None
    else:
        next_start = _month_start(year, month + 1, zone)
    if next_start is None:
        end = datetime(9999, 12, 31, 23, 59, 59, 999999, tzinfo=zone)
    else:
        # wall-clock arithmetic; aware datetimes in the same zone subtract naively
        end = next_start - timedelta(microseconds=1)
    return DateRange(start_date=start, end_date=end)


def current_month_date_range(tz: str | ZoneInfo, now: datetime | None = None) -> DateRange:
    zone = resolve_timezone(tz)
    now = (now or datetime.now(timezone.utc)).astimezone(zone)
    return month_date_range(zone, now.year, now.month)


def local_day(epoch_seconds: int, zone: ZoneInfo) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=zone).date().isoformat()


def iter_days(date_range: DateRange, tz: str | ZoneInfo) -> List[str]:
    """Every calendar day (YYYY-MM-DD) touched by the range in tz, ascending."""
    zone = resolve_timezone(tz)
    first: date = date_range.start_date.astimezone(zone).date()
    last: date = date_range.end_date.astimezone(zone).date()
    days: List[str] = []
    d = first
    while d <= last:
        days.append(d.isoformat())
        d += timedelta(days=1)
    return days


def split_date_range(date_range: DateRange, slices: int) -> List[Tuple[int, int]]:
    """
    Partition [start_ts, end_ts] (inclusive epoch seconds) into contiguous,
    non-overlapping slices of near-equal width. Widths differ by at most 1s.
    """
    if slices < 1:
        raise InvalidDateRangeError(f"slices must be >= 1, got {slices}")
    lo, hi = date_range.start_ts, date_range.end_ts
    total = hi - lo + 1
    n = min(slices, total)
    bounds = [lo + (total * i) // n for i in range(n + 1)]
    return [(bounds[i], bounds[i + 1] - 1) for i in range(n)]
