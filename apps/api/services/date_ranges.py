"""
Reporting windows and timeline buckets.

Every stats-bearing endpoint resolves its ``period`` through
``resolve_window`` so that "month" means the same thing everywhere:

    week     now - 7 days
    month    00:00 UTC on the first day of the current calendar month
    quarter  now - 3 calendar months
    year     now - 1 calendar year

The window always ends at ``now``.
"""
import calendar
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional, Tuple

GRANULARITIES = ("day", "week", "month")


def add_months(value: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def resolve_window(period: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Return the (start, end) datetimes, both UTC, for a reporting period.

    The window is closed: queries filter ``start <= ts <= end``.
    """
    end = now or datetime.now(timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)

    if period == "week":
        start = end - timedelta(days=7)
    elif period == "month":
        start = end.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    elif period == "quarter":
        start = add_months(end, -3)
    elif period == "year":
        start = add_months(end, -12)
    else:
        raise ValueError(f"Unknown period: {period}")

    return start, end


def iter_buckets(start: datetime, end: datetime, granularity: str) -> Iterator[Tuple[datetime, datetime]]:
    """
    Yield consecutive [bucket_start, bucket_end) pairs covering [start, end).

    Buckets are anchored at ``start``; the last one may run past ``end``.
    Month buckets are computed from the anchor so day clamping never drifts.
    """
    if granularity not in GRANULARITIES:
        raise ValueError(f"Unknown granularity: {granularity}")

    index = 0
    cursor = start
    while cursor < end:
        if granularity == "day":
            nxt = start + timedelta(days=index + 1)
        elif granularity == "week":
            nxt = start + timedelta(days=7 * (index + 1))
        else:
            nxt = add_months(start, index + 1)
        yield cursor, nxt
        cursor = nxt
        index += 1
