"""
Metrics period resolution.

Maps a MetricsPeriod selector to concrete UTC time windows. All timestamps
handled here use the canonical form written by the event store
(``YYYY-MM-DDTHH:MM:SS.mmmZ``) so that windows can be compared with event
timestamps as plain strings.
"""

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple, Union


class MetricsPeriod(str, Enum):
    """Window selectors accepted by every metrics computer."""
    TODAY = "today"
    LAST_24H = "24h"
    LAST_3D = "3d"
    LAST_7D = "7d"
    LAST_30D = "30d"
    LAST_3M = "3m"
    LAST_6M = "6m"
    LAST_12M = "12m"
    WEEK_TO_DATE = "wtd"
    MONTH_TO_DATE = "mtd"
    YEAR_TO_DATE = "ytd"
    ALL = "all"
    CUSTOM = "custom"


PeriodLike = Union[MetricsPeriod, str]

# Rolling windows measured back from "now"
FIXED_WINDOWS = {
    MetricsPeriod.LAST_24H: timedelta(hours=24),
    MetricsPeriod.LAST_3D: timedelta(days=3),
    MetricsPeriod.LAST_7D: timedelta(days=7),
    MetricsPeriod.LAST_30D: timedelta(days=30),
    MetricsPeriod.LAST_3M: timedelta(days=90),
    MetricsPeriod.LAST_6M: timedelta(days=180),
    MetricsPeriod.LAST_12M: timedelta(days=365),
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def coerce_period(period: PeriodLike) -> MetricsPeriod:
    """Convert a string selector into a MetricsPeriod.

    Raises:
        ValueError: If the selector is unknown
    """
    if isinstance(period, MetricsPeriod):
        return period
    try:
        return MetricsPeriod(period)
    except ValueError:
        valid = [p.value for p in MetricsPeriod]
        raise ValueError(f"Unknown metrics period '{period}', expected one of: {valid}")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as a canonical UTC timestamp with millisecond precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 date or instant into an aware UTC datetime.

    Naive values are taken to be UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 date or datetime
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if len(text) == 10:
        parsed = datetime.combine(date.fromisoformat(text), time.min)
    else:
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: Union[str, datetime]) -> str:
    """Normalize a caller-supplied bound into canonical timestamp form."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    return format_timestamp(parse_timestamp(value))


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _period_start_datetime(
    period: MetricsPeriod,
    now: datetime,
    start: Optional[Union[str, datetime]] = None,
) -> datetime:
    if period in FIXED_WINDOWS:
        return now - FIXED_WINDOWS[period]
    if period == MetricsPeriod.TODAY:
        return _start_of_day(now)
    if period == MetricsPeriod.WEEK_TO_DATE:
        return _start_of_day(now) - timedelta(days=now.weekday())
    if period == MetricsPeriod.MONTH_TO_DATE:
        return _start_of_day(now).replace(day=1)
    if period == MetricsPeriod.YEAR_TO_DATE:
        return _start_of_day(now).replace(month=1, day=1)
    if period == MetricsPeriod.ALL:
        return EPOCH
    # custom
    if start is None:
        raise ValueError("custom period requires an explicit start")
    if isinstance(start, datetime):
        return start.astimezone(timezone.utc) if start.tzinfo else start.replace(tzinfo=timezone.utc)
    return parse_timestamp(start)


def period_start(
    period: PeriodLike,
    now: Optional[datetime] = None,
    start: Optional[Union[str, datetime]] = None,
) -> str:
    """Return the canonical timestamp at which a period begins.

    Args:
        period: Period selector
        now: Reference time (defaults to the current UTC time)
        start: Explicit lower bound, required for the custom period

    Returns:
        Canonical UTC timestamp string

    Raises:
        ValueError: If the period is unknown, or custom without a start
    """
    resolved = coerce_period(period)
    return format_timestamp(_period_start_datetime(resolved, now or utc_now(), start))


def resolve_window(
    period: PeriodLike,
    start: Optional[Union[str, datetime]] = None,
    end: Optional[Union[str, datetime]] = None,
    now: Optional[datetime] = None,
) -> Tuple[str, Optional[str]]:
    """Resolve a period and optional bounds into a (since, until) pair.

    ``start`` is only consulted for the custom period. ``end`` applies to
    every period; None means unbounded.
    """
    since = period_start(period, now=now, start=start)
    until = normalize_timestamp(end) if end is not None else None
    return since, until


def previous_period_range(
    period: PeriodLike,
    now: Optional[datetime] = None,
    start: Optional[Union[str, datetime]] = None,
    end: Optional[Union[str, datetime]] = None,
) -> Tuple[str, str]:
    """Return the window of equal length immediately preceding the period.

    Args:
        period: Period selector
        now: Reference time (defaults to the current UTC time)
        start: Explicit lower bound for the custom period
        end: Explicit upper bound for the current window (defaults to now)

    Returns:
        (since, until) canonical timestamps of the previous window
    """
    resolved = coerce_period(period)
    reference = now or utc_now()
    current_start = _period_start_datetime(resolved, reference, start)
    current_end = parse_timestamp(end) if isinstance(end, str) else (end or reference)
    length = current_end - current_start
    previous_start = max(current_start - length, EPOCH)
    return format_timestamp(previous_start), format_timestamp(current_start)


def days_in_window(since: str, until: Optional[str] = None, now: Optional[datetime] = None) -> list:
    """List every UTC date (YYYY-MM-DD) from since through until (or now)."""
    first = parse_timestamp(since).date()
    last = parse_timestamp(until).date() if until else (now or utc_now()).date()
    days = []
    current = first
    while current <= last:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days
