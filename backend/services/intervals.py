"""
Time-bucketed aggregation — date range + granularity → chart intervals.

Bucket rules:
  - The first bucket starts at the granularity-aligned floor of start_date
      day   → midnight
      week  → midnight of the most recent week-start day (Sunday by default)
      month → midnight on the 1st
      year  → midnight on Jan 1
  - Each bucket is exactly one unit long (1 day / 7 days / calendar month /
    calendar year) and half-open: [start_date, end_date)
  - Buckets are contiguous: intervals[i].end_date == intervals[i + 1].start_date
  - Generation stops once the cursor reaches or passes the range end, so the
    last bucket may run past end_date by less than one unit
  - end_date < start_date → no buckets (not an error)

Datetimes are handled as given (naive or timezone-aware); calendar steps are
wall-clock steps, so a DST-shortened day is still one "day" bucket.
"""

import logging
from bisect import bisect_right
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, TypeVar, Union

import config
from models.schemas import (
    GRANULARITIES,
    ENGAGEMENT_METRICS,
    DateRange,
    Interval,
    IntervalTotal,
    VideoMetric,
    comparable_datetime,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Label constants
# ---------------------------------------------------------------------------
MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
FULL_MONTH_NAMES = ["January", "February", "March", "April", "May", "June", "July",
                    "August", "September", "October", "November", "December"]


# ===========================================================================
# Public API
# ===========================================================================

def generate_intervals(
    date_range: DateRange,
    granularity: str,
    week_start_day: Optional[int] = None,
) -> list[Interval]:
    """
    Slice a date range into an ordered, gap-free sequence of buckets.

    Args:
        date_range:     Range to cover (start inclusive, end exclusive)
        granularity:    "day", "week", "month" or "year"
        week_start_day: 0=Sunday … 6=Saturday; defaults to config.WEEK_START_DAY

    Returns:
        list[Interval], identical for identical input.

    Raises:
        ValueError: unknown granularity
    """
    _check_granularity(granularity)

    start = date_range.start_date
    end = date_range.end_date
    if end < start:
        logger.debug(f"Empty interval range: end {end} is before start {start}")
        return []

    intervals: list[Interval] = []
    cursor = normalize_to_interval_start(start, granularity, week_start_day)

    while cursor < end:
        next_cursor = _advance(cursor, granularity)
        intervals.append(Interval(
            start_date=cursor,
            end_date=next_cursor,
            label=format_label(cursor, granularity),
            timestamp=_epoch_ms(cursor),
            granularity=granularity,
        ))
        cursor = next_cursor

    logger.debug(
        f"Generated {len(intervals)} {granularity} interval(s) "
        f"for {start.isoformat()} → {end.isoformat()}"
    )
    return intervals


def is_in_range(timestamp: datetime, interval: Interval) -> bool:
    """Half-open membership test: start_date <= timestamp < end_date."""
    moment = comparable_datetime(timestamp, interval.start_date)
    return interval.start_date <= moment < interval.end_date


def find_interval_for_date(
    timestamp: datetime,
    intervals: list[Interval],
) -> Optional[Interval]:
    """Bucket containing timestamp, or None if it falls outside every bucket."""
    if not intervals:
        return None
    moment = comparable_datetime(timestamp, intervals[0].start_date)
    starts = [interval.start_date for interval in intervals]
    index = bisect_right(starts, moment) - 1
    if index < 0:
        return None
    candidate = intervals[index]
    return candidate if is_in_range(moment, candidate) else None


def bucket_records(
    records: Iterable[T],
    intervals: list[Interval],
    get_timestamp: Callable[[T], Optional[datetime]],
) -> list[tuple[Interval, list[T]]]:
    """
    Assign arbitrary timestamped records to their buckets.

    Every bucket is present in the output (possibly with no records), in
    interval order. Records without a timestamp or outside every bucket are
    dropped.
    """
    buckets: dict[int, list[T]] = {interval.timestamp: [] for interval in intervals}
    dropped = 0

    for record in records:
        moment = get_timestamp(record)
        interval = find_interval_for_date(moment, intervals) if moment is not None else None
        if interval is None:
            dropped += 1
            continue
        buckets[interval.timestamp].append(record)

    if dropped:
        logger.debug(f"bucket_records: {dropped} record(s) outside all intervals")

    return [(interval, buckets[interval.timestamp]) for interval in intervals]


def sum_by_interval(
    videos: list[VideoMetric],
    intervals: list[Interval],
    metric: str = "views",
) -> list[IntervalTotal]:
    """
    Chart series: total of one engagement metric per bucket, keyed by upload time.

    Raises:
        ValueError: unknown metric
    """
    if metric not in ENGAGEMENT_METRICS:
        raise ValueError(
            f"Unknown metric '{metric}', expected one of {', '.join(ENGAGEMENT_METRICS)}"
        )

    totals: list[IntervalTotal] = []
    for interval, bucket in bucket_records(videos, intervals, lambda v: v.upload_timestamp):
        totals.append(IntervalTotal(
            interval=interval,
            value=sum(getattr(v, metric) for v in bucket),
            video_count=len(bucket),
        ))
    return totals


# ===========================================================================
# Alignment + stepping
# ===========================================================================

def normalize_to_interval_start(
    moment: datetime,
    granularity: str,
    week_start_day: Optional[int] = None,
) -> datetime:
    """Floor a datetime to the start of its day / week / month / year."""
    _check_granularity(granularity)
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)

    if granularity == "day":
        return midnight
    if granularity == "week":
        if week_start_day is None:
            week_start_day = config.WEEK_START_DAY
        # Python weekday(): Monday=0 … Sunday=6; here Sunday=0 … Saturday=6
        day_index = (midnight.weekday() + 1) % 7
        return midnight - timedelta(days=(day_index - week_start_day) % 7)
    if granularity == "month":
        return midnight.replace(day=1)
    return midnight.replace(month=1, day=1)


def _advance(cursor: datetime, granularity: str) -> datetime:
    """Step an aligned cursor forward by exactly one unit."""
    if granularity == "day":
        return cursor + timedelta(days=1)
    if granularity == "week":
        return cursor + timedelta(days=7)
    if granularity == "month":
        if cursor.month == 12:
            return cursor.replace(year=cursor.year + 1, month=1)
        return cursor.replace(month=cursor.month + 1)
    return cursor.replace(year=cursor.year + 1)


def _check_granularity(granularity: str) -> None:
    if granularity not in GRANULARITIES:
        raise ValueError(
            f"Unknown granularity '{granularity}', expected one of {', '.join(GRANULARITIES)}"
        )


# ===========================================================================
# Labels
# ===========================================================================

def format_label(value: Union[Interval, datetime], granularity: Optional[str] = None) -> str:
    """
    Short chart label for a bucket.

      day   → "Jan 5"
      week  → "Jan 5-Jan 11"
      month → "January 2026"
      year  → "2026"
    """
    start, granularity = _label_args(value, granularity)

    if granularity == "day":
        return f"{MONTH_NAMES[start.month - 1]} {start.day}"
    if granularity == "week":
        week_end = start + timedelta(days=6)
        return (
            f"{MONTH_NAMES[start.month - 1]} {start.day}-"
            f"{MONTH_NAMES[week_end.month - 1]} {week_end.day}"
        )
    if granularity == "month":
        return f"{FULL_MONTH_NAMES[start.month - 1]} {start.year}"
    return f"{start.year}"


def format_label_full(value: Union[Interval, datetime], granularity: Optional[str] = None) -> str:
    """
    Tooltip label with ordinals.

      day   → "Jan 5th, 2026"
      week  → "Jan 5th - 11th, 2026" / "Jan 29th - Feb 4th, 2026"
      month → "Jan 2026"
      year  → "2026"
    """
    start, granularity = _label_args(value, granularity)
    month = MONTH_NAMES[start.month - 1]

    if granularity == "day":
        return f"{month} {_ordinal(start.day)}, {start.year}"
    if granularity == "week":
        week_end = start + timedelta(days=6)
        if week_end.month == start.month:
            return f"{month} {_ordinal(start.day)} - {_ordinal(week_end.day)}, {start.year}"
        return (
            f"{month} {_ordinal(start.day)} - "
            f"{MONTH_NAMES[week_end.month - 1]} {_ordinal(week_end.day)}, {start.year}"
        )
    if granularity == "month":
        return f"{month} {start.year}"
    return f"{start.year}"


def _label_args(value: Union[Interval, datetime], granularity: Optional[str]) -> tuple[datetime, str]:
    if isinstance(value, Interval):
        start = value.start_date
        granularity = granularity or value.granularity
    else:
        start = value
    if granularity is None:
        raise ValueError("granularity is required when labelling a bare datetime")
    _check_granularity(granularity)
    return start, granularity


def _ordinal(day: int) -> str:
    if 11 <= day <= 13:
        return f"{day}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


# ===========================================================================
# Datetime helpers
# ===========================================================================

def _epoch_ms(moment: datetime) -> int:
    """Epoch milliseconds; naive datetimes are read as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)
