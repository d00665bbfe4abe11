"""
Date-range presets used by the dashboard's period filter.

Preset → range (all ranges end at the end of the current day unless noted):
  today       today 00:00 → today 23:59:59.999999
  yesterday   yesterday 00:00 → yesterday 23:59:59.999999
  last7days   today - 7 days (likewise last14days / last30days / last90days)
  mtd         1st of this month
  lastmonth   1st of last month → last day of last month, end of day
  ytd         Jan 1 of this year
  custom      the supplied range (no range → no filtering)
  all         no filtering (None)

Video filtering uses the upload timestamp only, with INCLUSIVE bounds.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from models.schemas import DateRange, VideoMetric
from services.intervals import comparable_datetime

logger = logging.getLogger(__name__)

ROLLING_WINDOWS = {
    "last7days": 7,
    "last14days": 14,
    "last30days": 30,
    "last90days": 90,
}

DATE_FILTER_TYPES: tuple[str, ...] = (
    "today", "yesterday", *ROLLING_WINDOWS, "mtd", "lastmonth", "ytd", "custom", "all",
)

_END_OF_DAY = timedelta(days=1) - timedelta(microseconds=1)


def get_date_range(
    filter_type: str,
    custom_range: Optional[DateRange] = None,
    now: Optional[datetime] = None,
) -> Optional[DateRange]:
    """
    Resolve a preset name to a concrete DateRange.

    Args:
        filter_type:  One of DATE_FILTER_TYPES
        custom_range: Used when filter_type == "custom"
        now:          Reference time (defaults to datetime.now())

    Returns:
        DateRange, or None when no filtering applies ("all", or "custom"
        without a range)

    Raises:
        ValueError: unknown preset
    """
    if filter_type not in DATE_FILTER_TYPES:
        raise ValueError(
            f"Unknown date filter '{filter_type}', expected one of {', '.join(DATE_FILTER_TYPES)}"
        )

    if filter_type == "all":
        return None
    if filter_type == "custom":
        return custom_range

    now = now or datetime.now()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end_of_today = today + _END_OF_DAY

    if filter_type == "today":
        return DateRange(start_date=today, end_date=end_of_today)

    if filter_type == "yesterday":
        yesterday = today - timedelta(days=1)
        return DateRange(start_date=yesterday, end_date=yesterday + _END_OF_DAY)

    if filter_type in ROLLING_WINDOWS:
        return DateRange(
            start_date=today - timedelta(days=ROLLING_WINDOWS[filter_type]),
            end_date=end_of_today,
        )

    if filter_type == "mtd":
        return DateRange(start_date=today.replace(day=1), end_date=end_of_today)

    if filter_type == "lastmonth":
        this_month_start = today.replace(day=1)
        last_month_end = this_month_start - timedelta(days=1)
        return DateRange(
            start_date=last_month_end.replace(day=1),
            end_date=last_month_end + _END_OF_DAY,
        )

    # ytd
    return DateRange(start_date=today.replace(month=1, day=1), end_date=end_of_today)


def filter_videos_by_date_range(
    videos: list[VideoMetric],
    date_range: Optional[DateRange],
) -> list[VideoMetric]:
    """
    Keep videos uploaded within [start_date, end_date] (inclusive).

    No range → all videos. Videos with no upload timestamp cannot be placed
    in a period and are excluded whenever a range is active.
    """
    if date_range is None:
        return list(videos)

    kept: list[VideoMetric] = []
    for video in videos:
        if video.upload_timestamp is None:
            logger.debug(f"Date filter: {video.dedup_key} has no upload time, excluded")
            continue
        uploaded = comparable_datetime(video.upload_timestamp, date_range.start_date)
        if date_range.start_date <= uploaded <= date_range.end_date:
            kept.append(video)

    logger.debug(
        f"Date filter {date_range.start_date.isoformat()} → {date_range.end_date.isoformat()}: "
        f"{len(kept)}/{len(videos)} video(s) kept"
    )
    return kept
