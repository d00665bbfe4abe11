"""
Hour-of-week heatmap aggregation.

Builds a 24 × 7 grid (rows = hour 0–23, columns = weekday 0–6, Sunday = 0)
from timestamped engagement records:

  1. Resolve each record's local hour + weekday (shifted into `timezone` if given)
  2. matrix[hour][weekday] += record.<metric>
  3. Cell metadata:
       metric_total  : same running sum as the matrix
       count_videos  : number of child videos folded in
       videos        : top 3 child videos by views (desc), title as tie-break
       range         : one-hour window of the LAST record folded in
  4. global_min / global_max over NON-ZERO cells only (0 / 0 if the grid is empty)

Intensity for rendering = (value - global_min) / (global_max - global_min),
clamped to [0, 1] and defined as 0 when global_max == global_min.
"""

import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.schemas import (
    ENGAGEMENT_METRICS,
    HeatmapCell,
    HeatmapResult,
    HeatmapVideo,
    HourRange,
    HourStat,
    VideoMetric,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
HOURS_PER_DAY = 24
DAYS_PER_WEEK = 7
TOP_VIDEOS_PER_CELL = 3

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
SHORT_DAY_NAMES = ["S", "M", "T", "W", "T", "F", "S"]


# ===========================================================================
# Public API
# ===========================================================================

def aggregate(
    records: list[HourStat],
    metric: str = "views",
    timezone: Optional[str] = None,
) -> HeatmapResult:
    """
    Fold timestamped records into the hour-of-week matrix.

    Args:
        records:  HourStat records (one per post / per hourly sample)
        metric:   "views", "likes", "comments" or "shares"
        timezone: IANA name (e.g. "America/New_York"); None keeps each
                  timestamp's own wall-clock time

    Returns:
        HeatmapResult with matrix, cells, global_min, global_max

    Raises:
        ValueError: unknown metric or timezone
    """
    if metric not in ENGAGEMENT_METRICS:
        raise ValueError(
            f"Unknown metric '{metric}', expected one of {', '.join(ENGAGEMENT_METRICS)}"
        )
    zone = _resolve_zone(timezone)

    matrix = [[0] * DAYS_PER_WEEK for _ in range(HOURS_PER_DAY)]
    cells = [[HeatmapCell() for _ in range(DAYS_PER_WEEK)] for _ in range(HOURS_PER_DAY)]

    for record in records:
        local = _to_local(record.timestamp, zone)
        hour = local.hour
        weekday = weekday_index(local)
        value = getattr(record, metric)

        matrix[hour][weekday] += value

        cell = cells[hour][weekday]
        cell.metric_total += value
        cell.count_videos += len(record.videos)

        if record.videos:
            ranked = sorted(
                cell.videos + list(record.videos),
                key=lambda v: (-v.views, v.title),
            )
            cell.videos = ranked[:TOP_VIDEOS_PER_CELL]

        window_start = local.replace(minute=0, second=0, microsecond=0)
        cell.range = HourRange(start=window_start, end=window_start + timedelta(hours=1))

    global_min, global_max = _non_zero_bounds(matrix)

    logger.debug(
        f"Heatmap ({metric}, tz={timezone or 'as-is'}): {len(records)} record(s), "
        f"range {global_min:,}–{global_max:,}"
    )

    return HeatmapResult(
        metric=metric,
        timezone=timezone,
        matrix=matrix,
        cells=cells,
        global_min=global_min,
        global_max=global_max,
    )


def intensity(value: float, global_min: float, global_max: float) -> float:
    """Normalized color intensity in [0, 1]; never NaN."""
    if global_max == global_min:
        return 0.0
    scaled = (value - global_min) / (global_max - global_min)
    return min(max(scaled, 0.0), 1.0)


def intensity_matrix(result: HeatmapResult) -> list[list[float]]:
    return [
        [intensity(value, result.global_min, result.global_max) for value in row]
        for row in result.matrix
    ]


def hour_stats_from_videos(videos: list[VideoMetric]) -> list[HourStat]:
    """
    One HourStat per uploaded video (posting-activity heatmap).

    Videos without an upload timestamp cannot be placed and are skipped.
    """
    stats: list[HourStat] = []
    skipped = 0

    for video in videos:
        if video.upload_timestamp is None:
            skipped += 1
            continue
        stats.append(HourStat(
            timestamp=video.upload_timestamp,
            views=video.views,
            likes=video.likes,
            comments=video.comments,
            shares=video.shares,
            videos=[HeatmapVideo(
                id=video.dedup_key,
                title=video.title or "Untitled",
                thumbnail_url=video.thumbnail_url,
                views=video.views,
            )],
        ))

    if skipped:
        logger.debug(f"hour_stats_from_videos: skipped {skipped} video(s) with no upload time")

    return stats


# ===========================================================================
# Display helpers
# ===========================================================================

def format_hour_range(hour: int) -> str:
    """'1–2 AM', '11–12 PM', '11 PM – 12 AM'."""
    start = 12 if hour % 12 == 0 else hour % 12
    end = 12 if (hour + 1) % 12 == 0 else (hour + 1) % 12
    start_period = "AM" if hour < 12 else "PM"
    end_period = "AM" if (hour + 1) < 12 or (hour + 1) == 24 else "PM"

    if hour == 23:
        return f"{start} {start_period} – 12 {end_period}"
    return f"{start}–{end} {end_period}"


def format_day(index: int, short: bool = False) -> str:
    return SHORT_DAY_NAMES[index] if short else DAY_NAMES[index]


def weekday_index(moment: datetime) -> int:
    """Sunday = 0 … Saturday = 6."""
    return (moment.weekday() + 1) % 7


# ===========================================================================
# Internals
# ===========================================================================

def _resolve_zone(timezone: Optional[str]) -> Optional[ZoneInfo]:
    if not timezone:
        return None
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone '{timezone}'") from e


def _to_local(moment: datetime, zone: Optional[ZoneInfo]) -> datetime:
    if zone is None:
        return moment
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt_timezone.utc)
    return moment.astimezone(zone)


def _non_zero_bounds(matrix: list[list[int]]) -> tuple[int, int]:
    non_zero = [value for row in matrix for value in row if value > 0]
    if not non_zero:
        return 0, 0
    return min(non_zero), max(non_zero)
