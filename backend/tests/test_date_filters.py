"""
Tests for services/date_filters.py — period presets and upload-time filtering.
"""

import sys
import os
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import datetime, timezone

from models.schemas import DateRange, VideoMetric
from services.date_filters import get_date_range, filter_videos_by_date_range

NOW = datetime(2026, 3, 15, 14, 30)
END_OF_TODAY = datetime(2026, 3, 15, 23, 59, 59, 999999)


class TestPresets:

    @pytest.mark.parametrize("preset,start,end", [
        ("today", datetime(2026, 3, 15), END_OF_TODAY),
        ("yesterday", datetime(2026, 3, 14), datetime(2026, 3, 14, 23, 59, 59, 999999)),
        ("last7days", datetime(2026, 3, 8), END_OF_TODAY),
        ("last14days", datetime(2026, 3, 1), END_OF_TODAY),
        ("last30days", datetime(2026, 2, 13), END_OF_TODAY),
        ("last90days", datetime(2025, 12, 15), END_OF_TODAY),
        ("mtd", datetime(2026, 3, 1), END_OF_TODAY),
        ("lastmonth", datetime(2026, 2, 1), datetime(2026, 2, 28, 23, 59, 59, 999999)),
        ("ytd", datetime(2026, 1, 1), END_OF_TODAY),
    ])
    def test_preset_ranges(self, preset, start, end):
        date_range = get_date_range(preset, now=NOW)
        assert date_range.start_date == start
        assert date_range.end_date == end

    def test_last_month_from_january(self):
        date_range = get_date_range("lastmonth", now=datetime(2026, 1, 10, 8))
        assert date_range.start_date == datetime(2025, 12, 1)
        assert date_range.end_date == datetime(2025, 12, 31, 23, 59, 59, 999999)

    def test_yesterday_on_the_first(self):
        date_range = get_date_range("yesterday", now=datetime(2026, 3, 1, 0, 5))
        assert date_range.start_date == datetime(2026, 2, 28)

    def test_all_is_unfiltered(self):
        assert get_date_range("all", now=NOW) is None

    def test_custom_passes_range_through(self):
        custom = DateRange(start_date=datetime(2026, 1, 1), end_date=datetime(2026, 1, 31))
        assert get_date_range("custom", custom_range=custom) is custom
        assert get_date_range("custom") is None

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="date filter"):
            get_date_range("lastfortnight", now=NOW)


class TestFiltering:

    RANGE = DateRange(start_date=datetime(2026, 2, 1), end_date=datetime(2026, 2, 28, 23, 59, 59))

    def test_bounds_are_inclusive(self):
        videos = [
            VideoMetric(id="start", upload_timestamp=datetime(2026, 2, 1)),
            VideoMetric(id="end", upload_timestamp=datetime(2026, 2, 28, 23, 59, 59)),
            VideoMetric(id="before", upload_timestamp=datetime(2026, 1, 31, 23, 59, 59)),
            VideoMetric(id="after", upload_timestamp=datetime(2026, 3, 1)),
        ]
        kept = filter_videos_by_date_range(videos, self.RANGE)
        assert [v.id for v in kept] == ["start", "end"]

    def test_untimed_videos_excluded(self):
        videos = [VideoMetric(id="a"), VideoMetric(id="b", upload_timestamp=datetime(2026, 2, 10))]
        assert [v.id for v in filter_videos_by_date_range(videos, self.RANGE)] == ["b"]

    def test_no_range_keeps_everything(self):
        videos = [VideoMetric(id="a"), VideoMetric(id="b", upload_timestamp=datetime(1999, 1, 1))]
        assert filter_videos_by_date_range(videos, None) == videos

    def test_aware_upload_against_naive_range(self):
        video = VideoMetric(id="a", upload_timestamp=datetime(2026, 2, 10, tzinfo=timezone.utc))
        assert filter_videos_by_date_range([video], self.RANGE) == [video]

    def test_iso_strings_from_the_store(self):
        video = VideoMetric(id="a", upload_timestamp="2026-02-14T12:00:00Z")
        assert filter_videos_by_date_range([video], self.RANGE) == [video]

    def test_naive_start_aware_end(self):
        date_range = DateRange(
            start_date=datetime(2026, 2, 1),
            end_date=datetime(2026, 2, 28, 23, 59, 59, tzinfo=timezone.utc),
        )
        videos = [
            VideoMetric(id="naive", upload_timestamp=datetime(2026, 2, 10)),
            VideoMetric(id="aware-end", upload_timestamp=datetime(2026, 2, 28, 23, 59, 59, tzinfo=timezone.utc)),
            VideoMetric(id="after", upload_timestamp=datetime(2026, 3, 1, tzinfo=timezone.utc)),
        ]
        assert [v.id for v in filter_videos_by_date_range(videos, date_range)] == ["naive", "aware-end"]

    def test_aware_start_naive_end(self):
        date_range = DateRange(
            start_date=datetime(2026, 2, 1, tzinfo=timezone.utc),
            end_date=datetime(2026, 2, 28, 23, 59, 59),
        )
        videos = [
            VideoMetric(id="before", upload_timestamp=datetime(2026, 1, 31, 23)),
            VideoMetric(id="inside", upload_timestamp=datetime(2026, 2, 14, 12)),
        ]
        assert [v.id for v in filter_videos_by_date_range(videos, date_range)] == ["inside"]
