"""
Tests for services/earnings.py — batch orchestration over creators and accounts.

Test categories:
  1. END-TO-END BATCHES (shared accounts, dedup across accounts)
  2. BATCH LOOKUPS (each account's videos resolved once)
  3. NEUTRAL RESULTS (no terms, no accounts, unknown terms)
  4. FAILED ACCOUNTS (isolated, creator flagged partial)
  5. DATE FILTER + DIRECT SUBMISSIONS
  6. DEDUPLICATION
  7. SUMMARY
"""

import sys
import os
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from collections.abc import Mapping
from datetime import datetime, timezone

from models.schemas import (
    AccountFetchError,
    CreatorAccountLink,
    CreatorProfile,
    DateRange,
    TrackedAccount,
    VideoMetric,
)
from services.earnings import (
    build_batch,
    compute_all,
    compute_batch,
    deduplicate_videos,
    summarize_results,
)


# ===========================================================================
# Test helpers
# ===========================================================================

FLAT_100 = {"type": "flat_fee", "baseAmount": 100}


def make_creator(creator_id: str, terms=FLAT_100) -> CreatorProfile:
    return CreatorProfile(id=creator_id, display_name=creator_id.title(), payment_terms=terms)


def make_account(account_id: str) -> TrackedAccount:
    return TrackedAccount(id=account_id, platform="tiktok", username=f"@{account_id}")


def link(creator_id: str, account_id: str) -> CreatorAccountLink:
    return CreatorAccountLink(creator_id=creator_id, account_id=account_id)


def make_video(video_id, views=1_000, uploaded=datetime(2026, 2, 10, 12), **kwargs) -> VideoMetric:
    return VideoMetric(id=video_id, views=views, upload_timestamp=uploaded, **kwargs)


class CountingVideos(Mapping):
    """Mapping that records every per-account lookup."""

    def __init__(self, data: dict):
        self._data = data
        self.lookups: list[str] = []

    def __getitem__(self, key):
        self.lookups.append(key)
        return self._data[key]

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)


# ===========================================================================
# 1. END-TO-END BATCHES
# ===========================================================================

class TestBatches:

    def test_same_video_on_two_accounts_pays_once(self):
        creators = [make_creator("alice")]
        accounts = [make_account("a1"), make_account("a2")]
        links = [link("alice", "a1"), link("alice", "a2")]
        videos = {
            "a1": [make_video("V"), make_video("W")],
            "a2": [make_video("V")],
        }
        result = compute_all(creators, accounts, links, videos)["alice"]
        assert result.video_count == 2
        assert result.total_earnings == 200.0

    def test_shared_account_counts_for_each_creator(self):
        creators = [make_creator("alice"), make_creator("bob", {"type": "base_cpm", "cpmRate": 1})]
        accounts = [make_account("shared")]
        links = [link("alice", "shared"), link("bob", "shared")]
        videos = {"shared": [make_video("v1", views=5_000)]}

        results = compute_all(creators, accounts, links, videos)
        assert results["alice"].total_earnings == 100.0
        assert results["bob"].total_earnings == 5.0
        assert list(results) == ["alice", "bob"]

    def test_per_video_breakdown_and_views(self):
        creators = [make_creator("alice", {"type": "base_cpm", "baseAmount": 10, "cpmRate": 2})]
        videos = {"a1": [make_video("v1", views=1_000), make_video("v2", views=3_000)]}
        result = compute_all(creators, [make_account("a1")], [link("alice", "a1")], videos)["alice"]
        assert result.total_views == 4_000
        assert [(e.video_id, e.amount) for e in result.per_video] == [("v1", 12.0), ("v2", 16.0)]
        assert result.total_earnings == 28.0


# ===========================================================================
# 2. BATCH LOOKUPS
# ===========================================================================

class TestBatchLookups:

    def test_each_account_resolved_once(self):
        creators = [make_creator("c1"), make_creator("c2"), make_creator("c3")]
        accounts = [make_account("a1"), make_account("a2")]
        links = [
            link("c1", "a1"), link("c1", "a2"),
            link("c2", "a1"), link("c2", "a2"),
            link("c3", "a1"),
        ]
        videos = CountingVideos({"a1": [make_video("x")], "a2": [make_video("y")]})

        results = compute_all(creators, accounts, links, videos)

        assert sorted(videos.lookups) == ["a1", "a2"]
        assert results["c1"].video_count == 2
        assert results["c3"].video_count == 1

    def test_accounts_of_creators_without_terms_are_skipped(self):
        creators = [make_creator("paid"), make_creator("unpaid", terms=None)]
        accounts = [make_account("a1"), make_account("a2")]
        links = [link("paid", "a1"), link("unpaid", "a2")]
        batch = build_batch(creators, accounts, links, {})
        assert batch.linked_account_ids() == ["a1"]

    def test_duplicate_links_collapse(self):
        batch = build_batch(
            [make_creator("alice")],
            [make_account("a1")],
            [link("alice", "a1"), link("alice", "a1")],
            {},
        )
        assert batch.account_ids_by_creator == {"alice": ["a1"]}

    def test_orphan_link_ignored(self):
        creators = [make_creator("alice")]
        links = [link("alice", "a1"), link("alice", "deleted")]
        videos = CountingVideos({"a1": [make_video("v1")], "deleted": [make_video("v2")]})
        result = compute_all(creators, [make_account("a1")], links, videos)["alice"]
        assert videos.lookups == ["a1"]
        assert result.video_count == 1


# ===========================================================================
# 3. NEUTRAL RESULTS
# ===========================================================================

class TestNeutralResults:

    def test_no_links(self):
        result = compute_all([make_creator("alice")], [make_account("a1")], [], {"a1": [make_video("v")]})["alice"]
        assert result.total_earnings == 0.0
        assert result.video_count == 0
        assert result.partial is False

    def test_no_terms(self):
        result = compute_all(
            [make_creator("alice", terms=None)],
            [make_account("a1")],
            [link("alice", "a1")],
            {"a1": [make_video("v1"), make_video("v2")]},
        )["alice"]
        assert result.total_earnings == 0.0
        assert result.video_count == 0
        assert result.per_video == []

    def test_unknown_terms_type_is_neutral(self):
        creator = make_creator("alice", {"type": "tiered_performance", "tiers": [1, 2]})
        assert creator.payment_terms is None
        result = compute_all([creator], [make_account("a1")], [link("alice", "a1")], {"a1": [make_video("v")]})
        assert result["alice"].total_earnings == 0.0

    def test_retainer_without_accounts_still_reports_retainer(self):
        creator = make_creator("alice", {"type": "retainer", "retainerAmount": 1_500})
        result = compute_all([creator], [], [], {})["alice"]
        assert result.total_earnings == 0.0
        assert result.retainer_amount == 1_500.0

    def test_missing_entry_is_empty_not_partial(self):
        result = compute_all([make_creator("alice")], [make_account("a1")], [link("alice", "a1")], {})["alice"]
        assert result.video_count == 0
        assert result.partial is False


# ===========================================================================
# 4. FAILED ACCOUNTS
# ===========================================================================

class TestFailedAccounts:

    def setup_method(self):
        self.creators = [make_creator("alice"), make_creator("bob")]
        self.accounts = [make_account("a1"), make_account("a2"), make_account("b1")]
        self.links = [link("alice", "a1"), link("alice", "a2"), link("bob", "b1")]

    def test_failed_account_isolated(self):
        videos = {
            "a1": [make_video("v1"), make_video("v2")],
            "a2": AccountFetchError(account_id="a2", error="HTTP 503"),
            "b1": [make_video("v3")],
        }
        results = compute_all(self.creators, self.accounts, self.links, videos)

        assert results["alice"].total_earnings == 200.0
        assert results["alice"].partial is True
        assert results["bob"].total_earnings == 100.0
        assert results["bob"].partial is False

    def test_exception_entry_treated_as_failure(self):
        videos = {"a1": TimeoutError("read timed out"), "a2": [], "b1": [make_video("v3")]}
        results = compute_all(self.creators, self.accounts, self.links, videos)
        assert results["alice"].total_earnings == 0.0
        assert results["alice"].partial is True

    def test_all_accounts_failed(self):
        error = AccountFetchError(error="boom")
        videos = {"a1": error, "a2": error, "b1": error}
        results = compute_all(self.creators, self.accounts, self.links, videos)
        assert summarize_results(results)["partial_creators"] == 2
        assert all(r.total_earnings == 0.0 for r in results.values())


# ===========================================================================
# 5. DATE FILTER + DIRECT SUBMISSIONS
# ===========================================================================

class TestFilterAndSubmissions:

    def test_date_range_is_inclusive(self):
        videos = {"a1": [
            make_video("early", uploaded=datetime(2026, 1, 31, 23, 59)),
            make_video("first", uploaded=datetime(2026, 2, 1)),
            make_video("last", uploaded=datetime(2026, 2, 28, 23, 59, 59)),
            make_video("late", uploaded=datetime(2026, 3, 1)),
            make_video("undated", uploaded=None),
        ]}
        date_range = DateRange(start_date=datetime(2026, 2, 1), end_date=datetime(2026, 2, 28, 23, 59, 59))
        result = compute_all(
            [make_creator("alice")], [make_account("a1")], [link("alice", "a1")],
            videos, date_range=date_range,
        )["alice"]
        assert [e.video_id for e in result.per_video] == ["first", "last"]

    def test_direct_submissions_count(self):
        submitted = [
            make_video("s1", added_by="alice"),
            make_video("s2", added_by="bob"),
            make_video("s3"),  # no submitter
        ]
        results = compute_all(
            [make_creator("alice"), make_creator("bob")], [], [], {},
            submitted_videos=submitted,
        )
        assert results["alice"].video_count == 1
        assert results["bob"].video_count == 1

    def test_submission_duplicating_tracked_video_pays_once(self):
        result = compute_all(
            [make_creator("alice")], [make_account("a1")], [link("alice", "a1")],
            {"a1": [make_video("v1")]},
            submitted_videos=[make_video("v1", added_by="alice")],
        )["alice"]
        assert result.video_count == 1


# ===========================================================================
# 6. DEDUPLICATION
# ===========================================================================

class TestDeduplication:

    def test_by_url_when_no_id(self):
        videos = [
            VideoMetric(url="https://tiktok.com/@a/video/1", views=10),
            VideoMetric(url="https://tiktok.com/@a/video/1", views=20),
            VideoMetric(url="https://tiktok.com/@a/video/2", views=30),
        ]
        assert [v.views for v in deduplicate_videos(videos)] == [20, 30]

    def test_by_platform_handle_and_upload_time(self):
        uploaded = datetime(2026, 2, 1, 9)
        videos = [
            VideoMetric(platform="instagram", uploader_handle="alice", upload_timestamp=uploaded, views=1),
            VideoMetric(platform="instagram", uploader_handle="alice", upload_timestamp=uploaded, views=2),
            VideoMetric(platform="tiktok", uploader_handle="alice", upload_timestamp=uploaded, views=3),
        ]
        assert [v.views for v in deduplicate_videos(videos)] == [2, 3]

    def test_most_recently_refreshed_wins(self):
        newer = make_video("v1", views=900, last_refreshed_at=datetime(2026, 3, 2))
        older = make_video("v1", views=100, last_refreshed_at=datetime(2026, 3, 1))
        assert deduplicate_videos([newer, older])[0].views == 900
        assert deduplicate_videos([older, newer])[0].views == 900

    def test_refreshed_beats_never_refreshed(self):
        refreshed = make_video("v1", views=5, last_refreshed_at=datetime(2026, 3, 1))
        unknown = make_video("v1", views=7)
        assert deduplicate_videos([refreshed, unknown])[0].views == 5

    def test_mixed_naive_and_aware_refresh_times(self):
        aware = make_video("v1", views=1, last_refreshed_at=datetime(2026, 3, 1, 12, tzinfo=timezone.utc))
        naive = make_video("v1", views=2, last_refreshed_at=datetime(2026, 3, 1, 13))
        assert deduplicate_videos([aware, naive])[0].views == 2

    def test_keeps_first_seen_order(self):
        videos = [make_video("b"), make_video("a"), make_video("b")]
        assert [v.id for v in deduplicate_videos(videos)] == ["b", "a"]


# ===========================================================================
# 7. SUMMARY
# ===========================================================================

class TestSummary:

    def test_summarize_results(self):
        creators = [
            make_creator("alice"),
            make_creator("bob", {"type": "retainer", "retainerAmount": 500}),
        ]
        accounts = [make_account("a1"), make_account("b1")]
        links = [link("alice", "a1"), link("bob", "b1")]
        videos = {"a1": [make_video("v1", views=10), make_video("v2", views=30)], "b1": [make_video("v3", views=5)]}

        summary = summarize_results(compute_batch(build_batch(creators, accounts, links, videos)))
        assert summary == {
            "total_creators": 2,
            "total_earnings": 200.0,
            "total_retainers": 500.0,
            "total_videos": 3,
            "total_views": 45,
            "partial_creators": 0,
        }
