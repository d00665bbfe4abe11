"""
Earnings orchestration — creators + linked accounts + videos → per-creator payouts.

Accounts, links and per-account video lists are loaded ONCE for the whole
batch by the caller and threaded through an EarningsBatch, never re-fetched
per creator. With N creators sharing M accounts, each account's video list
is looked up exactly once (O(M), not O(N × M)).

Pipeline (compute_batch):
  Step 1: Resolve every distinct linked account's videos once
          (AccountFetchError / exception → empty list, creator flagged partial)
  Step 2: Per creator, gather videos from linked accounts + direct submissions
  Step 3: Deduplicate by video identity (id → url → platform/handle/upload time),
          keeping the most recently refreshed record
  Step 4: Apply the optional date range (upload time, inclusive)
  Step 5: Evaluate payment terms (services.payout)

Neutral results, never errors:
  - no payment terms           → total_earnings 0, video_count 0
  - no linked accounts         → total_earnings 0, video_count 0
  - one account's fetch failed → that account contributes nothing; others proceed
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Optional, Union

from models.schemas import (
    AccountFetchError,
    CreatorAccountLink,
    CreatorEarnings,
    CreatorProfile,
    DateRange,
    TrackedAccount,
    VideoMetric,
)
from services.date_filters import filter_videos_by_date_range
from services.intervals import comparable_datetime
from services.payout import evaluate, summarize_terms

logger = logging.getLogger(__name__)

AccountVideos = Union[list[VideoMetric], AccountFetchError, Exception]


# ===========================================================================
# Batch context
# ===========================================================================

@dataclass(frozen=True)
class EarningsBatch:
    """Everything one earnings computation needs, loaded once up front."""
    creators: list[CreatorProfile]
    accounts_by_id: dict[str, TrackedAccount]
    account_ids_by_creator: dict[str, list[str]]
    videos_by_account: Mapping[str, AccountVideos]
    submitted_by_creator: dict[str, list[VideoMetric]] = field(default_factory=dict)
    date_range: Optional[DateRange] = None

    def linked_account_ids(self) -> list[str]:
        """Distinct account ids linked to creators that have payment terms, in first-seen order."""
        seen: dict[str, None] = {}
        for creator in self.creators:
            if creator.payment_terms is None:
                continue
            for account_id in self.account_ids_by_creator.get(creator.id, []):
                seen.setdefault(account_id, None)
        return list(seen)


def build_batch(
    creators: list[CreatorProfile],
    accounts: list[TrackedAccount],
    links: list[CreatorAccountLink],
    videos_by_account: Mapping[str, AccountVideos],
    date_range: Optional[DateRange] = None,
    submitted_videos: Optional[list[VideoMetric]] = None,
) -> EarningsBatch:
    """
    Index the batch-loaded collections once.

    Links to accounts that are not in `accounts` are ignored (the account was
    removed from the project but the link survived).
    """
    accounts_by_id = {account.id: account for account in accounts}

    account_ids_by_creator: dict[str, list[str]] = {}
    orphan_links = 0
    for link in links:
        if link.account_id not in accounts_by_id:
            orphan_links += 1
            continue
        ids = account_ids_by_creator.setdefault(link.creator_id, [])
        if link.account_id not in ids:
            ids.append(link.account_id)

    if orphan_links:
        logger.debug(f"Ignored {orphan_links} link(s) to accounts not in this project")

    submitted_by_creator: dict[str, list[VideoMetric]] = {}
    for video in submitted_videos or []:
        if video.added_by:
            submitted_by_creator.setdefault(video.added_by, []).append(video)

    return EarningsBatch(
        creators=list(creators),
        accounts_by_id=accounts_by_id,
        account_ids_by_creator=account_ids_by_creator,
        videos_by_account=videos_by_account,
        submitted_by_creator=submitted_by_creator,
        date_range=date_range,
    )


# ===========================================================================
# Public API
# ===========================================================================

def compute_all(
    creators: list[CreatorProfile],
    accounts: list[TrackedAccount],
    links: list[CreatorAccountLink],
    videos_by_account: Mapping[str, AccountVideos],
    date_range: Optional[DateRange] = None,
    submitted_videos: Optional[list[VideoMetric]] = None,
) -> dict[str, CreatorEarnings]:
    """
    Compute earnings for every creator in one batch.

    Args:
        creators:          Creator profiles (with parsed payment terms)
        accounts:          All tracked accounts of the project, loaded once
        links:             All creator ↔ account links, loaded once
        videos_by_account: {account_id: videos | AccountFetchError}
        date_range:        Optional upload-time filter (inclusive)
        submitted_videos:  Videos submitted directly by creators (added_by)

    Returns:
        {creator_id: CreatorEarnings}, in the order of `creators`
    """
    batch = build_batch(
        creators, accounts, links, videos_by_account,
        date_range=date_range, submitted_videos=submitted_videos,
    )
    return compute_batch(batch)


def compute_batch(batch: EarningsBatch) -> dict[str, CreatorEarnings]:
    logger.info(
        f"Computing earnings for {len(batch.creators)} creator(s) over "
        f"{len(batch.accounts_by_id)} account(s)"
    )

    # ------------------------------------------------------------------
    # Step 1: Resolve each distinct linked account exactly once
    # ------------------------------------------------------------------
    account_videos: dict[str, list[VideoMetric]] = {}
    failed_accounts: set[str] = set()

    for account_id in batch.linked_account_ids():
        videos, ok = _resolve_account_videos(account_id, batch.videos_by_account)
        account_videos[account_id] = videos
        if not ok:
            failed_accounts.add(account_id)

    logger.info(
        f"Step 1 complete: {len(account_videos)} account(s) resolved, "
        f"{len(failed_accounts)} unavailable"
    )

    # ------------------------------------------------------------------
    # Steps 2–5: Per creator
    # ------------------------------------------------------------------
    results: dict[str, CreatorEarnings] = {}
    for creator in batch.creators:
        results[creator.id] = _compute_creator(
            creator, batch, account_videos, failed_accounts
        )

    total = sum(r.total_earnings for r in results.values())
    logger.info(
        f"Earnings complete: {len(results)} creator(s), total=${total:,.2f}, "
        f"{sum(1 for r in results.values() if r.partial)} partial"
    )
    return results


def deduplicate_videos(videos: list[VideoMetric]) -> list[VideoMetric]:
    """
    Collapse repeated fetches of the same video into one record.

    Key: VideoMetric.dedup_key. On collision keep the record with the most
    recent last_refreshed_at; if that doesn't decide it, the later record
    wins (a re-fetch supersedes). First-seen order is preserved.
    """
    by_key: dict[str, VideoMetric] = {}

    for video in videos:
        key = video.dedup_key
        existing = by_key.get(key)
        if existing is None or not _is_older(video, existing):
            if existing is not None:
                logger.debug(f"Dedup: replacing earlier copy of {key}")
            by_key[key] = video

    if len(by_key) < len(videos):
        logger.debug(f"Deduplication removed {len(videos) - len(by_key)} duplicate(s)")

    return list(by_key.values())


def summarize_results(results: dict[str, CreatorEarnings]) -> dict:
    """Batch totals for API responses."""
    values = list(results.values())
    return {
        "total_creators": len(values),
        "total_earnings": sum(r.total_earnings for r in values),
        "total_retainers": sum(r.retainer_amount for r in values),
        "total_videos": sum(r.video_count for r in values),
        "total_views": sum(r.total_views for r in values),
        "partial_creators": sum(1 for r in values if r.partial),
    }


# ===========================================================================
# Internals
# ===========================================================================

def _resolve_account_videos(
    account_id: str,
    videos_by_account: Mapping[str, AccountVideos],
) -> tuple[list[VideoMetric], bool]:
    """
    One lookup for one account.

    Returns (videos, ok). An error sentinel or exception yields ([], False);
    an account with no entry at all simply has no videos.
    """
    entry = videos_by_account.get(account_id)

    if entry is None:
        logger.debug(f"No videos supplied for account {account_id}")
        return [], True

    if isinstance(entry, (AccountFetchError, Exception)):
        reason = entry.error if isinstance(entry, AccountFetchError) else repr(entry)
        logger.warning(
            f"Videos unavailable for account {account_id} ({reason}), "
            f"treating as empty"
        )
        return [], False

    return list(entry), True


def _compute_creator(
    creator: CreatorProfile,
    batch: EarningsBatch,
    account_videos: dict[str, list[VideoMetric]],
    failed_accounts: set[str],
) -> CreatorEarnings:
    terms = creator.payment_terms
    account_ids = batch.account_ids_by_creator.get(creator.id, [])
    submitted = batch.submitted_by_creator.get(creator.id, [])

    if terms is None:
        logger.debug(f"  Creator '{creator.id}': no payment terms → $0")
        return CreatorEarnings(creator_id=creator.id)

    if not account_ids and not submitted:
        logger.debug(f"  Creator '{creator.id}': no linked accounts → $0")
        return CreatorEarnings(
            creator_id=creator.id,
            retainer_amount=evaluate(terms, []).retainer_amount,
        )

    # ------------------------------------------------------------------
    # Step 2: Gather linked + directly submitted videos
    # ------------------------------------------------------------------
    videos: list[VideoMetric] = []
    for account_id in account_ids:
        videos.extend(account_videos.get(account_id, []))
    videos.extend(submitted)

    # ------------------------------------------------------------------
    # Steps 3 + 4: Dedup, then date filter
    # ------------------------------------------------------------------
    deduped = deduplicate_videos(videos)
    in_range = filter_videos_by_date_range(deduped, batch.date_range)

    # ------------------------------------------------------------------
    # Step 5: Evaluate
    # ------------------------------------------------------------------
    result = evaluate(terms, in_range)
    partial = any(account_id in failed_accounts for account_id in account_ids)

    logger.debug(
        f"  Creator '{creator.id}' [{summarize_terms(terms)}]: "
        f"{len(videos)} fetched → {len(deduped)} unique → {len(in_range)} in range → "
        f"${result.total_earnings:,.2f}"
        + (" (partial)" if partial else "")
    )

    return CreatorEarnings(
        creator_id=creator.id,
        total_earnings=result.total_earnings,
        per_video=result.per_video,
        retainer_amount=result.retainer_amount,
        video_count=len(in_range),
        total_views=sum(v.views for v in in_range),
        partial=partial,
    )


def _is_older(candidate: VideoMetric, existing: VideoMetric) -> bool:
    """True if candidate was refreshed strictly before existing."""
    if existing.last_refreshed_at is None:
        return False
    if candidate.last_refreshed_at is None:
        return True
    refreshed = comparable_datetime(candidate.last_refreshed_at, existing.last_refreshed_at)
    return refreshed < existing.last_refreshed_at
