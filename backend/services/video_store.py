"""
Video store client — fetches each tracked account's videos for the orchestrator.

API details:
  Endpoint:   GET {VIDEO_STORE_BASE_URL}/accounts/{account_id}/videos
  Auth:       Authorization: Bearer <VIDEO_STORE_API_KEY>
  Pagination: page (min 1), limit → {"data": [...], "pagination": {"total_pages": N}}

Fan-out / fan-in:
  - One request chain per account, all run concurrently (asyncio.gather)
  - Nothing is returned until every account has finished
  - A failed, timed-out or cancelled account becomes an AccountFetchError for
    THAT account only; sibling accounts are unaffected

Retries 429 and 5xx with linear backoff; other 4xx fail the account at once.
"""

import asyncio
import logging
from typing import Optional, Union

import httpx

import config
from models.schemas import AccountFetchError, VideoMetric

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MAX_RETRIES = 3            # Attempts per page for rate-limit / server errors
RETRY_BACKOFF_BASE = 2.0   # Seconds; wait = base × attempt
MAX_PAGES = 50             # Hard stop per account

# Store field → VideoMetric field (stored documents use camelCase)
FIELD_MAP = {
    "id": "id",
    "url": "url",
    "videoUrl": "url",
    "platform": "platform",
    "uploaderHandle": "uploader_handle",
    "username": "uploader_handle",
    "uploadDate": "upload_timestamp",
    "uploadTimestamp": "upload_timestamp",
    "views": "views",
    "likes": "likes",
    "comments": "comments",
    "shares": "shares",
    "clicks": "clicks",
    "revenue": "revenue",
    "title": "title",
    "thumbnail": "thumbnail_url",
    "thumbnailUrl": "thumbnail_url",
    "trackedAccountId": "tracked_account_id",
    "addedBy": "added_by",
    "lastRefreshed": "last_refreshed_at",
    "lastRefreshedAt": "last_refreshed_at",
}


# ===========================================================================
# Public API
# ===========================================================================

async def fetch_videos_by_account(
    account_ids: list[str],
    client: Optional[httpx.AsyncClient] = None,
) -> dict[str, Union[list[VideoMetric], AccountFetchError]]:
    """
    Fetch every account's videos concurrently.

    Args:
        account_ids: Accounts to fetch (duplicates are fetched once)
        client:      Optional pre-configured AsyncClient (tests, shared pools);
                     one is created from config otherwise

    Returns:
        {account_id: list[VideoMetric] | AccountFetchError}, one entry per
        distinct account id
    """
    unique_ids = list(dict.fromkeys(account_ids))
    if not unique_ids:
        return {}

    logger.info(f"Fetching videos for {len(unique_ids)} account(s)")

    owns_client = client is None
    if owns_client:
        client = _make_client()

    try:
        results = await asyncio.gather(
            *(_fetch_account(client, account_id) for account_id in unique_ids),
            return_exceptions=True,
        )
    finally:
        if owns_client:
            await client.aclose()

    videos_by_account: dict[str, Union[list[VideoMetric], AccountFetchError]] = {}
    failures = 0

    for account_id, result in zip(unique_ids, results):
        if isinstance(result, BaseException):
            failures += 1
            logger.warning(f"Account {account_id}: fetch failed ({type(result).__name__}: {result})")
            videos_by_account[account_id] = AccountFetchError(
                account_id=account_id,
                error=f"{type(result).__name__}: {result}",
            )
        else:
            videos_by_account[account_id] = result

    logger.info(
        f"Fetch complete: {len(unique_ids) - failures} account(s) ok, {failures} failed, "
        f"{sum(len(v) for v in videos_by_account.values() if isinstance(v, list))} video(s)"
    )
    return videos_by_account


# ===========================================================================
# Per-account fetch
# ===========================================================================

def _make_client() -> httpx.AsyncClient:
    headers = {}
    if config.VIDEO_STORE_API_KEY:
        headers["Authorization"] = f"Bearer {config.VIDEO_STORE_API_KEY}"
    return httpx.AsyncClient(
        base_url=config.VIDEO_STORE_BASE_URL,
        headers=headers,
        timeout=config.VIDEO_STORE_TIMEOUT,
    )


async def _fetch_account(client: httpx.AsyncClient, account_id: str) -> list[VideoMetric]:
    """All pages for one account. Raises RuntimeError on an unrecoverable error."""
    videos: list[VideoMetric] = []
    page = 1
    total_pages = 1

    while page <= total_pages and page <= MAX_PAGES:
        payload = await _fetch_page(client, account_id, page)

        items = payload.get("data", [])
        total_pages = payload.get("pagination", {}).get("total_pages", 1)

        for raw in items:
            video = _parse_video(raw, account_id)
            if video is not None:
                videos.append(video)

        logger.debug(f"Account {account_id}: page {page}/{total_pages}, {len(items)} item(s)")
        page += 1

    return videos


async def _fetch_page(client: httpx.AsyncClient, account_id: str, page: int) -> dict:
    url = f"/accounts/{account_id}/videos"
    params = {"page": page, "limit": config.VIDEO_STORE_PAGE_LIMIT}

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            response = await client.get(url, params=params)
        except httpx.RequestError as e:
            if attempt == MAX_RETRIES:
                raise RuntimeError(
                    f"Network error for account {account_id} after {MAX_RETRIES} attempts: {e}"
                ) from e
            wait_time = RETRY_BACKOFF_BASE * attempt
            logger.warning(
                f"Network error for account {account_id}, "
                f"attempt {attempt}/{MAX_RETRIES}: {e}. Retrying in {wait_time}s..."
            )
            await asyncio.sleep(wait_time)
            continue

        if response.status_code == 200:
            return response.json()

        if response.status_code == 429 or response.status_code >= 500:
            wait_time = RETRY_BACKOFF_BASE * attempt
            logger.warning(
                f"Store returned {response.status_code} for account {account_id}, "
                f"attempt {attempt}/{MAX_RETRIES}, waiting {wait_time}s..."
            )
            await asyncio.sleep(wait_time)
            continue

        raise RuntimeError(
            f"Video store returned {response.status_code} for account {account_id}: "
            f"{response.text[:200]}"
        )

    raise RuntimeError(f"All {MAX_RETRIES} retries exhausted for account {account_id}")


# ===========================================================================
# Parsing
# ===========================================================================

def _parse_video(raw: dict, account_id: str) -> Optional[VideoMetric]:
    """
    Map a stored video document onto VideoMetric.

    Unknown keys are ignored; snake_case keys pass through unchanged. A
    document that still fails validation is skipped.
    """
    if not isinstance(raw, dict):
        logger.debug(f"Account {account_id}: skipping non-object item {repr(raw)[:100]}")
        return None

    fields: dict = {}
    for key, value in raw.items():
        target = FIELD_MAP.get(key, key)
        if target in VideoMetric.model_fields and target not in fields:
            fields[target] = value
    fields.setdefault("tracked_account_id", account_id)

    try:
        return VideoMetric.model_validate(fields)
    except ValueError as e:
        logger.debug(f"Account {account_id}: skipping unparseable video {raw.get('id')!r}: {e}")
        return None
