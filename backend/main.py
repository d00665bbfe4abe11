"""
Creator Earnings & Engagement Analytics — FastAPI application.

Thin HTTP surface over the computation services:

  POST /api/earnings
    1. Resolve the date filter (preset or custom range)
    2. Index creators / accounts / links once into an EarningsBatch
    3. Use the supplied per-account videos, or fetch them from the video store
       (one concurrent request chain per distinct linked account)
    4. Compute per-creator earnings (services.earnings)
    5. Return per-creator results + batch summary

  POST /api/structure-payouts
    Per-creator payout structures (flat, CPM, bonus, tiered bonus components)
    evaluated over each creator's deduplicated, date-filtered videos

  POST /api/intervals
    Date range + granularity → chart buckets (+ per-bucket totals for videos)

  POST /api/heatmap
    Hour stats and/or videos → 24×7 hour-of-week matrix + intensities

  GET /api/health

Error handling:
  - Unknown granularity / metric / timezone / date preset → 400
  - A single account's videos unavailable → 200, creator flagged partial
  - end_date before start_date → 200 with no intervals
"""

import dataclasses
import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

import config
from models.schemas import (
    DateRange,
    EarningsRequest,
    EarningsResponse,
    HeatmapRequest,
    HeatmapResponse,
    IntervalsRequest,
    IntervalsResponse,
    StructurePayoutsRequest,
    StructurePayoutsResponse,
)
from services.date_filters import filter_videos_by_date_range, get_date_range
from services.earnings import build_batch, compute_batch, deduplicate_videos, summarize_results
from services.heatmap import aggregate, hour_stats_from_videos, intensity_matrix
from services.intervals import generate_intervals, sum_by_interval
from services.payout import calculate_batch_payouts
from services.video_store import fetch_videos_by_account

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Creator Earnings & Engagement Analytics",
    description="Creator payouts under contract terms, chart intervals and posting heatmaps",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _bad_request(message: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"status": "error", "message": message},
    )


@app.get("/api/health")
async def health():
    return {"status": "ok"}


# ===========================================================================
# POST /api/earnings: per-creator payouts
# ===========================================================================

@app.post("/api/earnings", response_model=EarningsResponse)
async def calculate_earnings(request: EarningsRequest):
    """
    Compute earnings for every creator in the request as one batch.

    If videos_by_account is omitted, each distinct linked account's videos
    are fetched from the video store exactly once.
    """
    logger.info(
        f"EARNINGS: {len(request.creators)} creator(s), "
        f"{len(request.accounts)} account(s), {len(request.links)} link(s)"
    )

    # ------------------------------------------------------------------
    # Step 1: Resolve the date filter
    # ------------------------------------------------------------------
    date_range = request.custom_range
    if request.date_filter:
        try:
            date_range = get_date_range(request.date_filter, custom_range=request.custom_range)
        except ValueError as e:
            raise _bad_request(str(e))

    # ------------------------------------------------------------------
    # Step 2: Index the batch
    # ------------------------------------------------------------------
    batch = build_batch(
        request.creators,
        request.accounts,
        request.links,
        request.videos_by_account or {},
        date_range=date_range,
        submitted_videos=request.submitted_videos,
    )

    # ------------------------------------------------------------------
    # Step 3: Fetch from the store when videos were not supplied
    # ------------------------------------------------------------------
    if request.videos_by_account is None:
        account_ids = batch.linked_account_ids()
        logger.info(f"Step 3: fetching {len(account_ids)} account(s) from the video store...")
        fetched = await fetch_videos_by_account(account_ids)
        batch = dataclasses.replace(batch, videos_by_account=fetched)

    # ------------------------------------------------------------------
    # Steps 4 + 5: Compute and respond
    # ------------------------------------------------------------------
    results = compute_batch(batch)
    summary = summarize_results(results)
    logger.info(f"Earnings complete: {summary}")

    return EarningsResponse(
        status="success",
        results=list(results.values()),
        summary=summary,
    )


# ===========================================================================
# POST /api/structure-payouts: component-template payouts
# ===========================================================================

@app.post("/api/structure-payouts", response_model=StructurePayoutsResponse)
async def calculate_structure_payouts(request: StructurePayoutsRequest):
    """
    Evaluate each creator's payout structure over the videos supplied with it.

    Videos are deduplicated and date-filtered the same way as /api/earnings
    before the creator's totals are measured.
    """
    logger.info(f"STRUCTURE PAYOUTS: {len(request.assignments)} assignment(s)")

    date_range = request.custom_range
    if request.date_filter:
        try:
            date_range = get_date_range(request.date_filter, custom_range=request.custom_range)
        except ValueError as e:
            raise _bad_request(str(e))

    assignments = [
        assignment.model_copy(update={
            "videos": filter_videos_by_date_range(deduplicate_videos(assignment.videos), date_range),
        })
        for assignment in request.assignments
    ]
    results = calculate_batch_payouts(assignments)

    return StructurePayoutsResponse(
        status="success",
        results=results,
        summary={
            "total_creators": len(results),
            "total_payout": sum(r.total_payout for r in results),
            "capped_creators": sum(1 for r in results if r.applied_cap is not None),
        },
    )


# ===========================================================================
# POST /api/intervals: chart buckets
# ===========================================================================

@app.post("/api/intervals", response_model=IntervalsResponse)
async def build_intervals(request: IntervalsRequest):
    date_range = DateRange(start_date=request.start_date, end_date=request.end_date)
    try:
        intervals = generate_intervals(date_range, request.granularity)
        totals = sum_by_interval(request.videos, intervals, request.metric) if request.videos else []
    except ValueError as e:
        raise _bad_request(str(e))

    return IntervalsResponse(status="success", intervals=intervals, totals=totals)


# ===========================================================================
# POST /api/heatmap: hour-of-week matrix
# ===========================================================================

@app.post("/api/heatmap", response_model=HeatmapResponse)
async def build_heatmap(request: HeatmapRequest):
    records = list(request.records) + hour_stats_from_videos(request.videos)
    timezone = request.timezone or config.DEFAULT_TIMEZONE
    try:
        result = aggregate(records, request.metric, timezone)
    except ValueError as e:
        raise _bad_request(str(e))

    return HeatmapResponse(
        status="success",
        heatmap=result,
        intensity=intensity_matrix(result),
    )


# ===========================================================================
# Main entry point
# ===========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
