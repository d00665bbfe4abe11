"""
Payout evaluation — contract terms + video metrics → dollar total.

CRITICAL: Payout is calculated PER VIDEO, then summed.
Each video in the evaluated set earns an amount under the creator's terms;
the creator total is the sum of those amounts.

Per-video rules (one function per PaymentTerms variant):
  flat_fee               → base_amount
  base_cpm               → base_amount + (views / 1,000) × cpm_rate
  base_guaranteed_views  → base_amount if views >= guaranteed_views, else $0
  cpc                    → clicks × cpc_rate
  revenue_share          → revenue × (revenue_share_percentage / 100)
  retainer               → $0 (monthly, not per video; the flat amount is
                           reported as retainer_amount and NOT summed)

Missing data never propagates: absent counts/rates are $0, no terms at all
is a $0 result, and nothing here raises for normal input.

Payout structures (component templates) are evaluated on the creator's
totals rather than per video:
  base / flat    → amount
  cpm            → (metric / 1,000) × rate, $0 below min_threshold, clamped to cap
  bonus          → amount when its condition holds (gt, gte, lt, lte, eq)
  bonus_tiered   → amount of the highest tier whose condition holds
Each component is rounded to cents; only components paying more than $0 are
listed, and the total is clamped to the structure's max_payout.
"""

import logging
import math
import operator
from typing import Callable, Optional, get_args

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from models.schemas import (
    PaymentTerms,
    FlatFeeTerms,
    BaseCpmTerms,
    BaseGuaranteedViewsTerms,
    CpcTerms,
    RevenueShareTerms,
    RetainerTerms,
    VideoMetric,
    VideoEarning,
    EarningsResult,
    PayoutComponent,
    FlatComponent,
    CpmComponent,
    BonusComponent,
    TieredBonusComponent,
    PayoutCondition,
    PayoutStructure,
    StructureAssignment,
    CreatorPerformance,
    ComponentPayout,
    AppliedCap,
    StructurePayoutResult,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
VIEWS_PER_MILLE = 1_000


# ===========================================================================
# Per-variant evaluation
# ===========================================================================

def _flat_fee(terms: FlatFeeTerms, video: VideoMetric) -> float:
    return terms.base_amount


def _base_cpm(terms: BaseCpmTerms, video: VideoMetric) -> float:
    return terms.base_amount + (video.views / VIEWS_PER_MILLE) * terms.cpm_rate


def _base_guaranteed_views(terms: BaseGuaranteedViewsTerms, video: VideoMetric) -> float:
    # Boundary is inclusive: exactly guaranteed_views qualifies
    if video.views >= terms.guaranteed_views:
        return terms.base_amount
    return 0.0


def _cpc(terms: CpcTerms, video: VideoMetric) -> float:
    return (video.clicks or 0) * terms.cpc_rate


def _revenue_share(terms: RevenueShareTerms, video: VideoMetric) -> float:
    return (video.revenue or 0.0) * (terms.revenue_share_percentage / 100)


def _retainer(terms: RetainerTerms, video: VideoMetric) -> float:
    return 0.0


_EVALUATORS: dict[type, Callable[..., float]] = {
    FlatFeeTerms: _flat_fee,
    BaseCpmTerms: _base_cpm,
    BaseGuaranteedViewsTerms: _base_guaranteed_views,
    CpcTerms: _cpc,
    RevenueShareTerms: _revenue_share,
    RetainerTerms: _retainer,
}

# Every PaymentTerms variant must have an evaluator (checked at import)
_TERM_VARIANTS = set(get_args(get_args(PaymentTerms)[0]))
_missing = _TERM_VARIANTS - set(_EVALUATORS)
if _missing:
    raise RuntimeError(
        f"No payout evaluator for term type(s): {sorted(t.__name__ for t in _missing)}"
    )


# ===========================================================================
# Public API
# ===========================================================================

def calculate_video_amount(terms: Optional[PaymentTerms], video: VideoMetric) -> float:
    """
    Dollar amount one video earns under the given terms.

    Returns 0.0 when terms is None or of a type with no evaluator.
    """
    if terms is None:
        return 0.0
    evaluator = _EVALUATORS.get(type(terms))
    if evaluator is None:
        logger.warning(f"No evaluator for terms {type(terms).__name__}, paying $0")
        return 0.0
    return evaluator(terms, video)


def evaluate(terms: Optional[PaymentTerms], videos: list[VideoMetric]) -> EarningsResult:
    """
    Evaluate a creator's payment terms over a set of videos.

    Iterates the videos once; each video's amount goes into both
    total_earnings and per_video (in input order, $0 entries included).

    Args:
        terms:  The creator's PaymentTerms variant, or None if no terms are set
        videos: The (already deduplicated, already date-filtered) video set

    Returns:
        EarningsResult. For retainer terms total_earnings is 0 and the
        flat amount is reported separately as retainer_amount.
    """
    if terms is None:
        logger.debug(f"No payment terms, {len(videos)} video(s) earn $0")
        return EarningsResult()

    total = 0.0
    per_video: list[VideoEarning] = []

    for video in videos:
        amount = calculate_video_amount(terms, video)
        total += amount
        per_video.append(VideoEarning(video_id=video.dedup_key, amount=amount))

        logger.debug(
            f"  [{terms.type}] {video.dedup_key}: "
            f"views={video.views:,} → ${amount:,.2f}"
        )

    retainer_amount = terms.retainer_amount if isinstance(terms, RetainerTerms) else 0.0

    logger.debug(
        f"Evaluated {summarize_terms(terms)} over {len(videos)} video(s): "
        f"total=${total:,.2f}"
        + (f", retainer=${retainer_amount:,.2f} (not summed)" if retainer_amount else "")
    )

    return EarningsResult(
        total_earnings=total,
        per_video=per_video,
        retainer_amount=retainer_amount,
    )


def summarize_terms(terms: Optional[PaymentTerms]) -> str:
    """Human-readable one-liner for a set of terms, e.g. '$200.00 + $10.00 CPM'."""
    if terms is None:
        return "no terms"
    if isinstance(terms, FlatFeeTerms):
        return f"${terms.base_amount:,.2f} per video"
    if isinstance(terms, BaseCpmTerms):
        return f"${terms.base_amount:,.2f} + ${terms.cpm_rate:,.2f} CPM"
    if isinstance(terms, BaseGuaranteedViewsTerms):
        return (
            f"${terms.base_amount:,.2f} per video at "
            f"{terms.guaranteed_views:,.0f}+ views"
        )
    if isinstance(terms, CpcTerms):
        return f"${terms.cpc_rate:,.2f} per click"
    if isinstance(terms, RevenueShareTerms):
        return f"{terms.revenue_share_percentage:g}% revenue share"
    if isinstance(terms, RetainerTerms):
        return f"${terms.retainer_amount:,.2f} monthly retainer"
    return terms.type


# ===========================================================================
# Payout structures (component templates)
# ===========================================================================

# Metric → CreatorPerformance field
_PERFORMANCE_FIELDS = {
    "views": "total_views",
    "likes": "total_likes",
    "comments": "total_comments",
    "shares": "total_shares",
    "engagement": "total_engagement",
    "engagement_rate": "engagement_rate",
    "video_count": "video_count",
}

METRIC_LABELS = {
    "views": "views",
    "likes": "likes",
    "comments": "comments",
    "shares": "shares",
    "engagement": "engagements",
    "engagement_rate": "% engagement",
    "video_count": "videos",
}

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "eq": operator.eq,
}


def calculate_performance(videos: list[VideoMetric], creator_id: str = "") -> CreatorPerformance:
    """Totals and engagement rate over a creator's (deduplicated) videos."""
    total_views = sum(v.views for v in videos)
    total_likes = sum(v.likes for v in videos)
    total_comments = sum(v.comments for v in videos)
    total_shares = sum(v.shares for v in videos)
    total_engagement = total_likes + total_comments + total_shares

    return CreatorPerformance(
        creator_id=creator_id,
        video_count=len(videos),
        total_views=total_views,
        total_likes=total_likes,
        total_comments=total_comments,
        total_shares=total_shares,
        total_engagement=total_engagement,
        engagement_rate=(total_engagement / total_views) * 100 if total_views > 0 else 0.0,
    )


def _metric_value(metric: str, performance: CreatorPerformance) -> float:
    return getattr(performance, _PERFORMANCE_FIELDS[metric])


def _check_condition(condition: PayoutCondition, performance: CreatorPerformance) -> bool:
    return _OPERATORS[condition.operator](_metric_value(condition.metric, performance), condition.value)


def _format_number(value: float) -> str:
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{value:.0f}"


def _format_condition(condition: PayoutCondition, performance: CreatorPerformance) -> str:
    value = _metric_value(condition.metric, performance)
    return (
        f"{_format_number(value)} {METRIC_LABELS[condition.metric]} "
        f"(target: {_format_number(condition.value)})"
    )


def _round_cents(amount: float) -> float:
    # Half-up, e.g. 0.125 → 0.13
    return math.floor(amount * 100 + 0.5) / 100


# Each component evaluator returns (amount, details, pre-cap amount or None)
_ComponentAmount = tuple[float, str, Optional[float]]


def _flat_component(component: FlatComponent, performance: CreatorPerformance) -> _ComponentAmount:
    return component.amount, f"Flat payment: ${component.amount:,.2f}", None


def _cpm_component(component: CpmComponent, performance: CreatorPerformance) -> _ComponentAmount:
    value = _metric_value(component.metric, performance)
    amount = 0.0
    if value >= component.min_threshold:
        amount = (value / VIEWS_PER_MILLE) * component.rate

    details = f"CPM: {_format_number(value)} {component.metric} @ ${component.rate:,.2f}/1K"
    if component.cap and amount > component.cap:
        return component.cap, f"{details} (capped at ${component.cap:,.2f})", amount
    return amount, details, None


def _bonus_component(component: BonusComponent, performance: CreatorPerformance) -> _ComponentAmount:
    if component.condition is None or not _check_condition(component.condition, performance):
        return 0.0, "", None
    return component.amount, f"Bonus: {_format_condition(component.condition, performance)}", None


def _tiered_bonus_component(
    component: TieredBonusComponent,
    performance: CreatorPerformance,
) -> _ComponentAmount:
    """Highest tier (by target value) whose condition is met; one tier at most."""
    if not component.tiers:
        return 0.0, "No tiers defined", None

    for tier in sorted(component.tiers, key=lambda t: t.condition.value, reverse=True):
        if _check_condition(tier.condition, performance):
            details = (
                f"Tier bonus: {_format_condition(tier.condition, performance)} "
                f"→ ${tier.amount:,.2f}"
            )
            return tier.amount, details, None

    return 0.0, "No tier threshold met", None


_COMPONENT_EVALUATORS: dict[type, Callable[..., _ComponentAmount]] = {
    FlatComponent: _flat_component,
    CpmComponent: _cpm_component,
    BonusComponent: _bonus_component,
    TieredBonusComponent: _tiered_bonus_component,
}

# Every PayoutComponent variant must have an evaluator (checked at import)
_COMPONENT_VARIANTS = set(get_args(get_args(PayoutComponent)[0]))
_missing = _COMPONENT_VARIANTS - set(_COMPONENT_EVALUATORS)
if _missing:
    raise RuntimeError(
        f"No payout evaluator for component type(s): {sorted(t.__name__ for t in _missing)}"
    )


def _apply_override(component: PayoutComponent, override: Optional[dict]) -> PayoutComponent:
    """
    Component with one creator's replacement field values.

    Override keys may be camelCase or snake_case. The component type cannot
    be overridden; an override that does not validate is ignored.
    """
    if not override:
        return component

    fields = component.model_dump()
    fields.update({to_snake(str(key)): value for key, value in override.items()})
    fields["type"] = component.type

    try:
        return type(component).model_validate(fields)
    except ValidationError as e:
        logger.warning(
            f"Ignoring override for component '{component.id}': "
            f"{e.error_count()} validation error(s)"
        )
        return component


def calculate_component(
    component: PayoutComponent,
    performance: CreatorPerformance,
    override: Optional[dict] = None,
) -> ComponentPayout:
    """
    Amount one component pays for the given performance.

    The amount is rounded to cents. id, name and type always come from the
    component itself, even when an override is applied.
    """
    effective = _apply_override(component, override)
    amount, details, original_amount = _COMPONENT_EVALUATORS[type(effective)](effective, performance)

    return ComponentPayout(
        component_id=component.id,
        component_name=component.name,
        type=component.type,
        amount=_round_cents(amount),
        details=details,
        was_capped=original_amount is not None,
        original_amount=_round_cents(original_amount) if original_amount is not None else None,
    )


def calculate_creator_payout(
    creator_id: str,
    structure: PayoutStructure,
    performance: CreatorPerformance,
    overrides: Optional[dict[str, dict]] = None,
) -> StructurePayoutResult:
    """
    Evaluate every component of a structure for one creator.

    Steps:
      1. Evaluate each component (with the creator's override for its id)
      2. Keep components that pay more than $0 in the breakdown
      3. Clamp the total to structure.max_payout, reporting the cap applied

    Args:
        creator_id:  Creator being paid
        structure:   The payout template
        performance: Totals from calculate_performance()
        overrides:   {component_id: {field: value}} for this creator
    """
    overrides = overrides or {}
    breakdown: list[ComponentPayout] = []
    total = 0.0

    for component in structure.components:
        payout = calculate_component(component, performance, overrides.get(component.id))
        if payout.amount > 0:
            breakdown.append(payout)
            total += payout.amount
        logger.debug(f"  [{component.type}] {component.name or component.id}: ${payout.amount:,.2f}")

    total = _round_cents(total)
    applied_cap = None
    if structure.max_payout and total > structure.max_payout:
        applied_cap = AppliedCap(max_payout=structure.max_payout, original_total=total)
        logger.info(
            f"Creator {creator_id}: ${total:,.2f} capped at ${structure.max_payout:,.2f} "
            f"by structure '{structure.name or structure.id}'"
        )
        total = structure.max_payout

    return StructurePayoutResult(
        creator_id=creator_id,
        total_payout=total,
        component_breakdown=breakdown,
        applied_cap=applied_cap,
        performance=performance,
    )


def evaluate_structure(
    structure: PayoutStructure,
    videos: list[VideoMetric],
    creator_id: str = "",
    overrides: Optional[dict[str, dict]] = None,
) -> StructurePayoutResult:
    """calculate_performance() over the videos, then calculate_creator_payout()."""
    performance = calculate_performance(videos, creator_id)
    return calculate_creator_payout(creator_id, structure, performance, overrides)


def calculate_batch_payouts(assignments: list[StructureAssignment]) -> list[StructurePayoutResult]:
    """One StructurePayoutResult per assignment, in input order."""
    results = [
        evaluate_structure(a.structure, a.videos, a.creator_id, a.overrides)
        for a in assignments
    ]
    logger.info(
        f"Structure payouts: {len(results)} creator(s), "
        f"total=${sum(r.total_payout for r in results):,.2f}"
    )
    return results


# ===========================================================================
# Standalone test: run with: cd backend && python -m services.payout
# ===========================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG, format="%(levelname)s: %(message)s")

    print("=" * 60)
    print("PAYOUT TERMS SANITY CHECK")
    print("=" * 60)

    video = VideoMetric(id="v1", views=50_000, clicks=120, revenue=400.0)
    test_cases = [
        (FlatFeeTerms(base_amount=150), 150.0),
        (BaseCpmTerms(base_amount=200, cpm_rate=10), 700.0),
        (BaseGuaranteedViewsTerms(base_amount=100, guaranteed_views=50_000), 100.0),
        (BaseGuaranteedViewsTerms(base_amount=100, guaranteed_views=50_001), 0.0),
        (CpcTerms(cpc_rate=0.5), 60.0),
        (RevenueShareTerms(revenue_share_percentage=25), 100.0),
        (RetainerTerms(retainer_amount=2_000), 0.0),
    ]

    all_pass = True
    for terms, expected in test_cases:
        actual = evaluate(terms, [video]).total_earnings
        status = "PASS" if actual == expected else "FAIL"
        if status == "FAIL":
            all_pass = False
        print(f"  {status}: {summarize_terms(terms):<40} → ${actual:,.2f} (expected ${expected:,.2f})")

    print(f"\n{'All tests passed!' if all_pass else 'SOME TESTS FAILED!'}")
