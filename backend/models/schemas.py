"""
Pydantic models for the creator earnings & engagement analytics backend.

Models:
  - VideoMetric: One observed video at one point in time (from the video store)
  - PaymentTerms: A creator's contracted payout rule (closed union over `type`)
  - CreatorProfile / TrackedAccount / CreatorAccountLink: orchestrator inputs
  - AccountFetchError: sentinel for one account whose videos could not be fetched
  - EarningsResult / CreatorEarnings: payout outputs
  - PayoutStructure: component template (flat, CPM, bonus, tiered bonus) with
    optional caps; StructurePayoutResult: its per-creator breakdown
  - DateRange / Interval / IntervalTotal: time-bucket outputs for charts
  - HourStat / HeatmapCell / HeatmapResult: hour-of-week heatmap
  - *Request / *Response: API request/response models
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

Granularity = Literal["day", "week", "month", "year"]
HeatmapMetric = Literal["views", "likes", "comments", "shares"]

GRANULARITIES: tuple[str, ...] = ("day", "week", "month", "year")
ENGAGEMENT_METRICS: tuple[str, ...] = ("views", "likes", "comments", "shares")


# ---------------------------------------------------------------------------
# Lenient coercion helpers: bad upstream data becomes a neutral value
# ---------------------------------------------------------------------------

def _coerce_count(value) -> int:
    """None, junk, negative or non-finite → 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


def _coerce_amount(value) -> float:
    """Money/rate fields: None, junk, negative or non-finite → 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _coerce_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        logger.debug(f"Could not parse datetime: {repr(value)}")
        return None


def comparable_datetime(moment: datetime, reference: datetime) -> datetime:
    """Make moment comparable with reference (naive ↔ aware, via UTC)."""
    if (moment.tzinfo is None) == (reference.tzinfo is None):
        return moment
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# VideoMetric: one observed video at one point in time
#
# Identity (dedup_key): id → url → (platform, uploader_handle, upload_timestamp)
# ---------------------------------------------------------------------------
class VideoMetric(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    url: Optional[str] = None
    platform: str = ""
    uploader_handle: str = ""
    upload_timestamp: Optional[datetime] = None
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    clicks: Optional[int] = None
    revenue: Optional[float] = None
    title: Optional[str] = None
    thumbnail_url: Optional[str] = None
    tracked_account_id: Optional[str] = None
    added_by: Optional[str] = None  # creator id for direct submissions
    last_refreshed_at: Optional[datetime] = None

    @field_validator("id", "url", "tracked_account_id", "added_by", mode="before")
    @classmethod
    def _optional_text(cls, value):
        return None if value is None else str(value)

    @field_validator("platform", "uploader_handle", mode="before")
    @classmethod
    def _text(cls, value):
        return "" if value is None else str(value).strip()

    @field_validator("views", "likes", "comments", "shares", mode="before")
    @classmethod
    def _non_negative_count(cls, value):
        return _coerce_count(value)

    @field_validator("clicks", mode="before")
    @classmethod
    def _optional_count(cls, value):
        return None if value is None else _coerce_count(value)

    @field_validator("revenue", mode="before")
    @classmethod
    def _optional_amount(cls, value):
        return None if value is None else _coerce_amount(value)

    @field_validator("upload_timestamp", "last_refreshed_at", mode="before")
    @classmethod
    def _lenient_datetime(cls, value):
        return _coerce_datetime(value)

    @property
    def dedup_key(self) -> str:
        if self.id:
            return self.id
        if self.url:
            return self.url
        uploaded = self.upload_timestamp.isoformat() if self.upload_timestamp else ""
        return f"{self.platform}|{self.uploader_handle}|{uploaded}"


# ---------------------------------------------------------------------------
# PaymentTerms: closed tagged union, one class per contract type.
# Field names accept both snake_case and the stored camelCase form.
# ---------------------------------------------------------------------------
class _PaymentTermsBase(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    @field_validator(
        "base_amount",
        "cpm_rate",
        "guaranteed_views",
        "cpc_rate",
        "revenue_share_percentage",
        "retainer_amount",
        mode="before",
        check_fields=False,
    )
    @classmethod
    def _non_negative_amount(cls, value):
        return _coerce_amount(value)


class FlatFeeTerms(_PaymentTermsBase):
    type: Literal["flat_fee"] = "flat_fee"
    base_amount: float = 0.0


class BaseCpmTerms(_PaymentTermsBase):
    type: Literal["base_cpm"] = "base_cpm"
    base_amount: float = 0.0
    cpm_rate: float = 0.0


class BaseGuaranteedViewsTerms(_PaymentTermsBase):
    type: Literal["base_guaranteed_views"] = "base_guaranteed_views"
    base_amount: float = 0.0
    guaranteed_views: float = 0.0


class CpcTerms(_PaymentTermsBase):
    type: Literal["cpc"] = "cpc"
    cpc_rate: float = 0.0


class RevenueShareTerms(_PaymentTermsBase):
    type: Literal["revenue_share"] = "revenue_share"
    revenue_share_percentage: float = 0.0


class RetainerTerms(_PaymentTermsBase):
    type: Literal["retainer"] = "retainer"
    retainer_amount: float = 0.0


PaymentTerms = Annotated[
    Union[
        FlatFeeTerms,
        BaseCpmTerms,
        BaseGuaranteedViewsTerms,
        CpcTerms,
        RevenueShareTerms,
        RetainerTerms,
    ],
    Field(discriminator="type"),
]

_payment_terms_adapter = TypeAdapter(PaymentTerms)


def parse_payment_terms(raw) -> Optional[PaymentTerms]:
    """
    Turn free-form stored contract terms into a PaymentTerms variant.

    Returns None (a neutral "no terms" result) for empty input or an
    unrecognized type, so a single bad profile never halts a batch.
    """
    if raw is None:
        return None
    if isinstance(raw, _PaymentTermsBase):
        return raw
    if not isinstance(raw, dict) or not raw.get("type"):
        logger.warning(f"Payment terms without a type, treating as none: {repr(raw)[:200]}")
        return None
    try:
        return _payment_terms_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(
            f"Unrecognized payment terms type '{raw.get('type')}', "
            f"treating as none ({e.error_count()} validation error(s))"
        )
        return None


# ---------------------------------------------------------------------------
# Orchestrator inputs
# ---------------------------------------------------------------------------
class CreatorProfile(BaseModel):
    id: str
    display_name: Optional[str] = None
    payment_terms: Optional[PaymentTerms] = None

    @field_validator("payment_terms", mode="before")
    @classmethod
    def _parse_terms(cls, value):
        return parse_payment_terms(value)


class TrackedAccount(BaseModel):
    id: str
    platform: str = ""
    username: str = ""
    display_name: Optional[str] = None


class CreatorAccountLink(BaseModel):
    creator_id: str
    account_id: str


class AccountFetchError(BaseModel):
    """Stands in for an account's video list when its fetch failed."""
    account_id: str = ""
    error: str = "fetch failed"


# ---------------------------------------------------------------------------
# Payout outputs
# ---------------------------------------------------------------------------
class VideoEarning(BaseModel):
    video_id: str
    amount: float = 0.0


class EarningsResult(BaseModel):
    total_earnings: float = 0.0
    per_video: list[VideoEarning] = Field(default_factory=list)
    # Flat periodic amount from retainer terms; never part of total_earnings
    retainer_amount: float = 0.0


class CreatorEarnings(EarningsResult):
    creator_id: str
    video_count: int = 0
    total_views: int = 0
    partial: bool = False  # True when a linked account's videos were unavailable


# ---------------------------------------------------------------------------
# PayoutStructure: reusable template of payout components.
# Components are a closed tagged union like PaymentTerms and read the same
# camelCase / snake_case field names. Unknown component types are dropped.
# ---------------------------------------------------------------------------
PayoutMetric = Literal[
    "views",
    "likes",
    "comments",
    "shares",
    "engagement",
    "engagement_rate",
    "video_count",
]
ConditionOperator = Literal["gt", "gte", "lt", "lte", "eq"]

# Symbolic operators as stored by the structure editor
_OPERATOR_SYMBOLS = {">": "gt", ">=": "gte", "<": "lt", "<=": "lte", "=": "eq", "==": "eq"}


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class PayoutCondition(_CamelModel):
    metric: PayoutMetric = "views"
    operator: ConditionOperator = "gte"
    value: float = 0.0

    @field_validator("operator", mode="before")
    @classmethod
    def _operator_name(cls, value):
        if value is None:
            return "gte"
        if isinstance(value, str):
            return _OPERATOR_SYMBOLS.get(value, value)
        return value

    @field_validator("value", mode="before")
    @classmethod
    def _finite_value(cls, value):
        return _coerce_amount(value)


class PayoutTier(_CamelModel):
    condition: PayoutCondition
    amount: float = 0.0

    @field_validator("amount", mode="before")
    @classmethod
    def _non_negative_amount(cls, value):
        return _coerce_amount(value)


class _PayoutComponentBase(_CamelModel):
    id: str = ""
    name: str = ""
    description: Optional[str] = None

    @field_validator("id", "name", mode="before")
    @classmethod
    def _text(cls, value):
        return "" if value is None else str(value)

    @field_validator("amount", "rate", "min_threshold", mode="before", check_fields=False)
    @classmethod
    def _non_negative_amount(cls, value):
        return _coerce_amount(value)

    @field_validator("cap", mode="before", check_fields=False)
    @classmethod
    def _optional_cap(cls, value):
        return None if value is None else _coerce_amount(value)


class FlatComponent(_PayoutComponentBase):
    type: Literal["base", "flat"] = "flat"
    amount: float = 0.0


class CpmComponent(_PayoutComponentBase):
    type: Literal["cpm"] = "cpm"
    metric: PayoutMetric = "views"
    rate: float = 0.0               # $ per 1,000 of metric
    min_threshold: float = 0.0      # metric below this pays nothing
    cap: Optional[float] = None     # None or 0 = uncapped


class BonusComponent(_PayoutComponentBase):
    type: Literal["bonus"] = "bonus"
    amount: float = 0.0
    condition: Optional[PayoutCondition] = None  # no condition = never paid


class TieredBonusComponent(_PayoutComponentBase):
    type: Literal["bonus_tiered"] = "bonus_tiered"
    metric: PayoutMetric = "views"
    tiers: list[PayoutTier] = Field(default_factory=list)

    @field_validator("tiers", mode="before")
    @classmethod
    def _threshold_tiers(cls, value, info):
        """Accept {"threshold": n, "amount": x} tiers measured on the component metric."""
        if not isinstance(value, list):
            return value
        metric = info.data.get("metric", "views")
        return [
            {"condition": {"metric": metric, "value": tier["threshold"]}, "amount": tier.get("amount")}
            if isinstance(tier, dict) and "threshold" in tier and "condition" not in tier
            else tier
            for tier in value
        ]


PayoutComponent = Annotated[
    Union[
        FlatComponent,
        CpmComponent,
        BonusComponent,
        TieredBonusComponent,
    ],
    Field(discriminator="type"),
]

_payout_component_adapter = TypeAdapter(PayoutComponent)


def parse_payout_component(raw) -> Optional[PayoutComponent]:
    """Stored component → PayoutComponent variant, or None if it cannot be used."""
    if isinstance(raw, _PayoutComponentBase):
        return raw
    if not isinstance(raw, dict) or not raw.get("type"):
        logger.warning(f"Payout component without a type, skipped: {repr(raw)[:200]}")
        return None
    try:
        return _payout_component_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(
            f"Unusable payout component '{raw.get('id', '')}' of type '{raw.get('type')}', "
            f"skipped ({e.error_count()} validation error(s))"
        )
        return None


class PayoutStructure(_CamelModel):
    id: str = ""
    name: str = ""
    components: list[PayoutComponent] = Field(default_factory=list)
    max_payout: Optional[float] = None  # structure-level cap; None or 0 = uncapped

    @field_validator("components", mode="before")
    @classmethod
    def _usable_components(cls, value):
        if value is None:
            return []
        parsed = (parse_payout_component(raw) for raw in value)
        return [component for component in parsed if component is not None]

    @field_validator("max_payout", mode="before")
    @classmethod
    def _optional_cap(cls, value):
        return None if value is None else _coerce_amount(value)


class CreatorPerformance(BaseModel):
    creator_id: str = ""
    video_count: int = 0
    total_views: int = 0
    total_likes: int = 0
    total_comments: int = 0
    total_shares: int = 0
    total_engagement: int = 0    # likes + comments + shares
    engagement_rate: float = 0.0  # percent of views


class ComponentPayout(BaseModel):
    component_id: str
    component_name: str
    type: str
    amount: float = 0.0
    details: str = ""
    was_capped: bool = False
    original_amount: Optional[float] = None  # pre-cap amount when was_capped


class AppliedCap(BaseModel):
    max_payout: float
    original_total: float


class StructurePayoutResult(BaseModel):
    creator_id: str
    total_payout: float = 0.0
    component_breakdown: list[ComponentPayout] = Field(default_factory=list)
    applied_cap: Optional[AppliedCap] = None
    performance: CreatorPerformance


# ---------------------------------------------------------------------------
# Time buckets
# ---------------------------------------------------------------------------
class DateRange(BaseModel):
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def _match_awareness(self):
        # end_date follows start_date: both naive or both aware
        self.end_date = comparable_datetime(self.end_date, self.start_date)
        return self


class Interval(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: datetime  # inclusive
    end_date: datetime    # exclusive
    label: str
    timestamp: int        # epoch milliseconds of start_date
    granularity: Granularity


class IntervalTotal(BaseModel):
    interval: Interval
    value: int = 0
    video_count: int = 0


# ---------------------------------------------------------------------------
# Hour-of-week heatmap
# ---------------------------------------------------------------------------
class HeatmapVideo(BaseModel):
    id: str
    title: str = ""
    thumbnail_url: Optional[str] = None
    views: int = 0

    @field_validator("views", mode="before")
    @classmethod
    def _non_negative_views(cls, value):
        return _coerce_count(value)


class HourStat(BaseModel):
    timestamp: datetime
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    videos: list[HeatmapVideo] = Field(default_factory=list)

    @field_validator("views", "likes", "comments", "shares", mode="before")
    @classmethod
    def _non_negative_count(cls, value):
        return _coerce_count(value)


class HourRange(BaseModel):
    start: datetime
    end: datetime


class HeatmapCell(BaseModel):
    metric_total: int = 0
    count_videos: int = 0
    videos: list[HeatmapVideo] = Field(default_factory=list)  # top 3
    range: Optional[HourRange] = None  # window of the last record folded in


class HeatmapResult(BaseModel):
    metric: HeatmapMetric
    timezone: Optional[str] = None
    matrix: list[list[int]]              # [hour 0-23][weekday 0-6, Sunday=0]
    cells: list[list[HeatmapCell]]
    global_min: int = 0
    global_max: int = 0


# ---------------------------------------------------------------------------
# API request / response models
# ---------------------------------------------------------------------------
class EarningsRequest(BaseModel):
    creators: list[CreatorProfile]
    accounts: list[TrackedAccount] = Field(default_factory=list)
    links: list[CreatorAccountLink] = Field(default_factory=list)
    # None → fetch from the video store
    videos_by_account: Optional[dict[str, Union[list[VideoMetric], AccountFetchError]]] = None
    submitted_videos: list[VideoMetric] = Field(default_factory=list)
    date_filter: Optional[str] = None  # preset name, e.g. "last30days"
    custom_range: Optional[DateRange] = None


class EarningsResponse(BaseModel):
    status: str
    results: list[CreatorEarnings]
    summary: dict


class IntervalsRequest(BaseModel):
    start_date: datetime
    end_date: datetime
    granularity: str = "day"
    videos: list[VideoMetric] = Field(default_factory=list)
    metric: str = "views"


class IntervalsResponse(BaseModel):
    status: str
    intervals: list[Interval]
    totals: list[IntervalTotal] = Field(default_factory=list)


class HeatmapRequest(BaseModel):
    records: list[HourStat] = Field(default_factory=list)
    videos: list[VideoMetric] = Field(default_factory=list)
    metric: str = "views"
    timezone: Optional[str] = None


class HeatmapResponse(BaseModel):
    status: str
    heatmap: HeatmapResult
    intensity: list[list[float]]


class StructureAssignment(BaseModel):
    creator_id: str
    structure: PayoutStructure
    videos: list[VideoMetric] = Field(default_factory=list)
    # component id → replacement field values for this creator
    overrides: dict[str, dict] = Field(default_factory=dict)


class StructurePayoutsRequest(BaseModel):
    assignments: list[StructureAssignment]
    date_filter: Optional[str] = None
    custom_range: Optional[DateRange] = None


class StructurePayoutsResponse(BaseModel):
    status: str
    results: list[StructurePayoutResult]
    summary: dict
