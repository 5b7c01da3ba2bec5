"""
Analysis models and schemas.

Every stage of the audit pipeline produces one of these records. They are
persisted as JSON on the audit row, but they are built and validated here so a
stage can never hand the orchestrator a half-filled result.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SizeTier(str, Enum):
    EMERGING = "emerging"        # < 10K subscribers
    GROWING = "growing"          # 10K - 100K
    ESTABLISHED = "established"  # 100K - 500K
    MAJOR = "major"              # 500K - 1M
    ELITE = "elite"              # 1M+


class AuditType(str, Enum):
    PROSPECT = "prospect"
    CLIENT_BASELINE = "client_baseline"


class AuditStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SectionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SectionKey(str, Enum):
    INGESTION = "ingestion"
    SERIES_DETECTION = "series_detection"
    COMPETITOR_MATCHING = "competitor_matching"
    BENCHMARKING = "benchmarking"
    OPPORTUNITY_ANALYSIS = "opportunity_analysis"
    RECOMMENDATIONS = "recommendations"
    EXECUTIVE_SUMMARY = "executive_summary"


# Pipeline declaration order.
SECTION_ORDER: List[SectionKey] = list(SectionKey)


class VideoType(str, Enum):
    SHORT = "short"
    LONG = "long"


class Quadrant(str, Enum):
    BREAKOUT = "breakout"              # High reach, healthy engagement
    HIDDEN_GEM = "hidden_gem"          # Normal reach, healthy engagement
    INVESTIGATE = "investigate"        # High reach, low engagement
    UNDERPERFORMER = "underperformer"  # Normal reach, low engagement


class BenchmarkStatus(str, Enum):
    ABOVE = "above"
    INLINE = "inline"
    BELOW = "below"


class OverallRating(str, Enum):
    OUTPERFORMING = "outperforming"
    ON_PAR = "on_par"
    BELOW_PEER_AVERAGE = "below_peer_average"


class PerformanceTrend(str, Enum):
    GROWING = "growing"
    STABLE = "stable"
    DECLINING = "declining"
    NEW = "new"


class StageCost(BaseModel):
    """Cost incurred by one external call, added to the audit totals."""
    api_calls: int = Field(default=0, ge=0)
    llm_cost: float = Field(default=0.0, ge=0)
    llm_tokens: int = Field(default=0, ge=0)


# ==================== Audit configuration ====================


class AllPeers(BaseModel):
    """Benchmark against every eligible peer in the tier."""
    kind: Literal["all"] = "all"


class ScopedPeers(BaseModel):
    """Benchmark only against peers in the given categories."""
    kind: Literal["scoped"] = "scoped"
    category_ids: List[str] = Field(default_factory=list)

    @field_validator("category_ids")
    @classmethod
    def _dedupe(cls, value: List[str]) -> List[str]:
        return sorted({str(v).strip() for v in value if str(v).strip()})


PeerScope = Annotated[Union[AllPeers, ScopedPeers], Field(discriminator="kind")]


class BrandContext(BaseModel):
    """Optional brand background used to ground prose-producing stages."""
    brand_name: Optional[str] = None
    voice: Optional[str] = None
    target_audience: Optional[str] = None
    content_pillars: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class AuditConfig(BaseModel):
    force_refresh: bool = False
    peer_scope: PeerScope = Field(default_factory=AllPeers)
    brand_context: Optional[BrandContext] = None
    max_videos: Optional[int] = Field(default=None, ge=1, le=500)


# ==================== Ingestion ====================


class TierConfig(BaseModel):
    lookback_months: int
    max_videos: int


class VideoSample(BaseModel):
    """Metrics of a single video as the analysis engines see it."""
    model_config = ConfigDict(from_attributes=True)

    youtube_video_id: str
    title: str = ""
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    duration_seconds: int = 0
    video_type: VideoType = VideoType.LONG
    published_at: Optional[datetime] = None

    @field_validator("view_count", "like_count", "comment_count", "duration_seconds", mode="before")
    @classmethod
    def _none_to_zero(cls, value):
        return 0 if value is None else value

    @field_validator("video_type", mode="before")
    @classmethod
    def _default_type(cls, value):
        return VideoType.LONG if value is None else value


class FormatMix(BaseModel):
    long_count: int = 0
    short_count: int = 0

    @property
    def has_long_form(self) -> bool:
        return self.long_count > 0

    @property
    def has_short_form(self) -> bool:
        return self.short_count > 0

    @property
    def has_both_formats(self) -> bool:
        return self.has_long_form and self.has_short_form


class ChannelSnapshot(BaseModel):
    channel_id: str
    youtube_channel_id: str
    name: str
    thumbnail_url: Optional[str] = None
    subscriber_count: int
    total_view_count: int
    video_count: int
    size_tier: SizeTier
    tier_config: TierConfig
    snapshot_date: str
    total_videos_analyzed: int
    recent_videos_90d: int
    avg_views_recent: int
    avg_engagement_recent: float
    format_mix: FormatMix
    fetched_from_youtube: bool


# ==================== Categorization ====================


class CategorizedVideo(VideoSample):
    engagement_rate: float
    views_ratio: float
    engagement_ratio: float
    is_high_reach: bool
    is_low_engagement: bool
    quadrant: Quadrant
    diagnostic: Optional[str] = None


class CategorizationBaselines(BaseModel):
    median_views: float
    median_engagement: float
    high_reach_floor: float
    low_engagement_ceiling: float


class CategorizationResult(BaseModel):
    baselines: CategorizationBaselines
    videos: List[CategorizedVideo]
    quadrant_counts: Dict[Quadrant, int]

    def in_quadrant(self, quadrant: Quadrant) -> List[CategorizedVideo]:
        return [v for v in self.videos if v.quadrant == quadrant]

    @property
    def investigate(self) -> List[CategorizedVideo]:
        return sorted(self.in_quadrant(Quadrant.INVESTIGATE), key=lambda v: v.view_count, reverse=True)


# ==================== Series detection ====================


class SeriesStats(BaseModel):
    name: str
    detection_method: Literal["pattern", "semantic"]
    pattern: Optional[str] = None
    video_ids: List[str]
    video_count: int
    total_views: int
    avg_views: int
    avg_engagement_rate: float
    first_published: Optional[datetime] = None
    last_published: Optional[datetime] = None
    cadence_days: Optional[int] = None
    performance_trend: PerformanceTrend = PerformanceTrend.STABLE


class SeriesSummary(BaseModel):
    series: List[SeriesStats] = Field(default_factory=list)
    uncategorized_count: int = 0
    total_series: int = 0

    @model_validator(mode="after")
    def _count_matches(self) -> "SeriesSummary":
        if self.total_series != len(self.series):
            raise ValueError("total_series must equal the number of series")
        return self


# ==================== Benchmarking ====================


class PeerMatch(BaseModel):
    peer_ids: List[str] = Field(default_factory=list)
    peer_names: List[str] = Field(default_factory=list)
    tier: SizeTier
    tiers_searched: List[SizeTier] = Field(default_factory=list)
    widened: bool = False
    scope: PeerScope = Field(default_factory=AllPeers)

    @property
    def peer_count(self) -> int:
        return len(self.peer_ids)


class PercentileStats(BaseModel):
    p25: float = 0.0
    median: float = 0.0
    p75: float = 0.0
    count: int = 0


class PeerBenchmarks(BaseModel):
    peer_count: int
    videos_analyzed: int
    period_days: int
    views_all: PercentileStats
    views_long_form: PercentileStats
    views_short_form: PercentileStats
    engagement_rate: PercentileStats
    upload_frequency: PercentileStats   # videos per week, one sample per peer channel
    shorts_ratio: PercentileStats       # 0..1, one sample per peer channel


class ChannelBenchmarkMetrics(BaseModel):
    avg_views: float
    avg_engagement: float
    upload_frequency: float
    shorts_ratio: float
    videos_analyzed: int


class MetricComparison(BaseModel):
    metric_name: str
    label: str
    channel_value: float
    peer_median: float
    ratio: float
    status: BenchmarkStatus


class BenchmarkComparison(BaseModel):
    comparisons: List[MetricComparison] = Field(default_factory=list)
    overall_score: Optional[float] = None
    overall_rating: Optional[OverallRating] = None


class BenchmarkData(BaseModel):
    has_benchmarks: bool
    reason: Optional[str] = None
    peer_count: int = 0
    peer_names: List[str] = Field(default_factory=list)
    tier: Optional[SizeTier] = None
    tiers_searched: List[SizeTier] = Field(default_factory=list)
    benchmarks: Optional[PeerBenchmarks] = None
    channel_metrics: Optional[ChannelBenchmarkMetrics] = None
    comparisons: List[MetricComparison] = Field(default_factory=list)
    overall_score: Optional[float] = None
    overall_rating: Optional[OverallRating] = None

    @model_validator(mode="after")
    def _consistent(self) -> "BenchmarkData":
        if not self.has_benchmarks:
            if not self.reason:
                raise ValueError("reason is required when has_benchmarks is false")
            if self.overall_score is not None:
                raise ValueError("overall_score must be empty without benchmarks")
        elif self.benchmarks is None or self.channel_metrics is None:
            raise ValueError("benchmarks and channel_metrics are required when has_benchmarks is true")
        return self


# ==================== Insights ====================


class ContentGap(BaseModel):
    gap: str
    evidence: str = ""
    potential_impact: str = "medium"
    suggested_action: str = ""


class GrowthLever(BaseModel):
    lever: str
    current_state: str = ""
    target_state: str = ""
    evidence: str = ""
    priority: str = "medium"


class MarketPotential(BaseModel):
    tier_position: str = ""
    growth_ceiling: str = ""
    key_differentiators: List[str] = Field(default_factory=list)
    biggest_risk: str = ""


class Opportunities(BaseModel):
    content_gaps: List[ContentGap] = Field(default_factory=list)
    growth_levers: List[GrowthLever] = Field(default_factory=list)
    market_potential: Optional[MarketPotential] = None
    format_mix: FormatMix = Field(default_factory=FormatMix)
    quadrant_counts: Dict[Quadrant, int] = Field(default_factory=dict)
    investigate_prompts: List[str] = Field(default_factory=list)
    source: Literal["llm", "heuristic"] = "heuristic"


class RecommendationItem(BaseModel):
    action: str
    rationale: str = ""
    evidence: str = ""
    impact: str = "medium"
    effort: Optional[str] = None


class Recommendations(BaseModel):
    stop: List[RecommendationItem] = Field(default_factory=list)
    start: List[RecommendationItem] = Field(default_factory=list)
    optimize: List[RecommendationItem] = Field(default_factory=list)
    source: Literal["llm", "heuristic"] = "heuristic"
    incomplete: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.stop or self.start or self.optimize)


class ExecutiveSummary(BaseModel):
    text: str
    source: Literal["llm", "heuristic"] = "heuristic"

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("executive summary text is empty")
        return value
