"""
Peer benchmark math.

Peer selection lives in services/peer_benchmark.py; everything here is a pure
function of the samples it is given.
"""

from datetime import datetime
from typing import List, Mapping, Optional, Sequence

from .categorization import engagement_rate
from .dates import within_days
from .models import (
    BenchmarkComparison,
    BenchmarkData,
    BenchmarkStatus,
    ChannelBenchmarkMetrics,
    MetricComparison,
    OverallRating,
    PeerBenchmarks,
    PeerMatch,
    ScopedPeers,
    VideoSample,
    VideoType,
)
from .stats import mean, percentile_stats


ABOVE_RATIO = 1.2
BELOW_RATIO = 0.8

METRIC_LABELS = {
    "avg_views": "Average Views per Video",
    "engagement_rate": "Engagement Rate",
    "upload_frequency": "Upload Frequency (per week)",
}


def classify_ratio(ratio: float) -> BenchmarkStatus:
    if ratio >= ABOVE_RATIO:
        return BenchmarkStatus.ABOVE
    if ratio <= BELOW_RATIO:
        return BenchmarkStatus.BELOW
    return BenchmarkStatus.INLINE


def rate_overall(score: float) -> OverallRating:
    if score >= ABOVE_RATIO:
        return OverallRating.OUTPERFORMING
    if score >= BELOW_RATIO:
        return OverallRating.ON_PAR
    return OverallRating.BELOW_PEER_AVERAGE


def compare_metric(metric_name: str, channel_value: float, peer_median: float) -> Optional[MetricComparison]:
    """Compare one metric; None when the peer median is zero and no ratio exists."""
    if not peer_median or peer_median <= 0:
        return None
    ratio = channel_value / peer_median
    return MetricComparison(
        metric_name=metric_name,
        label=METRIC_LABELS.get(metric_name, metric_name),
        channel_value=channel_value,
        peer_median=peer_median,
        ratio=round(ratio, 2),
        status=classify_ratio(ratio),
    )


def _weekly_rate(count: int, window_days: int) -> float:
    return count / (window_days / 7) if window_days > 0 else 0.0


def channel_metrics(
    videos: Sequence[VideoSample],
    window_days: int,
    now: Optional[datetime] = None,
) -> ChannelBenchmarkMetrics:
    """The audited channel's own numbers over the benchmark window."""
    recent = [v for v in videos if within_days(v.published_at, window_days, now)]
    shorts = sum(1 for v in recent if v.video_type == VideoType.SHORT)
    return ChannelBenchmarkMetrics(
        avg_views=float(round(mean(v.view_count for v in recent))),
        avg_engagement=mean(engagement_rate(v) for v in recent),
        upload_frequency=round(_weekly_rate(len(recent), window_days), 2),
        shorts_ratio=round(shorts / len(recent), 4) if recent else 0.0,
        videos_analyzed=len(recent),
    )


def compute_peer_benchmarks(
    peer_videos: Mapping[str, Sequence[VideoSample]],
    peer_count: int,
    window_days: int,
    now: Optional[datetime] = None,
) -> Optional[PeerBenchmarks]:
    """
    Percentile statistics over the pooled peer sample.

    View and engagement statistics pool every recent peer video. Upload
    frequency and shorts ratio take one sample per peer channel that
    published inside the window. Returns None when no peer published.
    """
    pooled: List[VideoSample] = []
    frequencies: List[float] = []
    shorts_ratios: List[float] = []

    for videos in peer_videos.values():
        recent = [v for v in videos if within_days(v.published_at, window_days, now)]
        if not recent:
            continue
        pooled.extend(recent)
        frequencies.append(_weekly_rate(len(recent), window_days))
        shorts_ratios.append(sum(1 for v in recent if v.video_type == VideoType.SHORT) / len(recent))

    if not pooled:
        return None

    return PeerBenchmarks(
        peer_count=peer_count,
        videos_analyzed=len(pooled),
        period_days=window_days,
        views_all=percentile_stats(v.view_count for v in pooled),
        views_long_form=percentile_stats(v.view_count for v in pooled if v.video_type == VideoType.LONG),
        views_short_form=percentile_stats(v.view_count for v in pooled if v.video_type == VideoType.SHORT),
        engagement_rate=percentile_stats(engagement_rate(v) for v in pooled),
        upload_frequency=percentile_stats(frequencies),
        shorts_ratio=percentile_stats(shorts_ratios),
    )


def compare_against_benchmarks(
    metrics: ChannelBenchmarkMetrics,
    benchmarks: PeerBenchmarks,
) -> BenchmarkComparison:
    candidates = [
        compare_metric("avg_views", metrics.avg_views, benchmarks.views_all.median),
        compare_metric("engagement_rate", metrics.avg_engagement, benchmarks.engagement_rate.median),
        compare_metric("upload_frequency", metrics.upload_frequency, benchmarks.upload_frequency.median),
    ]
    comparisons = [c for c in candidates if c is not None]
    if not comparisons:
        return BenchmarkComparison()

    score = round(mean(c.ratio for c in comparisons), 2)
    return BenchmarkComparison(
        comparisons=comparisons,
        overall_score=score,
        overall_rating=rate_overall(score),
    )


def _no_benchmarks(match: PeerMatch, reason: str) -> BenchmarkData:
    return BenchmarkData(
        has_benchmarks=False,
        reason=reason,
        peer_count=match.peer_count,
        peer_names=match.peer_names[:10],
        tier=match.tier,
        tiers_searched=match.tiers_searched,
    )


def build_benchmark_data(
    match: PeerMatch,
    peer_videos: Mapping[str, Sequence[VideoSample]],
    channel_videos: Sequence[VideoSample],
    min_peers: int,
    window_days: int,
    now: Optional[datetime] = None,
) -> BenchmarkData:
    """Benchmark the channel, or explain why the peer sample is too thin to."""
    if isinstance(match.scope, ScopedPeers) and not match.scope.category_ids:
        return _no_benchmarks(match, "No peer categories were selected, so there is nothing to benchmark against.")

    if match.peer_count == 0:
        return _no_benchmarks(
            match,
            "No peer channels found in the database. Add competitors to improve benchmarking.",
        )

    if match.peer_count < min_peers:
        tiers = ", ".join(t.value for t in match.tiers_searched) or match.tier.value
        return _no_benchmarks(
            match,
            f"Only {match.peer_count} peer channel(s) found in the {tiers} tier(s); "
            f"at least {min_peers} are needed for a reliable benchmark.",
        )

    benchmarks = compute_peer_benchmarks(peer_videos, match.peer_count, window_days, now)
    if benchmarks is None:
        return _no_benchmarks(
            match,
            f"Peer channels have no videos published in the last {window_days} days.",
        )

    metrics = channel_metrics(channel_videos, window_days, now)
    comparison = compare_against_benchmarks(metrics, benchmarks)
    return BenchmarkData(
        has_benchmarks=True,
        peer_count=match.peer_count,
        peer_names=match.peer_names[:10],
        tier=match.tier,
        tiers_searched=match.tiers_searched,
        benchmarks=benchmarks,
        channel_metrics=metrics,
        comparisons=comparison.comparisons,
        overall_score=comparison.overall_score,
        overall_rating=comparison.overall_rating,
    )
