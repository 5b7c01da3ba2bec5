"""
Reach/engagement categorization of a channel's videos.

Every video is measured against the channel's own medians, never against an
absolute number, so the same thresholds work for a 2K and a 2M subscriber
channel.
"""

from typing import Iterable, List

from .models import (
    CategorizationBaselines,
    CategorizationResult,
    CategorizedVideo,
    Quadrant,
    VideoSample,
)
from .stats import median


HIGH_REACH_MULTIPLIER = 1.5
LOW_ENGAGEMENT_MULTIPLIER = 0.6


def engagement_rate(video: VideoSample) -> float:
    return (video.like_count + video.comment_count) / max(video.view_count, 1)


def _ratio(value: float, baseline: float) -> float:
    if baseline <= 0:
        return 0.0
    return round(value / baseline, 2)


def _quadrant(high_reach: bool, low_engagement: bool) -> Quadrant:
    if high_reach:
        return Quadrant.INVESTIGATE if low_engagement else Quadrant.BREAKOUT
    return Quadrant.UNDERPERFORMER if low_engagement else Quadrant.HIDDEN_GEM


def investigate_prompt(video: CategorizedVideo) -> str:
    drop = (1 - video.engagement_ratio) * 100
    return (
        f'"{video.title}" reached {video.views_ratio:.1f}x your typical views but '
        f"engagement was {drop:.0f}% below your baseline. "
        "What drove the distribution on this one?"
    )


def categorize_videos(
    videos: Iterable[VideoSample],
    high_reach_multiplier: float = HIGH_REACH_MULTIPLIER,
    low_engagement_multiplier: float = LOW_ENGAGEMENT_MULTIPLIER,
) -> CategorizationResult:
    """
    Place each video in exactly one of four quadrants.

    High reach means more than ``high_reach_multiplier`` times the median
    views. Low engagement means an engagement rate under
    ``low_engagement_multiplier`` times the median rate, and only counts for
    videos that were actually watched.
    """
    samples: List[VideoSample] = list(videos)
    rates = [engagement_rate(v) for v in samples]

    median_views = median(v.view_count for v in samples if v.view_count > 0)
    median_engagement = median(r for r in rates if r > 0)
    high_reach_floor = median_views * high_reach_multiplier
    low_engagement_ceiling = median_engagement * low_engagement_multiplier

    categorized: List[CategorizedVideo] = []
    for video, rate in zip(samples, rates):
        high_reach = video.view_count > high_reach_floor
        low_engagement = rate < low_engagement_ceiling and video.view_count > 0
        item = CategorizedVideo(
            **video.model_dump(),
            engagement_rate=rate,
            views_ratio=_ratio(video.view_count, median_views),
            engagement_ratio=_ratio(rate, median_engagement),
            is_high_reach=high_reach,
            is_low_engagement=low_engagement,
            quadrant=_quadrant(high_reach, low_engagement),
        )
        if item.quadrant == Quadrant.INVESTIGATE:
            item.diagnostic = investigate_prompt(item)
        categorized.append(item)

    counts = {quadrant: 0 for quadrant in Quadrant}
    for item in categorized:
        counts[item.quadrant] += 1

    return CategorizationResult(
        baselines=CategorizationBaselines(
            median_views=median_views,
            median_engagement=median_engagement,
            high_reach_floor=high_reach_floor,
            low_engagement_ceiling=low_engagement_ceiling,
        ),
        videos=categorized,
        quadrant_counts=counts,
    )
