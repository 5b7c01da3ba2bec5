"""
Content series detection from video titles.

The pattern pass here is deterministic. The semantic pass that clusters the
leftover titles with an LLM lives in services/series_detection.py and feeds its
candidates back through ``merge_series`` and ``summarize_series``.
"""

import re
from datetime import datetime, timedelta
from typing import Dict, List, Literal, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from .categorization import engagement_rate
from .dates import as_utc, utc_now
from .models import PerformanceTrend, SeriesStats, SeriesSummary, VideoSample
from .stats import mean


MIN_SERIES_VIDEOS = 3
NEW_SERIES_DAYS = 180

_EPISODE = r"(?:ep(?:isode)?\.?\s*\d+|part\s*\d+|#\d+)"

EPISODE_PATTERNS = [
    # "Series Name | Ep 5", "Series Name - Part 3"
    re.compile(rf"^(.+?)\s*[|\-–—]\s*{_EPISODE}", re.IGNORECASE),
    # "Part 3 - Series Name", "#12: Series Name"
    re.compile(rf"^{_EPISODE}\s*[|\-–—:]\s*(.+)", re.IGNORECASE),
    # "Series Name #12"
    re.compile(rf"^(.{{5,}}?)\s+{_EPISODE}\s*$", re.IGNORECASE),
]

BRACKET_PREFIX = re.compile(r"^\[([^\]]{3,})\]|^\(([^)]{3,})\)")


class SeriesCandidate(BaseModel):
    name: str
    video_ids: List[str] = Field(default_factory=list)
    detection_method: Literal["pattern", "semantic"] = "pattern"
    pattern: Optional[str] = None


def clean_series_name(raw: str) -> str:
    name = re.sub(r"[:\-–—|]\s*$", "", raw)
    name = re.sub(r"^\s*[:\-–—|]", "", name)
    return re.sub(r"\s+", " ", name).strip()


def detect_series_by_pattern(videos: Sequence[VideoSample]) -> Tuple[List[SeriesCandidate], List[VideoSample]]:
    """
    Group videos by title conventions.

    Episode markers win over bracketed prefixes, which win over recurring
    2-5 word prefixes. Each video lands in at most one series and a series
    needs at least three videos. Returns the series and the leftover videos.
    """
    found: Dict[str, SeriesCandidate] = {}
    assigned: Set[str] = set()

    def add(name: str, video_id: str, pattern: str) -> None:
        candidate = found.setdefault(name, SeriesCandidate(name=name, pattern=pattern))
        candidate.video_ids.append(video_id)
        assigned.add(video_id)

    for video in videos:
        for regex in EPISODE_PATTERNS:
            match = regex.match(video.title or "")
            if not match:
                continue
            name = clean_series_name(match.group(1))
            if len(name) >= 3:
                add(name, video.youtube_video_id, regex.pattern)
                break

    for video in videos:
        if video.youtube_video_id in assigned:
            continue
        match = BRACKET_PREFIX.match(video.title or "")
        if match:
            add(clean_series_name(match.group(1) or match.group(2)), video.youtube_video_id, "bracket_prefix")

    prefixes: Dict[str, List[str]] = {}
    for video in videos:
        if video.youtube_video_id in assigned:
            continue
        words = (video.title or "").split()[:6]
        for length in range(2, min(len(words), 5) + 1):
            prefixes.setdefault(" ".join(words[:length]), []).append(video.youtube_video_id)

    # Longer prefixes first, then the most common.
    ranked = sorted(
        ((prefix, ids) for prefix, ids in prefixes.items() if len(ids) >= MIN_SERIES_VIDEOS),
        key=lambda item: (-len(item[0].split(" ")), -len(item[1])),
    )
    for prefix, ids in ranked:
        remaining = [video_id for video_id in ids if video_id not in assigned]
        if len(remaining) < MIN_SERIES_VIDEOS:
            continue
        name = clean_series_name(prefix)
        for video_id in remaining:
            add(name, video_id, f'prefix: "{prefix}"')

    series = [c for c in found.values() if len(c.video_ids) >= MIN_SERIES_VIDEOS]
    grouped = {video_id for c in series for video_id in c.video_ids}
    uncategorized = [v for v in videos if v.youtube_video_id not in grouped]
    return series, uncategorized


def merge_series(
    existing: Sequence[SeriesCandidate],
    additions: Sequence[SeriesCandidate],
) -> List[SeriesCandidate]:
    """
    Append additions unless more than half of their videos already belong to a
    series. Kept additions lose the videos already claimed, so each video ends
    up in at most one series.
    """
    merged = list(existing)
    claimed = {video_id for c in merged for video_id in c.video_ids}
    for candidate in additions:
        if not candidate.video_ids:
            continue
        overlaps = any(
            len(set(candidate.video_ids) & set(other.video_ids)) / len(candidate.video_ids) > 0.5
            for other in merged
        )
        if overlaps:
            continue
        video_ids = [video_id for video_id in candidate.video_ids if video_id not in claimed]
        if len(video_ids) < MIN_SERIES_VIDEOS:
            continue
        merged.append(candidate.model_copy(update={"video_ids": video_ids}))
        claimed.update(video_ids)
    return merged


def _trend(ordered: Sequence[VideoSample], first_published: Optional[datetime], now: datetime) -> PerformanceTrend:
    if len(ordered) > MIN_SERIES_VIDEOS:
        half = len(ordered) // 2
        earlier = mean(v.view_count for v in ordered[:half])
        later = mean(v.view_count for v in ordered[half:])
        if later > earlier * 1.2:
            return PerformanceTrend.GROWING
        if later < earlier * 0.8:
            return PerformanceTrend.DECLINING
        return PerformanceTrend.STABLE
    if first_published is not None and now - first_published < timedelta(days=NEW_SERIES_DAYS):
        return PerformanceTrend.NEW
    return PerformanceTrend.STABLE


def series_stats(
    candidate: SeriesCandidate,
    videos_by_id: Dict[str, VideoSample],
    now: Optional[datetime] = None,
) -> SeriesStats:
    now = as_utc(now) or utc_now()
    members = [videos_by_id[i] for i in candidate.video_ids if i in videos_by_id]
    # Oldest first so the later half really is the later half.
    ordered = sorted(members, key=lambda v: as_utc(v.published_at) or datetime.min.replace(tzinfo=now.tzinfo))
    dates = [as_utc(v.published_at) for v in ordered if v.published_at is not None]

    cadence = None
    if len(dates) >= 2:
        span_days = (dates[-1] - dates[0]).total_seconds() / 86400
        cadence = round(span_days / (len(dates) - 1))

    total_views = sum(v.view_count for v in members)
    return SeriesStats(
        name=candidate.name,
        detection_method=candidate.detection_method,
        pattern=candidate.pattern,
        video_ids=[v.youtube_video_id for v in members],
        video_count=len(members),
        total_views=total_views,
        avg_views=round(total_views / len(members)) if members else 0,
        avg_engagement_rate=mean(engagement_rate(v) for v in members),
        first_published=dates[0] if dates else None,
        last_published=dates[-1] if dates else None,
        cadence_days=cadence,
        performance_trend=_trend(ordered, dates[0] if dates else None, now),
    )


def summarize_series(
    candidates: Sequence[SeriesCandidate],
    videos: Sequence[VideoSample],
    now: Optional[datetime] = None,
) -> SeriesSummary:
    videos_by_id = {v.youtube_video_id: v for v in videos}
    stats = [series_stats(c, videos_by_id, now) for c in candidates]
    stats = [s for s in stats if s.video_count > 0]
    stats.sort(key=lambda s: s.total_views, reverse=True)
    grouped = sum(s.video_count for s in stats)
    return SeriesSummary(
        series=stats,
        uncategorized_count=max(len(videos) - grouped, 0),
        total_series=len(stats),
    )
