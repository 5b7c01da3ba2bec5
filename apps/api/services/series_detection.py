"""
Series detection stage: title patterns first, then LLM clustering of the rest.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker

from analysis.models import SeriesSummary, VideoSample
from analysis.series import (
    MIN_SERIES_VIDEOS,
    SeriesCandidate,
    detect_series_by_pattern,
    merge_series,
    summarize_series,
)
from database import async_session_maker
from llm.client import LLMClient, LLMError, parse_json_object
from models.detected_series import DetectedSeries
from models.video import Video
from services.audit_store import CostReporter

logger = logging.getLogger(__name__)

SEMANTIC_MIN_VIDEOS = 5
SEMANTIC_MAX_VIDEOS = 100

SERIES_SYSTEM_PROMPT = """
You are a YouTube content analyst. Given video titles from one channel, identify
recurring content series or thematic groupings.

A series is 3 or more videos that share a theme, format or subject the creator
returns to, even when it is never formally named.

Rules:
- Only include groupings with 3+ videos
- Use clear, descriptive series names
- A video can only belong to one series
- Focus on recurring intent, not keyword overlap
- Return only a JSON object
"""


def build_semantic_prompt(videos: Sequence[VideoSample], existing_names: Sequence[str]) -> str:
    lines = [f'{i}. "{v.title}" ({v.view_count:,} views)' for i, v in enumerate(videos)]
    existing = ", ".join(existing_names) if existing_names else "None"
    return (
        f"Here are {len(videos)} video titles from a YouTube channel that don't match obvious title patterns.\n\n"
        f"Already-detected series (via pattern matching): {existing}\n\n"
        "Videos:\n" + "\n".join(lines) + "\n\n"
        "Identify implicit series. Respond as:\n"
        '{"series": [{"name": "Descriptive Series Name", "video_indices": [0, 3, 7], '
        '"confidence": "high"}]}'
    )


def parse_semantic_series(text: str, videos: Sequence[VideoSample]) -> List[SeriesCandidate]:
    data = parse_json_object(text) or {}
    candidates: List[SeriesCandidate] = []
    for entry in data.get("series") or []:
        if not isinstance(entry, dict):
            continue
        indices = entry.get("video_indices") or entry.get("videoIndices") or []
        video_ids = []
        for index in indices:
            if isinstance(index, int) and 0 <= index < len(videos):
                video_id = videos[index].youtube_video_id
                if video_id not in video_ids:
                    video_ids.append(video_id)
        name = str(entry.get("name") or "").strip()
        if name and len(video_ids) >= MIN_SERIES_VIDEOS:
            candidates.append(SeriesCandidate(name=name, video_ids=video_ids, detection_method="semantic"))
    return candidates


class SeriesDetectionService:
    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.llm_client = llm_client
        self.session_factory = session_factory or async_session_maker

    async def _semantic_pass(
        self,
        uncategorized: Sequence[VideoSample],
        existing_names: Sequence[str],
        costs: Optional[CostReporter],
    ) -> List[SeriesCandidate]:
        """LLM clustering of leftover titles; any failure here yields no extra series."""
        if self.llm_client is None or not self.llm_client.is_configured:
            return []
        if len(uncategorized) < SEMANTIC_MIN_VIDEOS:
            return []

        videos = list(uncategorized)[:SEMANTIC_MAX_VIDEOS]
        try:
            response = await asyncio.to_thread(
                self.llm_client.complete,
                SERIES_SYSTEM_PROMPT,
                build_semantic_prompt(videos, existing_names),
                2000,
            )
        except LLMError as e:
            logger.warning(f"Semantic series detection failed: {e}")
            return []

        if costs is not None:
            await costs.llm_usage(response.total_tokens, response.cost)
        return parse_semantic_series(response.text, videos)

    async def _persist(self, audit_id: str, channel_id: str, summary: SeriesSummary, video_ids: List[str]) -> None:
        async with self.session_factory() as db:
            # Videos are relinked to the newest detection.
            if video_ids:
                await db.execute(
                    update(Video)
                    .where(Video.youtube_video_id.in_(video_ids))
                    .values(detected_series_id=None)
                    .execution_options(synchronize_session=False)
                )
            for stats in summary.series:
                row = DetectedSeries(
                    channel_id=channel_id,
                    audit_id=audit_id,
                    name=stats.name,
                    detection_method=stats.detection_method,
                    pattern_regex=stats.pattern,
                    video_count=stats.video_count,
                    total_views=stats.total_views,
                    avg_views=stats.avg_views,
                    avg_engagement_rate=stats.avg_engagement_rate,
                    first_published=stats.first_published,
                    last_published=stats.last_published,
                    cadence_days=stats.cadence_days,
                    performance_trend=stats.performance_trend.value,
                )
                db.add(row)
                await db.flush()
                await db.execute(
                    update(Video)
                    .where(Video.youtube_video_id.in_(stats.video_ids))
                    .values(detected_series_id=row.id)
                    .execution_options(synchronize_session=False)
                )
            await db.commit()

    async def detect(
        self,
        audit_id: str,
        channel_id: str,
        videos: Sequence[VideoSample],
        costs: Optional[CostReporter] = None,
    ) -> SeriesSummary:
        pattern_series, uncategorized = detect_series_by_pattern(videos)
        logger.info(
            f"Audit {audit_id}: {len(pattern_series)} pattern series, "
            f"{len(uncategorized)} uncategorized videos"
        )

        semantic = await self._semantic_pass(uncategorized, [s.name for s in pattern_series], costs)
        candidates = merge_series(pattern_series, semantic)
        summary = summarize_series(candidates, videos)

        await self._persist(audit_id, channel_id, summary, [v.youtube_video_id for v in videos])
        return summary
