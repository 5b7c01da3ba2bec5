"""
Channel/video cache in front of the YouTube Data API.

Channels and videos are shared across audits. A fresh cached channel is reused
as-is; a stale or forced one is re-fetched and upserted.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from analysis.categorization import engagement_rate
from analysis.dates import as_utc, utc_now, within_days
from analysis.models import ChannelSnapshot, FormatMix, SizeTier, TierConfig, VideoSample, VideoType
from analysis.stats import mean
from analysis.tiers import classify_size_tier, tier_config
from config import require_youtube_api_key, settings
from database import async_session_maker
from ingestion.youtube import YouTubeClient, create_youtube_client_with_api_key
from models.channel import Channel
from models.video import Video

logger = logging.getLogger(__name__)

ApiCallReporter = Callable[[int], Awaitable[None]]

# One lock per YouTube channel id, shared by every cache in the process.
_channel_locks: Dict[str, asyncio.Lock] = {}


def _lock_for(youtube_channel_id: str) -> asyncio.Lock:
    lock = _channel_locks.get(youtube_channel_id)
    if lock is None:
        lock = _channel_locks[youtube_channel_id] = asyncio.Lock()
    return lock


def default_client_factory() -> YouTubeClient:
    return create_youtube_client_with_api_key(
        require_youtube_api_key(),
        timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
    )


@dataclass
class IngestionResult:
    channel: Channel
    videos: List[Video]
    samples: List[VideoSample]
    size_tier: SizeTier
    tier_config: TierConfig
    snapshot: ChannelSnapshot
    api_calls: int
    fetched_from_youtube: bool


def build_snapshot(
    channel: Channel,
    samples: List[VideoSample],
    size_tier: SizeTier,
    config: TierConfig,
    fetched_from_youtube: bool,
    recent_window_days: int,
    now: Optional[datetime] = None,
) -> ChannelSnapshot:
    now = as_utc(now) or utc_now()
    recent = [v for v in samples if within_days(v.published_at, recent_window_days, now)]
    return ChannelSnapshot(
        channel_id=channel.id,
        youtube_channel_id=channel.youtube_channel_id,
        name=channel.name or "",
        thumbnail_url=channel.thumbnail_url,
        subscriber_count=int(channel.subscriber_count or 0),
        total_view_count=int(channel.total_view_count or 0),
        video_count=int(channel.video_count or 0),
        size_tier=size_tier,
        tier_config=config,
        snapshot_date=now.date().isoformat(),
        total_videos_analyzed=len(samples),
        recent_videos_90d=len(recent),
        avg_views_recent=round(mean(v.view_count for v in recent)),
        avg_engagement_recent=mean(engagement_rate(v) for v in recent),
        format_mix=FormatMix(
            long_count=sum(1 for v in samples if v.video_type == VideoType.LONG),
            short_count=sum(1 for v in samples if v.video_type == VideoType.SHORT),
        ),
        fetched_from_youtube=fetched_from_youtube,
    )


class ChannelDataCache:
    """Decides whether cached channel data can be reused and refreshes it when not."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        client_factory: Optional[Callable[[], YouTubeClient]] = None,
        freshness_hours: Optional[int] = None,
        recent_window_days: Optional[int] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.client_factory = client_factory or default_client_factory
        self.freshness = timedelta(
            hours=freshness_hours if freshness_hours is not None else settings.AUDIT_CACHE_FRESHNESS_HOURS
        )
        self.recent_window_days = recent_window_days or settings.AUDIT_RECENT_WINDOW_DAYS

    def is_fresh(self, channel: Optional[Channel], now: Optional[datetime] = None) -> bool:
        if channel is None or channel.last_synced_at is None:
            return False
        now = as_utc(now) or utc_now()
        return now - as_utc(channel.last_synced_at) < self.freshness

    async def resolve(self, channel_reference: str) -> str:
        """Canonical channel id for a URL, handle or id; raises ChannelResolutionError."""
        client = self.client_factory()
        return await asyncio.to_thread(client.resolve_channel_identifier, channel_reference)

    async def _get_channel(self, db: AsyncSession, youtube_channel_id: str) -> Optional[Channel]:
        result = await db.execute(select(Channel).where(Channel.youtube_channel_id == youtube_channel_id))
        return result.scalar_one_or_none()

    @staticmethod
    def _insert_for(db: AsyncSession):
        """INSERT ... ON CONFLICT construct for the session's dialect."""
        if db.get_bind().dialect.name == "postgresql":
            return pg_insert
        return sqlite_insert

    async def _upsert_channel(self, db: AsyncSession, info: Dict, tier: SizeTier, now: datetime) -> Channel:
        # Another worker may insert the same channel concurrently; last writer wins.
        values = {
            "name": info.get("title") or "",
            "description": info.get("description"),
            "custom_url": info.get("custom_url"),
            "thumbnail_url": info.get("thumbnail_url"),
            "uploads_playlist_id": info.get("uploads_playlist_id"),
            "subscriber_count": info.get("subscriber_count", 0),
            "total_view_count": info.get("view_count", 0),
            "video_count": info.get("video_count", 0),
            "size_tier": tier.value,
            "last_synced_at": now,
        }
        insert = self._insert_for(db)
        stmt = insert(Channel).values(
            id=str(uuid.uuid4()),
            youtube_channel_id=info["id"],
            created_via="audit",
            sync_enabled=True,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Channel.youtube_channel_id],
            set_={**values, "updated_at": now},
        )
        await db.execute(stmt)
        result = await db.execute(
            select(Channel)
            .where(Channel.youtube_channel_id == info["id"])
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _upsert_videos(self, db: AsyncSession, channel: Channel, items: List[Dict], now: datetime) -> None:
        if not items:
            return
        rows = {}
        for item in items:
            rows[item["id"]] = {
                "id": str(uuid.uuid4()),
                "youtube_video_id": item["id"],
                "channel_id": channel.id,
                "title": item.get("title", ""),
                "description": item.get("description"),
                "published_at": item.get("published_at"),
                "thumbnail_url": item.get("thumbnail_url"),
                "duration_seconds": item.get("duration_seconds", 0),
                "video_type": item.get("video_type", VideoType.LONG.value),
                "view_count": item.get("view_count", 0),
                "like_count": item.get("like_count", 0),
                "comment_count": item.get("comment_count", 0),
                "metrics_updated_at": now,
            }
        insert = self._insert_for(db)
        stmt = insert(Video).values(list(rows.values()))
        updatable = [
            "channel_id", "title", "description", "published_at", "thumbnail_url", "duration_seconds",
            "video_type", "view_count", "like_count", "comment_count", "metrics_updated_at",
        ]
        stmt = stmt.on_conflict_do_update(
            index_elements=[Video.youtube_video_id],
            set_={name: stmt.excluded[name] for name in updatable},
        )
        await db.execute(stmt)

    async def _load_videos(self, db: AsyncSession, channel_id: str, limit: int) -> List[Video]:
        result = await db.execute(
            select(Video)
            .where(Video.channel_id == channel_id)
            .order_by(Video.published_at.desc(), Video.youtube_video_id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def ingest(
        self,
        youtube_channel_id: str,
        force_refresh: bool = False,
        max_videos: Optional[int] = None,
        report_api_calls: Optional[ApiCallReporter] = None,
    ) -> IngestionResult:
        """
        Load a channel and its recent videos, from cache when fresh.

        API calls are reported through ``report_api_calls`` even when the
        fetch fails part way, so the audit's cost stays accurate.
        """
        now = utc_now()
        async with _lock_for(youtube_channel_id):
            async with self.session_factory() as db:
                channel = await self._get_channel(db, youtube_channel_id)
                fetched = False
                api_calls = 0

                if channel is not None and self.is_fresh(channel, now) and not force_refresh:
                    logger.info(f"Using cached data for channel {youtube_channel_id}")
                    tier = classify_size_tier(channel.subscriber_count or 0)
                    limit = max_videos or tier_config(tier).max_videos
                else:
                    logger.info(f"Fetching channel {youtube_channel_id} from YouTube")
                    client = self.client_factory()
                    try:
                        info = await asyncio.to_thread(client.get_channel_info, youtube_channel_id)
                        tier = classify_size_tier(info.get("subscriber_count", 0))
                        limit = max_videos or tier_config(tier).max_videos
                        items = await asyncio.to_thread(
                            client.get_channel_videos, info.get("uploads_playlist_id"), limit
                        )
                    finally:
                        api_calls = client.api_calls
                        if report_api_calls and api_calls:
                            await report_api_calls(api_calls)

                    channel = await self._upsert_channel(db, info, tier, now)
                    await self._upsert_videos(db, channel, items, now)
                    fetched = True

                # Tier is recomputed on every ingestion, cached or not.
                if channel.size_tier != tier.value:
                    channel.size_tier = tier.value
                await db.commit()

                videos = await self._load_videos(db, channel.id, limit)

        samples = [VideoSample.model_validate(video) for video in videos]
        config = tier_config(tier)
        snapshot = build_snapshot(channel, samples, tier, config, fetched, self.recent_window_days, now)
        logger.info(
            f"Ingested {len(videos)} videos for {youtube_channel_id} "
            f"(tier={tier.value}, fetched={fetched}, api_calls={api_calls})"
        )
        return IngestionResult(
            channel=channel,
            videos=videos,
            samples=samples,
            size_tier=tier,
            tier_config=config,
            snapshot=snapshot,
            api_calls=api_calls,
            fetched_from_youtube=fetched,
        )
