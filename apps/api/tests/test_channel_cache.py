import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, update
from sqlalchemy.future import select

from analysis.dates import utc_now
from analysis.models import SizeTier, VideoType
from ingestion.youtube import ChannelResolutionError, YouTubeAPIError
from models.channel import Channel
from models.video import Video
from services import channel_cache
from services.channel_cache import ChannelDataCache
from fakes import channel_info, video_item


CHANNEL_ID = "UC_CACHE_TEST"


def _add_test_channel(youtube, subscribers=45_000):
    videos = [video_item(f"v{i}", f"Video {i}", 1000 + i * 100, days_ago=i * 3) for i in range(8)]
    videos.append(video_item("short1", "Quick tip", 5000, days_ago=2, duration=45))
    youtube.add_channel(channel_info(CHANNEL_ID, "Cache Channel", subscribers), videos, "@cachechannel")


@pytest.mark.asyncio
async def test_first_ingestion_fetches_and_persists(session_factory, youtube):
    _add_test_channel(youtube)
    cache = ChannelDataCache(session_factory, youtube.client)
    reported = []

    async def report(count):
        reported.append(count)

    result = await cache.ingest(CHANNEL_ID, report_api_calls=report)

    assert result.fetched_from_youtube is True
    assert result.size_tier == SizeTier.GROWING
    assert len(result.videos) == 9
    assert result.api_calls == 3
    assert reported == [3]
    assert result.snapshot.format_mix.short_count == 1
    assert result.snapshot.format_mix.has_both_formats
    # Newest first
    assert result.samples[0].youtube_video_id == "v0"
    assert any(s.video_type == VideoType.SHORT for s in result.samples)

    async with session_factory() as db:
        channel = (await db.execute(select(Channel).where(Channel.youtube_channel_id == CHANNEL_ID))).scalar_one()
        assert channel.size_tier == "growing"
        assert channel.last_synced_at is not None
        count = (await db.execute(select(func.count()).select_from(Video))).scalar_one()
        assert count == 9


@pytest.mark.asyncio
async def test_fresh_cache_is_reused_without_api_calls(session_factory, youtube):
    _add_test_channel(youtube)
    cache = ChannelDataCache(session_factory, youtube.client)

    await cache.ingest(CHANNEL_ID)
    second = await cache.ingest(CHANNEL_ID)

    assert second.fetched_from_youtube is False
    assert second.api_calls == 0
    assert youtube.info_requests == 1
    assert len(second.videos) == 9


@pytest.mark.asyncio
async def test_force_refresh_and_stale_cache_refetch(session_factory, youtube):
    _add_test_channel(youtube)
    cache = ChannelDataCache(session_factory, youtube.client, freshness_hours=24)

    await cache.ingest(CHANNEL_ID)
    forced = await cache.ingest(CHANNEL_ID, force_refresh=True)
    assert forced.fetched_from_youtube is True
    assert youtube.info_requests == 2

    async with session_factory() as db:
        await db.execute(
            update(Channel)
            .where(Channel.youtube_channel_id == CHANNEL_ID)
            .values(last_synced_at=utc_now() - timedelta(hours=30))
        )
        await db.commit()

    stale = await cache.ingest(CHANNEL_ID)
    assert stale.fetched_from_youtube is True
    assert youtube.info_requests == 3

    # Refetching upserts rather than duplicating videos.
    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(Video))).scalar_one()
        assert count == 9


@pytest.mark.asyncio
async def test_refresh_updates_metrics_and_tier(session_factory, youtube):
    _add_test_channel(youtube, subscribers=99_999)
    cache = ChannelDataCache(session_factory, youtube.client)
    first = await cache.ingest(CHANNEL_ID)
    assert first.size_tier == SizeTier.GROWING

    youtube.channels[CHANNEL_ID]["subscriber_count"] = 100_000
    youtube.uploads[youtube.channels[CHANNEL_ID]["uploads_playlist_id"]][0]["view_count"] = 77_777
    refreshed = await cache.ingest(CHANNEL_ID, force_refresh=True)

    assert refreshed.size_tier == SizeTier.ESTABLISHED
    assert refreshed.snapshot.size_tier == SizeTier.ESTABLISHED
    assert refreshed.tier_config.max_videos == 150
    assert any(s.view_count == 77_777 for s in refreshed.samples)


@pytest.mark.asyncio
async def test_max_videos_caps_the_sample(session_factory, youtube):
    _add_test_channel(youtube)
    cache = ChannelDataCache(session_factory, youtube.client)

    result = await cache.ingest(CHANNEL_ID, max_videos=4)

    assert len(result.videos) == 4


@pytest.mark.asyncio
async def test_api_calls_are_reported_when_fetch_fails(session_factory, youtube):
    _add_test_channel(youtube)
    youtube.error = YouTubeAPIError("quotaExceeded")
    cache = ChannelDataCache(session_factory, youtube.client)
    reported = []

    async def report(count):
        reported.append(count)

    with pytest.raises(YouTubeAPIError):
        await cache.ingest(CHANNEL_ID, report_api_calls=report)

    assert reported == [1]
    async with session_factory() as db:
        assert (await db.execute(select(Channel))).scalar_one_or_none() is None


@pytest.mark.asyncio
async def test_resolve_uses_the_client(session_factory, youtube):
    _add_test_channel(youtube)
    cache = ChannelDataCache(session_factory, youtube.client)

    assert await cache.resolve("@cachechannel") == CHANNEL_ID
    with pytest.raises(ChannelResolutionError):
        await cache.resolve("@nobody")


@pytest.mark.asyncio
async def test_concurrent_ingestion_from_separate_workers(session_factory, youtube, monkeypatch):
    # Worker processes do not share the in-process channel lock.
    monkeypatch.setattr(channel_cache, "_lock_for", lambda youtube_channel_id: asyncio.Lock())
    _add_test_channel(youtube)
    first = ChannelDataCache(session_factory, youtube.client)
    second = ChannelDataCache(session_factory, youtube.client)

    a, b = await asyncio.gather(first.ingest(CHANNEL_ID), second.ingest(CHANNEL_ID, force_refresh=True))

    assert a.channel.id == b.channel.id
    assert len(a.videos) == len(b.videos) == 9
    async with session_factory() as db:
        channels = (await db.execute(select(func.count()).select_from(Channel))).scalar_one()
        videos = (await db.execute(select(func.count()).select_from(Video))).scalar_one()
        assert channels == 1
        assert videos == 9
