import pytest

from analysis.models import AllPeers, BenchmarkStatus, ScopedPeers, SizeTier, VideoSample
from services.peer_benchmark import PeerBenchmarkService
from fakes import seed_channel, video_item


def _videos(prefix, views, count=6, days_step=10, likes=None):
    return [
        video_item(f"{prefix}_{i}", f"{prefix} video {i}", views, days_ago=1 + i * days_step, likes=likes)
        for i in range(count)
    ]


def _samples(items):
    return [VideoSample(youtube_video_id=v["id"], **{k: v[k] for k in (
        "title", "view_count", "like_count", "comment_count", "duration_seconds", "video_type", "published_at"
    )}) for v in items]


@pytest.fixture
def service(session_factory):
    return PeerBenchmarkService(session_factory, min_peers=3, peer_limit=20, window_days=90, widen_to_adjacent=True)


@pytest.mark.asyncio
async def test_strict_tier_is_used_when_it_has_enough_peers(session_factory, service):
    own = await seed_channel(session_factory, "UC_OWN", 50_000, [])
    for i in range(3):
        await seed_channel(session_factory, f"UC_GROWING_{i}", 20_000 + i, _videos(f"g{i}", 1000))
    await seed_channel(session_factory, "UC_EMERGING", 5_000, _videos("e", 1000))

    match = await service.find_peers(own, SizeTier.GROWING, AllPeers())

    assert match.peer_count == 3
    assert match.widened is False
    assert match.tiers_searched == [SizeTier.GROWING]
    assert own not in match.peer_ids


@pytest.mark.asyncio
async def test_widens_to_adjacent_tiers_when_strict_tier_is_thin(session_factory, service):
    own = await seed_channel(session_factory, "UC_OWN", 50_000, [])
    await seed_channel(session_factory, "UC_GROWING", 20_000, _videos("g", 1000))
    await seed_channel(session_factory, "UC_EMERGING", 5_000, _videos("e", 1000))
    await seed_channel(session_factory, "UC_ESTABLISHED", 200_000, _videos("s", 1000))
    await seed_channel(session_factory, "UC_MAJOR", 700_000, _videos("m", 1000))

    match = await service.find_peers(own, SizeTier.GROWING, AllPeers())

    assert match.widened is True
    assert match.tiers_searched == [SizeTier.GROWING, SizeTier.EMERGING, SizeTier.ESTABLISHED]
    assert sorted(match.peer_names) == ["UC_EMERGING", "UC_ESTABLISHED", "UC_GROWING"]


@pytest.mark.asyncio
async def test_no_widening_when_disabled(session_factory):
    service = PeerBenchmarkService(session_factory, min_peers=3, widen_to_adjacent=False)
    own = await seed_channel(session_factory, "UC_OWN", 50_000, [])
    await seed_channel(session_factory, "UC_EMERGING", 5_000, _videos("e", 1000))

    match = await service.find_peers(own, SizeTier.GROWING)
    data = await service.benchmark(match, [])

    assert match.peer_count == 0
    assert data.has_benchmarks is False
    assert "No peer channels" in data.reason


@pytest.mark.asyncio
async def test_category_scope_filters_peers(session_factory, service):
    own = await seed_channel(session_factory, "UC_OWN", 50_000, [])
    await seed_channel(session_factory, "UC_GAMING", 20_000, _videos("g", 1000), category_id="gaming")
    await seed_channel(session_factory, "UC_TECH", 30_000, _videos("t", 1000), category_id="tech")
    await seed_channel(session_factory, "UC_NONE", 40_000, _videos("n", 1000))

    match = await service.find_peers(own, SizeTier.GROWING, ScopedPeers(category_ids=["gaming"]))

    assert match.peer_names == ["UC_GAMING"]


@pytest.mark.asyncio
async def test_empty_category_scope_has_no_benchmarks(session_factory, service):
    own = await seed_channel(session_factory, "UC_OWN", 50_000, [])
    for i in range(3):
        await seed_channel(session_factory, f"UC_PEER_{i}", 20_000 + i, _videos(f"p{i}", 1000))

    match = await service.find_peers(own, SizeTier.GROWING, ScopedPeers(category_ids=[]))
    data = await service.benchmark(match, [])

    assert match.peer_count == 0
    assert data.has_benchmarks is False
    assert data.overall_score is None
    assert data.reason


@pytest.mark.asyncio
async def test_sync_disabled_channels_are_not_peers(session_factory, service):
    own = await seed_channel(session_factory, "UC_OWN", 50_000, [])
    await seed_channel(session_factory, "UC_OFF", 20_000, _videos("o", 1000), sync_enabled=False)

    match = await service.find_peers(own, SizeTier.GROWING)

    assert "UC_OFF" not in match.peer_names


@pytest.mark.asyncio
async def test_benchmark_compares_channel_against_peer_medians(session_factory, service):
    own_videos = _videos("own", 1500, count=6, likes=30)
    own = await seed_channel(session_factory, "UC_OWN", 50_000, own_videos)
    for i in range(3):
        await seed_channel(session_factory, f"UC_PEER_{i}", 20_000 + i, _videos(f"p{i}", 1000, count=6, likes=40))
    # Outside the 90 day window, ignored
    await seed_channel(session_factory, "UC_OLD", 25_000, [video_item("old_1", "Old one", 90_000, days_ago=200)])

    match = await service.find_peers(own, SizeTier.GROWING)
    data = await service.benchmark(match, _samples(own_videos))

    assert data.has_benchmarks is True
    assert data.peer_count == 4
    assert data.benchmarks.videos_analyzed == 18
    assert data.benchmarks.views_all.median == 1000
    comparisons = {c.metric_name: c for c in data.comparisons}
    assert comparisons["avg_views"].ratio == 1.5
    assert comparisons["avg_views"].status == BenchmarkStatus.ABOVE
    assert comparisons["upload_frequency"].status == BenchmarkStatus.INLINE
    assert comparisons["engagement_rate"].status == BenchmarkStatus.BELOW
    assert data.overall_score is not None
