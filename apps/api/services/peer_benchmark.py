"""
Peer selection and benchmarking against cached competitor channels.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from analysis.benchmark import build_benchmark_data
from analysis.dates import as_utc, utc_now
from analysis.models import AllPeers, BenchmarkData, PeerMatch, PeerScope, ScopedPeers, SizeTier, VideoSample
from analysis.tiers import adjacent_tiers, tier_bounds
from config import settings
from database import async_session_maker
from models.channel import Channel
from models.video import Video

logger = logging.getLogger(__name__)


def _tier_clause(tiers: Sequence[SizeTier]):
    clauses = []
    for tier in tiers:
        floor, ceiling = tier_bounds(tier)
        if ceiling is None:
            clauses.append(Channel.subscriber_count >= floor)
        else:
            clauses.append(and_(Channel.subscriber_count >= floor, Channel.subscriber_count < ceiling))
    return or_(*clauses)


class PeerBenchmarkService:
    """Finds comparable channels and benchmarks the audited channel against them."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        min_peers: Optional[int] = None,
        peer_limit: Optional[int] = None,
        window_days: Optional[int] = None,
        widen_to_adjacent: Optional[bool] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.min_peers = min_peers if min_peers is not None else settings.BENCHMARK_MIN_PEERS
        self.peer_limit = peer_limit or settings.BENCHMARK_PEER_LIMIT
        self.window_days = window_days or settings.BENCHMARK_WINDOW_DAYS
        self.widen_to_adjacent = (
            widen_to_adjacent if widen_to_adjacent is not None else settings.BENCHMARK_WIDEN_TO_ADJACENT
        )

    async def _query_peers(
        self,
        db: AsyncSession,
        channel_id: str,
        tiers: Sequence[SizeTier],
        scope: PeerScope,
    ) -> List[Channel]:
        query = select(Channel).where(
            Channel.id != channel_id,
            Channel.sync_enabled.is_(True),
            _tier_clause(tiers),
        )
        if isinstance(scope, ScopedPeers):
            query = query.where(Channel.category_id.in_(scope.category_ids))
        query = query.order_by(Channel.subscriber_count.desc(), Channel.id).limit(self.peer_limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def find_peers(
        self,
        channel_id: str,
        tier: SizeTier,
        scope: Optional[PeerScope] = None,
    ) -> PeerMatch:
        """
        Peers in the channel's own tier, widened to the neighbouring tiers when
        the strict tier holds fewer than ``min_peers``. A category scope applies
        at both steps; an empty scope matches nothing.
        """
        scope = scope or AllPeers()
        tier = SizeTier(tier)
        if isinstance(scope, ScopedPeers) and not scope.category_ids:
            return PeerMatch(tier=tier, tiers_searched=[], scope=scope)

        tiers = [tier]
        async with self.session_factory() as db:
            peers = await self._query_peers(db, channel_id, tiers, scope)
            widened = False
            if len(peers) < self.min_peers and self.widen_to_adjacent:
                tiers = adjacent_tiers(tier)
                if len(tiers) > 1:
                    peers = await self._query_peers(db, channel_id, tiers, scope)
                    widened = True

        logger.info(
            f"Found {len(peers)} peers for channel {channel_id} in tiers "
            f"{[t.value for t in tiers]} (widened={widened})"
        )
        return PeerMatch(
            peer_ids=[p.id for p in peers],
            peer_names=[p.name for p in peers],
            tier=tier,
            tiers_searched=tiers,
            widened=widened,
            scope=scope,
        )

    async def load_peer_videos(
        self,
        peer_ids: Sequence[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, List[VideoSample]]:
        """Each peer's videos published inside the benchmark window."""
        if not peer_ids:
            return {}
        now = as_utc(now) or utc_now()
        cutoff = now - timedelta(days=self.window_days)
        async with self.session_factory() as db:
            result = await db.execute(
                select(Video)
                .where(Video.channel_id.in_(list(peer_ids)), Video.published_at >= cutoff)
                .order_by(Video.published_at.desc())
            )
            videos = result.scalars().all()

        by_peer: Dict[str, List[VideoSample]] = {peer_id: [] for peer_id in peer_ids}
        for video in videos:
            by_peer.setdefault(video.channel_id, []).append(VideoSample.model_validate(video))
        return by_peer

    async def benchmark(
        self,
        match: PeerMatch,
        channel_videos: Sequence[VideoSample],
        now: Optional[datetime] = None,
    ) -> BenchmarkData:
        now = as_utc(now) or utc_now()
        peer_videos = await self.load_peer_videos(match.peer_ids, now)
        return build_benchmark_data(
            match=match,
            peer_videos=peer_videos,
            channel_videos=channel_videos,
            min_peers=self.min_peers,
            window_days=self.window_days,
            now=now,
        )
