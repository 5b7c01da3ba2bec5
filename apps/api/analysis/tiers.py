"""
Channel size tiers.

Larger channels publish more often, so bigger tiers look back over a shorter
window but pull more videos.
"""

from typing import Dict, List, Optional, Tuple

from .models import SizeTier, TierConfig


# Inclusive lower bound of each tier, smallest first.
TIER_THRESHOLDS = [
    (SizeTier.EMERGING, 0),
    (SizeTier.GROWING, 10_000),
    (SizeTier.ESTABLISHED, 100_000),
    (SizeTier.MAJOR, 500_000),
    (SizeTier.ELITE, 1_000_000),
]

TIER_ORDER: List[SizeTier] = [tier for tier, _ in TIER_THRESHOLDS]

TIER_CONFIGS: Dict[SizeTier, TierConfig] = {
    SizeTier.EMERGING: TierConfig(lookback_months=24, max_videos=50),
    SizeTier.GROWING: TierConfig(lookback_months=18, max_videos=100),
    SizeTier.ESTABLISHED: TierConfig(lookback_months=12, max_videos=150),
    SizeTier.MAJOR: TierConfig(lookback_months=9, max_videos=200),
    SizeTier.ELITE: TierConfig(lookback_months=6, max_videos=200),
}


def classify_size_tier(subscriber_count: int) -> SizeTier:
    subscribers = max(int(subscriber_count or 0), 0)
    tier = SizeTier.EMERGING
    for candidate, floor in TIER_THRESHOLDS:
        if subscribers >= floor:
            tier = candidate
    return tier


def tier_config(tier: SizeTier) -> TierConfig:
    return TIER_CONFIGS[SizeTier(tier)].model_copy()


def tier_rank(tier: SizeTier) -> int:
    return TIER_ORDER.index(SizeTier(tier))


def tier_bounds(tier: SizeTier) -> Tuple[int, Optional[int]]:
    """Subscriber range of a tier as (inclusive floor, exclusive ceiling or None)."""
    rank = tier_rank(tier)
    floor = TIER_THRESHOLDS[rank][1]
    ceiling = TIER_THRESHOLDS[rank + 1][1] if rank + 1 < len(TIER_THRESHOLDS) else None
    return floor, ceiling


def adjacent_tiers(tier: SizeTier) -> List[SizeTier]:
    """The tier followed by its immediate neighbours, smaller one first."""
    rank = tier_rank(tier)
    result = [TIER_ORDER[rank]]
    if rank > 0:
        result.append(TIER_ORDER[rank - 1])
    if rank < len(TIER_ORDER) - 1:
        result.append(TIER_ORDER[rank + 1])
    return result
