"""
Order statistics shared by categorization and benchmarking.
"""

from typing import Iterable

import numpy as np

from .models import PercentileStats


def median(values: Iterable[float]) -> float:
    """Median of the values; 0 when there are none."""
    data = [float(v) for v in values]
    if not data:
        return 0.0
    return float(np.median(data))


def percentile(values: Iterable[float], rank: float) -> float:
    """Percentile with linear interpolation between order statistics; 0 when empty."""
    data = [float(v) for v in values]
    if not data:
        return 0.0
    return float(np.percentile(data, rank, method="linear"))


def percentile_stats(values: Iterable[float]) -> PercentileStats:
    data = [float(v) for v in values]
    return PercentileStats(
        p25=percentile(data, 25),
        median=median(data),
        p75=percentile(data, 75),
        count=len(data),
    )


def mean(values: Iterable[float]) -> float:
    data = [float(v) for v in values]
    if not data:
        return 0.0
    return float(np.mean(data))
