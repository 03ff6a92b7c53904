"""Composite ranking signal and its sliding-window statistics."""

from ranking_backtester.ranking.incremental import IncrementalStats
from ranking_backtester.ranking.composite import (
    IndicatorFlags,
    RankingPoint,
    RankingSeries,
    TimeWindow,
    calculate_ranking,
    compute_indicator_series,
    period_to_days,
)

__all__ = [
    "IncrementalStats",
    "IndicatorFlags",
    "RankingPoint",
    "RankingSeries",
    "TimeWindow",
    "calculate_ranking",
    "compute_indicator_series",
    "period_to_days",
]
