"""
Ranking Composite — z-score sum of the enabled indicators.

Each enabled indicator is computed over the candle frame, all series are cut to
their common suffix, and every step's ranking value is the sum of the
indicators' z-scores at that step. Indicators without enough history are left
out; when none is available the ranking is ``None``.
"""

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from ranking_backtester.enums import ZScoreMode
from ranking_backtester.indicators.library import (
    calculate_ao,
    calculate_disparity,
    calculate_macd,
    calculate_rsi,
    calculate_rti,
)
from ranking_backtester.indicators.series import IndicatorSeries
from ranking_backtester.logging import get_logger
from ranking_backtester.ranking.incremental import IncrementalStats
from ranking_backtester.settings import LOOKBACK_WINDOW, MIN_ZSCORE_SAMPLES, RANKING_DISPARITY_PERIOD

logger = get_logger(__name__)

MS_PER_DAY = 86_400_000

PERIOD_DAYS: dict[str, int] = {
    "1M": 30,
    "3M": 90,
    "6M": 180,
    "1Y": 365,
    "2Y": 730,
    "3Y": 1095,
}

INDICATOR_NAMES = ("macd", "rsi", "ao", "disparity", "rti")


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class IndicatorFlags:
    """Which indicators take part in the composite."""

    macd: bool = True
    rsi: bool = True
    ao: bool = True
    disparity: bool = True
    rti: bool = True

    def enabled(self) -> list[str]:
        return [name for name in INDICATOR_NAMES if getattr(self, name)]

    def to_dict(self) -> dict[str, bool]:
        return {name: getattr(self, name) for name in INDICATOR_NAMES}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndicatorFlags":
        return cls(**{name: bool(data.get(name, False)) for name in INDICATOR_NAMES})


def period_to_days(period: str) -> int:
    """Lookback period label (1M, 3M, ... 3Y) to days; unknown labels mean 30."""
    return PERIOD_DAYS.get(period, 30)


@dataclass(frozen=True)
class TimeWindow:
    """Keep candles in ``[base_timestamp - days, base_timestamp]``."""

    base_timestamp: int
    period: str = "1M"

    @property
    def start_timestamp(self) -> int:
        return self.base_timestamp - period_to_days(self.period) * MS_PER_DAY

    def apply(self, candles: pd.DataFrame) -> pd.DataFrame:
        ts = candles["timestamp"]
        mask = (ts >= self.start_timestamp) & (ts <= self.base_timestamp)
        return candles.loc[mask].reset_index(drop=True)

    def to_dict(self) -> dict[str, Any]:
        return {"base_timestamp": self.base_timestamp, "period": self.period}


# =============================================================================
# Results
# =============================================================================


@dataclass
class RankingPoint:
    """One aligned step: raw indicator values (None when disabled) and the composite."""

    timestamp: int
    ranking_value: float
    macd: float | None = None
    rsi: float | None = None
    ao: float | None = None
    disparity: float | None = None
    rti: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "macd": self.macd,
            "rsi": self.rsi,
            "ao": self.ao,
            "disparity": self.disparity,
            "rti": self.rti,
            "ranking_value": self.ranking_value,
        }


@dataclass
class RankingSeries:
    """Composite ranking aligned to a candle suffix."""

    values: IndicatorSeries
    points: list[RankingPoint] = field(default_factory=list)
    indicators: list[str] = field(default_factory=list)
    zscore_mode: ZScoreMode = ZScoreMode.FULL_RANGE

    @property
    def offset(self) -> int:
        return self.values.offset

    def __len__(self) -> int:
        return len(self.values)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([p.to_dict() for p in self.points])


# =============================================================================
# Computation
# =============================================================================


def compute_indicator_series(
    candles: pd.DataFrame,
    flags: IndicatorFlags,
) -> dict[str, IndicatorSeries]:
    """Ranking inputs for every enabled indicator that has enough history."""
    series: dict[str, IndicatorSeries | None] = {}
    if flags.macd:
        macd = calculate_macd(candles)
        series["macd"] = macd.histogram if macd else None
    if flags.rsi:
        series["rsi"] = calculate_rsi(candles)
    if flags.ao:
        series["ao"] = calculate_ao(candles)
    if flags.disparity:
        series["disparity"] = calculate_disparity(candles, RANKING_DISPARITY_PERIOD)
    if flags.rti:
        rti = calculate_rti(candles)
        series["rti"] = rti.rti if rti else None

    missing = [name for name, s in series.items() if s is None]
    if missing:
        logger.debug("Indicators unavailable", indicators=missing, candles=len(candles))
    return {name: s for name, s in series.items() if s is not None}


def _full_range_scores(aligned: dict[str, np.ndarray]) -> np.ndarray:
    length = len(next(iter(aligned.values())))
    total = np.zeros(length)
    for values in aligned.values():
        std = float(values.std())
        if std == 0:
            continue
        total += (values - float(values.mean())) / std
    return total


def _sliding_scores(
    aligned: dict[str, np.ndarray],
    lookback_window: int,
    min_samples: int,
) -> np.ndarray:
    length = len(next(iter(aligned.values())))
    trackers = {name: IncrementalStats(lookback_window) for name in aligned}
    total = np.zeros(length)

    for i in range(length):
        for name, values in aligned.items():
            trackers[name].add(values[i])
        if min(t.count for t in trackers.values()) < min_samples:
            continue
        total[i] = sum(trackers[name].zscore(values[i]) for name, values in aligned.items())

    return total


def calculate_ranking(
    candles: pd.DataFrame,
    flags: IndicatorFlags | None = None,
    window: TimeWindow | None = None,
    zscore_mode: ZScoreMode = ZScoreMode.FULL_RANGE,
    lookback_window: int = LOOKBACK_WINDOW,
    min_samples: int = MIN_ZSCORE_SAMPLES,
) -> RankingSeries | None:
    """
    Build the composite ranking series.

    Args:
        candles: Frame with timestamp/open/high/low/close columns
        flags: Enabled indicators (default: all)
        window: Optional time-window filter applied before computing
        zscore_mode: FULL_RANGE scores against each series' whole range,
            SLIDING against a trailing IncrementalStats window
        lookback_window: Window size for SLIDING mode
        min_samples: SLIDING steps with fewer samples score 0

    Returns:
        RankingSeries aligned to the (filtered) candles, or None when no
        enabled indicator could be computed.
    """
    flags = flags or IndicatorFlags()
    if window is not None:
        candles = window.apply(candles)

    series = compute_indicator_series(candles, flags)
    if not series:
        return None

    min_length = min(len(s) for s in series.values())
    if min_length == 0:
        return None

    aligned = {name: s.tail(min_length).values for name, s in series.items()}

    if zscore_mode is ZScoreMode.SLIDING:
        scores = _sliding_scores(aligned, lookback_window, min_samples)
    else:
        scores = _full_range_scores(aligned)

    candle_count = len(candles)
    offset = candle_count - min_length
    if "timestamp" in candles.columns:
        timestamps = candles["timestamp"].to_numpy()[offset:]
    else:
        timestamps = np.arange(offset, candle_count)

    points = [
        RankingPoint(
            timestamp=int(timestamps[i]),
            ranking_value=float(scores[i]),
            **{name: float(values[i]) for name, values in aligned.items()},
        )
        for i in range(min_length)
    ]

    return RankingSeries(
        values=IndicatorSeries("ranking", scores, candle_count),
        points=points,
        indicators=list(aligned),
        zscore_mode=zscore_mode,
    )
