"""
Signal resolution — the scalar series the decision policy reads.

A ``SignalSeries`` is computed once per candle history and shared by every
grid cell, worker chunk and detail query. It is a frozen value over a
read-only array, so no caller can alter it in place.
"""

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from ranking_backtester.caching.signal_cache import SignalCache
from ranking_backtester.enums import SignalSource, ZScoreMode
from ranking_backtester.errors import SignalUnavailableError
from ranking_backtester.indicators.library import calculate_rti
from ranking_backtester.indicators.series import frozen_array
from ranking_backtester.logging import get_logger
from ranking_backtester.ranking.composite import IndicatorFlags, calculate_ranking

logger = get_logger(__name__)


@dataclass(frozen=True)
class SignalConfig:
    """How to derive the decision signal from candles."""

    source: SignalSource = SignalSource.RTI
    indicators: IndicatorFlags = field(default_factory=IndicatorFlags)
    zscore_mode: ZScoreMode = ZScoreMode.FULL_RANGE
    rti_trend_window: int = 100
    rti_sensitivity: float = 95.0
    rti_signal_length: int = 20

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "indicators": self.indicators.to_dict(),
            "zscore_mode": self.zscore_mode.value,
            "rti_trend_window": self.rti_trend_window,
            "rti_sensitivity": self.rti_sensitivity,
            "rti_signal_length": self.rti_signal_length,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignalConfig":
        return cls(
            source=SignalSource(data.get("source", "rti")),
            indicators=IndicatorFlags.from_dict(data["indicators"]) if "indicators" in data else IndicatorFlags(),
            zscore_mode=ZScoreMode(data.get("zscore_mode", "full_range")),
            rti_trend_window=int(data.get("rti_trend_window", 100)),
            rti_sensitivity=float(data.get("rti_sensitivity", 95.0)),
            rti_signal_length=int(data.get("rti_signal_length", 20)),
        )


@dataclass(frozen=True)
class SignalSeries:
    """Immutable signal aligned to the last ``len(values)`` of ``candle_count`` candles."""

    values: np.ndarray = field(repr=False)
    candle_count: int
    source: str = "signal"

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", frozen_array(self.values))
        if len(self.values) > self.candle_count:
            raise ValueError("signal is longer than the candle history")

    @property
    def offset(self) -> int:
        return self.candle_count - len(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def matches(self, candle_count: int) -> bool:
        """Whether this signal was computed for a history of ``candle_count`` candles."""
        return self.candle_count == candle_count

    def to_list(self) -> list[float]:
        return self.values.tolist()

    def to_dict(self) -> dict[str, Any]:
        return {"values": self.to_list(), "candle_count": self.candle_count, "source": self.source}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignalSeries":
        return cls(
            values=np.asarray(data["values"], dtype=np.float64),
            candle_count=int(data["candle_count"]),
            source=data.get("source", "signal"),
        )


def build_signal(candles: pd.DataFrame, config: SignalConfig) -> SignalSeries | None:
    """Compute the signal, or None when the candles cannot support it."""
    if config.source is SignalSource.RTI:
        rti = calculate_rti(
            candles,
            trend_window=config.rti_trend_window,
            sensitivity=config.rti_sensitivity,
            signal_length=config.rti_signal_length,
        )
        if rti is None:
            return None
        return SignalSeries(rti.rti.values, len(candles), source="rti")

    ranking = calculate_ranking(candles, config.indicators, zscore_mode=config.zscore_mode)
    if ranking is None:
        return None
    return SignalSeries(ranking.values.values, len(candles), source="composite")


def resolve_signal(
    candles: pd.DataFrame,
    config: SignalConfig,
    cache: SignalCache | None = None,
) -> SignalSeries:
    """
    Build (or fetch from cache) the signal for ``candles``.

    Raises:
        SignalUnavailableError: if no enabled indicator has enough history.
    """
    if cache is not None:
        key = cache.make_key(config.source.value, cache.hash_frame(candles), **config.to_dict())
        signal = cache.get_or_compute(key, lambda: build_signal(candles, config))
    else:
        signal = build_signal(candles, config)

    if signal is None:
        logger.warning("Signal unavailable", source=config.source.value, candles=len(candles))
        raise SignalUnavailableError(
            f"Not enough candles ({len(candles)}) to compute the {config.source.value} signal"
        )
    return signal
