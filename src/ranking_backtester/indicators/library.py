"""
Indicator Library — MACD, RSI, AO, Disparity and RTI over a candle frame.

Every indicator is a pure function of a ``pandas.DataFrame`` with at least
``high``, ``low`` and ``close`` columns. When the frame is shorter than the
indicator's warm-up the function returns ``None`` instead of raising.
Non-finite values produced by degenerate input (zero prices, flat windows)
are replaced with the indicator's neutral value so one bad step never
poisons a whole series.
"""

import functools
import math
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
import pandas as pd

from ranking_backtester.errors import InvalidParameterError
from ranking_backtester.indicators.series import IndicatorSeries
from ranking_backtester.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Result bundles
# =============================================================================


@dataclass(frozen=True)
class MacdResult:
    """MACD line, SMA signal line and histogram, all trimmed to the signal length."""

    macd: IndicatorSeries
    signal: IndicatorSeries
    histogram: IndicatorSeries


@dataclass(frozen=True)
class RtiResult:
    """RTI oscillator and its EMA signal, trimmed to the signal length."""

    rti: IndicatorSeries
    signal: IndicatorSeries


# =============================================================================
# Helpers
# =============================================================================


def column(candles: pd.DataFrame, name: str) -> np.ndarray:
    """Extract one OHLC column as float64."""
    if name not in candles.columns:
        raise InvalidParameterError(f"Missing column: {name}")
    return candles[name].to_numpy(dtype=np.float64)


def sma(values: np.ndarray, period: int) -> np.ndarray:
    """Simple moving average; the first value covers ``values[:period]``."""
    if period < 1 or len(values) < period:
        return np.empty(0)
    return pd.Series(values).rolling(period).mean().to_numpy()[period - 1:]


def ema(values: np.ndarray, period: int) -> np.ndarray:
    """Exponential moving average seeded with the SMA of the first ``period`` values."""
    if period < 1 or len(values) < period:
        return np.empty(0)
    seeded = np.array(values[period - 1:], dtype=np.float64)
    seeded[0] = float(np.mean(values[:period]))
    return pd.Series(seeded).ewm(span=period, adjust=False).mean().to_numpy()


def _neutralize(values: np.ndarray, neutral: float) -> np.ndarray:
    return np.where(np.isfinite(values), values, neutral)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def indicator_boundary(name: str) -> Callable:
    """Turn numerical faults inside an indicator into an absent series."""

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(candles: pd.DataFrame, *args: Any, **kwargs: Any) -> Any:
            try:
                with np.errstate(divide="ignore", invalid="ignore"):
                    return fn(candles, *args, **kwargs)
            except ArithmeticError as e:
                logger.warning("Indicator computation failed", indicator=name, error=str(e))
                return None

        return wrapper

    return decorator


# =============================================================================
# Indicators
# =============================================================================


@indicator_boundary("macd")
def calculate_macd(
    candles: pd.DataFrame,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdResult | None:
    """
    MACD with an SMA signal line.

    The signal is the simple moving average of the MACD line, not the usual
    EMA, and the histogram is ``macd - signal``. Needs ``slow + signal`` candles.
    """
    n = len(candles)
    if n < slow + signal:
        return None

    close = column(candles, "close")
    fast_ema = ema(close, fast)
    slow_ema = ema(close, slow)
    macd_line = fast_ema[slow - fast:] - slow_ema
    signal_line = sma(macd_line, signal)
    macd_line = macd_line[signal - 1:]
    histogram = macd_line - signal_line

    return MacdResult(
        macd=IndicatorSeries("macd", _neutralize(macd_line, 0.0), n),
        signal=IndicatorSeries("macd_signal", _neutralize(signal_line, 0.0), n),
        histogram=IndicatorSeries("macd_histogram", _neutralize(histogram, 0.0), n),
    )


@indicator_boundary("rsi")
def calculate_rsi(candles: pd.DataFrame, period: int = 14) -> IndicatorSeries | None:
    """Wilder RSI of close-to-close deltas. Needs ``period + 1`` candles."""
    n = len(candles)
    if n < period + 1:
        return None

    deltas = np.diff(column(candles, "close"))
    gains = np.clip(deltas, 0.0, None)
    losses = np.clip(-deltas, 0.0, None)

    def wilder(x: np.ndarray) -> np.ndarray:
        seeded = np.array(x[period - 1:], dtype=np.float64)
        seeded[0] = float(np.mean(x[:period]))
        return pd.Series(seeded).ewm(alpha=1.0 / period, adjust=False).mean().to_numpy()

    avg_gain = wilder(gains)
    avg_loss = wilder(losses)

    rsi = np.where(
        avg_loss == 0,
        np.where(avg_gain == 0, 50.0, 100.0),
        100.0 - 100.0 / (1.0 + avg_gain / avg_loss),
    )
    return IndicatorSeries("rsi", _neutralize(rsi, 50.0), n)


@indicator_boundary("ao")
def calculate_ao(candles: pd.DataFrame, fast: int = 5, slow: int = 34) -> IndicatorSeries | None:
    """Awesome Oscillator on median price, aligned to the slow SMA. Needs ``slow`` candles."""
    n = len(candles)
    if n < slow:
        return None

    median = (column(candles, "high") + column(candles, "low")) / 2.0
    ao = sma(median, fast)[slow - fast:] - sma(median, slow)
    return IndicatorSeries("ao", _neutralize(ao, 0.0), n)


@indicator_boundary("disparity")
def calculate_disparity(candles: pd.DataFrame, period: int = 20) -> IndicatorSeries | None:
    """Percent distance of close from its EMA. Needs ``period`` candles."""
    n = len(candles)
    if n < period:
        return None

    close = column(candles, "close")
    base = ema(close, period)
    dp = 100.0 * (close[period - 1:] - base) / base
    return IndicatorSeries(f"disparity_{period}", _neutralize(dp, 0.0), n)


def calculate_disparity_multi(
    candles: pd.DataFrame,
    periods: tuple[int, ...] = (20, 60, 120),
) -> dict[int, IndicatorSeries]:
    """Disparity for several periods; periods without enough history are left out."""
    result: dict[int, IndicatorSeries] = {}
    for period in periods:
        series = calculate_disparity(candles, period)
        if series is not None:
            result[period] = series
    return result


@indicator_boundary("rti")
def calculate_rti(
    candles: pd.DataFrame,
    trend_window: int = 100,
    sensitivity: float = 95.0,
    signal_length: int = 20,
) -> RtiResult | None:
    """
    Relative Trend Index.

    For each candle with a full trend window, the closes shifted up and down by
    the two-point population stdev against the previous close are sorted, and
    the sensitivity percentile picks an upper and a lower band. RTI places the
    close between those bands on a 0..100 scale (50 when the bands coincide).
    The signal is an EMA of RTI over ``signal_length``.
    """
    n = len(candles)
    if trend_window < 1 or signal_length < 1:
        raise InvalidParameterError("trend_window and signal_length must be >= 1")
    if n < trend_window + signal_length - 1:
        return None

    close = column(candles, "close")
    deviation = np.zeros(n)
    deviation[1:] = np.abs(np.diff(close)) / 2.0

    upper = np.sort(np.lib.stride_tricks.sliding_window_view(close + deviation, trend_window), axis=1)
    lower = np.sort(np.lib.stride_tricks.sliding_window_view(close - deviation, trend_window), axis=1)

    upper_idx = min(max(_round_half_up(sensitivity / 100.0 * trend_window) - 1, 0), trend_window - 1)
    lower_idx = min(max(_round_half_up((100.0 - sensitivity) / 100.0 * trend_window) - 1, 0), trend_window - 1)
    upper_pick = upper[:, upper_idx]
    lower_pick = lower[:, lower_idx]

    denom = upper_pick - lower_pick
    raw = 100.0 * (close[trend_window - 1:] - lower_pick) / denom
    rti = np.where(denom == 0, 50.0, np.clip(raw, 0.0, 100.0))
    rti = _neutralize(rti, 50.0)

    signal = ema(rti, signal_length)
    rti = rti[len(rti) - len(signal):]

    return RtiResult(
        rti=IndicatorSeries("rti", rti, n),
        signal=IndicatorSeries("rti_signal", _neutralize(signal, 50.0), n),
    )
