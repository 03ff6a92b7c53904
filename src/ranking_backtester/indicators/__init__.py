"""Technical indicators computed over candle frames."""

from ranking_backtester.indicators.series import IndicatorSeries, frozen_array
from ranking_backtester.indicators.library import (
    MacdResult,
    RtiResult,
    calculate_ao,
    calculate_disparity,
    calculate_disparity_multi,
    calculate_macd,
    calculate_rsi,
    calculate_rti,
    ema,
    sma,
)

__all__ = [
    "IndicatorSeries",
    "frozen_array",
    "MacdResult",
    "RtiResult",
    "calculate_ao",
    "calculate_disparity",
    "calculate_disparity_multi",
    "calculate_macd",
    "calculate_rsi",
    "calculate_rti",
    "ema",
    "sma",
]
