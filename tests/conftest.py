"""Shared test fixtures and helpers for ranking backtester tests."""

import numpy as np
import pandas as pd
import pytest

from ranking_backtester.engine.signal import SignalConfig

START_TS = 1_700_000_000_000
HOUR_MS = 3_600_000


def make_candles(
    n: int = 200,
    start_price: float = 45000.0,
    volatility: float = 0.01,
    seed: int = 42,
) -> pd.DataFrame:
    """Generate synthetic hourly OHLCV candles with a random walk close."""
    rng = np.random.RandomState(seed)
    prices = [start_price]
    for _ in range(n - 1):
        change = rng.normal(0, volatility)
        prices.append(prices[-1] * (1 + change))

    rows = []
    for i, close in enumerate(prices):
        high = close * (1 + abs(rng.normal(0, volatility / 2)))
        low = close * (1 - abs(rng.normal(0, volatility / 2)))
        open_price = prices[i - 1] if i > 0 else close
        rows.append({
            "timestamp": START_TS + i * HOUR_MS,
            "open": open_price,
            "high": max(high, open_price, close),
            "low": min(low, open_price, close),
            "close": close,
            "volume": float(rng.uniform(100, 1000)),
        })

    return pd.DataFrame(rows)


def make_trending_candles(n: int = 200, start_price: float = 100.0, step: float = 0.5) -> pd.DataFrame:
    """Strictly rising closes."""
    closes = [start_price + i * step for i in range(n)]
    return make_candles_from_closes(closes)


def make_flat_candles(n: int = 200, price: float = 100.0) -> pd.DataFrame:
    """Every candle identical."""
    return make_candles_from_closes([price] * n)


def make_candles_from_closes(closes: list[float]) -> pd.DataFrame:
    """Candles whose open/high/low all equal the given closes."""
    return pd.DataFrame({
        "timestamp": [START_TS + i * HOUR_MS for i in range(len(closes))],
        "open": closes,
        "high": closes,
        "low": closes,
        "close": closes,
    })


class ListSink:
    """Collects progress messages the way a queue would receive them."""

    def __init__(self) -> None:
        self.items: list[dict] = []

    def put(self, item: dict) -> None:
        self.items.append(item)


@pytest.fixture
def candles_200():
    return make_candles(n=200)


@pytest.fixture
def fast_signal_config():
    """RTI signal with a short warm-up, so small candle sets still produce a signal."""
    return SignalConfig(rti_trend_window=20, rti_signal_length=5)
