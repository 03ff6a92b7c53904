"""
Decision Policy — FLAT/HOLDING state machine over a signal series.

At each step ``i >= max(buy_lookback, sell_lookback)``:

- FLAT -> HOLDING when ``s[i] - min(s[i-N:i]) > buy_threshold``
- HOLDING -> FLAT when ``s[i] - max(s[i-M:i]) < sell_threshold``

The lookback windows never include the current step, and at most one
transition happens per step. A position still open after the last candle is
liquidated at the final close; that exit moves the balance but is not logged
as a trade.

``evaluate`` is the one entry point used by the grid simulator, the worker
chunks, the progressive controller and the detail query.
"""

from typing import Callable

import numpy as np
import pandas as pd

from ranking_backtester.engine.models import CandleArrays, SimulationConfig, SimulationResult, TradeEvent
from ranking_backtester.engine.signal import SignalSeries
from ranking_backtester.enums import Decision, InitialPosition, PolicyState, TradeAction
from ranking_backtester.errors import InvalidParameterError
from ranking_backtester.settings import INITIAL_CAPITAL

# (aligned step index, decision, close, equity)
StepObserver = Callable[[int, Decision, float, float], None]


class LookbackExtremes:
    """
    Min/max of the N values preceding each step, memoized per N.

    Every cell of a grid shares one signal, and a grid uses only a handful of
    lookback counts, so the rolling extremes are computed once per count
    rather than once per cell and step.
    """

    def __init__(self, signal: SignalSeries) -> None:
        self._series = pd.Series(signal.values)
        self._min: dict[int, list[float]] = {}
        self._max: dict[int, list[float]] = {}

    def prior_min(self, lookback: int) -> list[float]:
        if lookback not in self._min:
            self._min[lookback] = self._series.rolling(lookback).min().shift(1).tolist()
        return self._min[lookback]

    def prior_max(self, lookback: int) -> list[float]:
        if lookback not in self._max:
            self._max[lookback] = self._series.rolling(lookback).max().shift(1).tolist()
        return self._max[lookback]


class DecisionPolicy:
    """Runs one SimulationConfig over aligned candles and signal."""

    def __init__(self, config: SimulationConfig, initial_capital: float = INITIAL_CAPITAL) -> None:
        self.config = config
        self.initial_capital = initial_capital

    def run(
        self,
        candles: CandleArrays,
        signal: SignalSeries,
        extremes: LookbackExtremes | None = None,
        observer: StepObserver | None = None,
    ) -> SimulationResult:
        if not signal.matches(len(candles)):
            raise InvalidParameterError(
                f"Signal was computed for {signal.candle_count} candles, got {len(candles)}"
            )

        aligned = candles.suffix(signal.offset)
        n = len(signal)
        if n == 0:
            return SimulationResult.neutral()

        cfg = self.config
        extremes = extremes or LookbackExtremes(signal)
        prior_min = extremes.prior_min(cfg.buy_lookback)
        prior_max = extremes.prior_max(cfg.sell_lookback)
        values = signal.values.tolist()
        closes = aligned.closes.tolist()
        timestamps = aligned.timestamps.tolist()

        capital = self.initial_capital
        cash = capital
        units = 0.0
        state = PolicyState.FLAT
        trades: list[TradeEvent] = []

        if cfg.initial_position is InitialPosition.COIN:
            units = cash / closes[0]
            cash = 0.0
            state = PolicyState.HOLDING

        start = cfg.start_index
        for i in range(n):
            price = closes[i]
            decision = Decision.HOLD

            if i >= start:
                current = values[i]
                if state is PolicyState.FLAT:
                    low = prior_min[i]
                    if current - low > cfg.buy_threshold:
                        units = cash / price
                        cash = 0.0
                        state = PolicyState.HOLDING
                        decision = Decision.BUY
                        trades.append(TradeEvent(timestamps[i], TradeAction.BUY, price, low, cfg.buy_threshold))
                else:
                    high = prior_max[i]
                    if current - high < cfg.sell_threshold:
                        cash = units * price
                        units = 0.0
                        state = PolicyState.FLAT
                        decision = Decision.SELL
                        trades.append(TradeEvent(timestamps[i], TradeAction.SELL, price, high, cfg.sell_threshold))

            if observer is not None:
                equity = cash if state is PolicyState.FLAT else units * price
                observer(i, decision, price, equity)

        if state is PolicyState.HOLDING:
            cash = units * closes[-1]

        first_close = closes[0]
        hold_return = (closes[-1] - first_close) / first_close * 100 if first_close else 0.0

        return SimulationResult(
            total_return_pct=(cash - capital) / capital * 100,
            trade_count=len(trades),
            trades=trades,
            final_balance=cash,
            hold_return_pct=hold_return,
        )


def evaluate(
    candles: CandleArrays | pd.DataFrame,
    config: SimulationConfig,
    signal: SignalSeries,
    extremes: LookbackExtremes | None = None,
) -> SimulationResult:
    """Run the decision policy once; pure with respect to its inputs."""
    if isinstance(candles, pd.DataFrame):
        candles = CandleArrays.from_frame(candles)
    return DecisionPolicy(config).run(candles, signal, extremes=extremes)


def signal_from_values(values: list[float] | np.ndarray, candle_count: int | None = None) -> SignalSeries:
    """Wrap raw values as a signal aligned to the end of ``candle_count`` candles."""
    values = np.asarray(values, dtype=np.float64)
    return SignalSeries(values, candle_count if candle_count is not None else len(values), source="values")
