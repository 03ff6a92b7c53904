"""
Trade detail query — replay one configuration step by step.

Uses the same DecisionPolicy as the grid through its step observer, so the
per-step trace can never disagree with the grid cell it was picked from.
"""

from concurrent.futures import Future, ProcessPoolExecutor
from typing import Any

import numpy as np
import pandas as pd

from ranking_backtester.caching.signal_cache import SignalCache
from ranking_backtester.engine.messages import DetailCompleteMessage
from ranking_backtester.engine.models import (
    CandleArrays,
    DetailPoint,
    DetailResult,
    SimulationConfig,
    candles_from_dict,
    candles_to_dict,
    validate_candles,
)
from ranking_backtester.engine.policy import DecisionPolicy
from ranking_backtester.engine.signal import SignalConfig, SignalSeries, resolve_signal
from ranking_backtester.enums import Decision, InitialPosition
from ranking_backtester.logging import get_logger
from ranking_backtester.settings import INITIAL_CAPITAL

logger = get_logger(__name__)


def run_detail_query(
    candles: pd.DataFrame,
    config: SimulationConfig,
    signal: SignalSeries | None = None,
    signal_config: SignalConfig | None = None,
    analysis_start: int | None = None,
    cache: SignalCache | None = None,
) -> DetailResult:
    """
    Simulate ``config`` and report every step from ``analysis_start`` on.

    A supplied signal is reused only if it was computed for these candles;
    otherwise it is rebuilt from ``signal_config``. Steps before
    ``analysis_start`` (ms timestamp) still drive the simulation but are not
    reported.
    """
    validate_candles(candles)
    if signal is None or not signal.matches(len(candles)):
        signal = resolve_signal(candles, signal_config or SignalConfig(), cache=cache)

    arrays = CandleArrays.from_frame(candles)
    aligned = arrays.suffix(signal.offset)
    timestamps = aligned.timestamps.tolist()
    values = signal.to_list()

    report_from = 0
    if analysis_start is not None:
        report_from = int(np.searchsorted(aligned.timestamps, analysis_start, side="left"))

    # coin starts measure holding from the analysis start; cash starts from the first buy
    details: list[DetailPoint] = []
    hold_base: float | None = None
    if config.initial_position is InitialPosition.COIN and report_from < len(aligned):
        hold_base = float(aligned.closes[report_from])

    def observe(i: int, decision: Decision, price: float, equity: float) -> None:
        nonlocal hold_base
        if decision is Decision.BUY and hold_base is None:
            hold_base = price
        if i < report_from:
            return
        hold_return = (price - hold_base) / hold_base * 100 if hold_base else 0.0
        details.append(DetailPoint(
            timestamp=timestamps[i],
            ranking_value=values[i],
            decision=decision,
            price=price,
            cumulative_return=(equity - INITIAL_CAPITAL) / INITIAL_CAPITAL * 100,
            hold_return=hold_return,
        ))

    result = DecisionPolicy(config).run(arrays, signal, observer=observe)

    detail = DetailResult(
        config=config,
        result=result,
        details=details,
        analysis_start_price=details[0].price if details else 0.0,
        analysis_start_timestamp=details[0].timestamp if details else 0,
    )
    logger.debug(
        "Detail query complete",
        steps=len(details),
        trades=result.trade_count,
        total_return=round(result.total_return_pct, 4),
    )
    return detail


# =============================================================================
# Out-of-pool runner (picklable worker)
# =============================================================================


def _detail_worker(message: dict[str, Any]) -> dict[str, Any]:
    signal = SignalSeries.from_dict(message["signal"]) if message.get("signal") else None
    detail = run_detail_query(
        candles_from_dict(message["candles"]),
        SimulationConfig.from_dict(message["config"]),
        signal=signal,
        signal_config=SignalConfig.from_dict(message.get("signal_config", {})),
        analysis_start=message.get("analysis_start"),
    )
    return DetailCompleteMessage(
        details=detail.details,
        trades=detail.result.trades,
        analysis_start_price=detail.analysis_start_price,
        analysis_start_timestamp=detail.analysis_start_timestamp,
    ).to_dict()


class DetailQueryRunner:
    """Runs detail queries on a dedicated single-process executor, outside the grid pool."""

    def __init__(self) -> None:
        self._executor: ProcessPoolExecutor | None = None

    def submit(
        self,
        candles: pd.DataFrame,
        config: SimulationConfig,
        signal: SignalSeries | None = None,
        signal_config: SignalConfig | None = None,
        analysis_start: int | None = None,
    ) -> Future:
        """Future resolving to a DETAIL_COMPLETE message dict."""
        if self._executor is None:
            self._executor = ProcessPoolExecutor(max_workers=1)
        message = {
            "candles": candles_to_dict(candles),
            "config": config.to_dict(),
            "signal": signal.to_dict() if signal is not None else None,
            "signal_config": (signal_config or SignalConfig()).to_dict(),
            "analysis_start": analysis_start,
        }
        return self._executor.submit(_detail_worker, message)

    def run(self, *args: Any, **kwargs: Any) -> DetailCompleteMessage:
        return DetailCompleteMessage.from_dict(self.submit(*args, **kwargs).result())

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "DetailQueryRunner":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
