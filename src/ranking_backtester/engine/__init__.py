"""Backtesting engine — policy, grid simulator, worker pool, progressive search, detail query."""

from ranking_backtester.engine.models import (
    CandleArrays,
    ComparisonOutcome,
    DetailPoint,
    DetailResult,
    GridCell,
    GridResult,
    PhaseBaseline,
    SavedCondition,
    SimulationConfig,
    SimulationResult,
    TradeEvent,
)
from ranking_backtester.engine.signal import SignalConfig, SignalSeries, build_signal, resolve_signal
from ranking_backtester.engine.policy import DecisionPolicy, LookbackExtremes, evaluate
from ranking_backtester.engine.grid import AxisRange, GridSimulator, GridTask, enumerate_thresholds, run_grid_chunk
from ranking_backtester.engine.pool import WorkerPool
from ranking_backtester.engine.detail import DetailQueryRunner, run_detail_query
from ranking_backtester.engine.progressive import ProgressiveSearchController

__all__ = [
    "CandleArrays",
    "ComparisonOutcome",
    "DetailPoint",
    "DetailResult",
    "GridCell",
    "GridResult",
    "PhaseBaseline",
    "SavedCondition",
    "SimulationConfig",
    "SimulationResult",
    "TradeEvent",
    "SignalConfig",
    "SignalSeries",
    "build_signal",
    "resolve_signal",
    "DecisionPolicy",
    "LookbackExtremes",
    "evaluate",
    "AxisRange",
    "GridSimulator",
    "GridTask",
    "enumerate_thresholds",
    "run_grid_chunk",
    "WorkerPool",
    "DetailQueryRunner",
    "run_detail_query",
    "ProgressiveSearchController",
]
