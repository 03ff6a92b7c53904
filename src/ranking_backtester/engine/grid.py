"""
Grid Simulator — evaluate the decision policy over a 2-D parameter grid.

The signal is resolved once and shared by every cell. Threshold axes are held
as scaled integers (x100, or x1000 in fine mode) and stepped by one, so a
range such as 0.40..0.80 always yields exactly 41 values with no drift.

``run_grid_chunk`` is the picklable entry point executed inside worker
processes; the single-process path calls the very same function.
"""

import time
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

import pandas as pd

from ranking_backtester.engine.messages import CompleteMessage, ProgressMessage
from ranking_backtester.engine.models import (
    CandleArrays,
    GridCell,
    GridResult,
    SimulationConfig,
    SimulationResult,
    candles_from_dict,
    candles_to_dict,
)
from ranking_backtester.engine.policy import LookbackExtremes, evaluate
from ranking_backtester.engine.signal import SignalConfig, SignalSeries, resolve_signal
from ranking_backtester.enums import GridKind, InitialPosition, ThresholdPrecision, ThresholdSymmetry
from ranking_backtester.errors import InvalidParameterError
from ranking_backtester.logging import get_logger
from ranking_backtester.settings import (
    BATCH_SIZE,
    CONDITION_COUNT_BOUNDS,
    FINE_MAX_SPAN,
    MAX_LOOKBACK,
    PHASE1_THRESHOLD_BOUNDS,
    PHASE2_COUNT_RADIUS,
    PHASE2_THRESHOLD_RADIUS,
    THRESHOLD_LIMIT,
)

logger = get_logger(__name__)


class ProgressSink(Protocol):
    def put(self, item: dict[str, Any]) -> None: ...


class CancelFlag(Protocol):
    def is_set(self) -> bool: ...


# =============================================================================
# Axes
# =============================================================================


@dataclass(frozen=True)
class AxisRange:
    """Inclusive integer range ``[lo, hi]`` standing for ``lo/scale .. hi/scale``."""

    lo: int
    hi: int
    scale: int = 1

    def __post_init__(self) -> None:
        if self.hi < self.lo:
            raise InvalidParameterError(f"Empty axis range [{self.lo}, {self.hi}]")

    @classmethod
    def thresholds(
        cls,
        lo: float,
        hi: float,
        precision: ThresholdPrecision = ThresholdPrecision.STANDARD,
        limit: float = THRESHOLD_LIMIT,
    ) -> "AxisRange":
        """Validated threshold axis; fine precision caps the span."""
        if lo >= hi:
            raise InvalidParameterError(f"Threshold min must be below max (got {lo} >= {hi})")
        if lo < -limit or hi > limit:
            raise InvalidParameterError(f"Threshold range [{lo}, {hi}] is outside [-{limit}, {limit}]")

        scale = precision.scale
        lo_int = round(lo * scale)
        hi_int = round(hi * scale)
        if precision is ThresholdPrecision.FINE:
            hi_int = min(hi_int, lo_int + round(FINE_MAX_SPAN * scale))
        return cls(lo_int, hi_int, scale)

    @classmethod
    def counts(cls, lo: int, hi: int, limit: int = MAX_LOOKBACK) -> "AxisRange":
        if lo < 1 or hi > limit:
            raise InvalidParameterError(f"Lookback range [{lo}, {hi}] is outside [1, {limit}]")
        if lo > hi:
            raise InvalidParameterError(f"Lookback min must not exceed max (got {lo} > {hi})")
        return cls(int(lo), int(hi), 1)

    @classmethod
    def single(cls, value: float, scale: int = 1) -> "AxisRange":
        v = round(value * scale)
        return cls(v, v, scale)

    @property
    def decimal_places(self) -> int:
        return len(str(self.scale)) - 1

    def values(self) -> list[float]:
        if self.scale == 1:
            return list(range(self.lo, self.hi + 1))
        places = self.decimal_places
        return [round(k / self.scale, places) for k in range(self.lo, self.hi + 1)]

    def __len__(self) -> int:
        return self.hi - self.lo + 1

    def split(self, parts: int) -> list["AxisRange"]:
        """Contiguous sub-ranges; the last one absorbs the remainder."""
        parts = max(1, min(parts, len(self)))
        size = len(self) // parts
        chunks = []
        for k in range(parts):
            lo = self.lo + k * size
            hi = self.hi if k == parts - 1 else lo + size - 1
            chunks.append(AxisRange(lo, hi, self.scale))
        return chunks

    def to_dict(self) -> dict[str, int]:
        return {"lo": self.lo, "hi": self.hi, "scale": self.scale}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AxisRange":
        return cls(int(data["lo"]), int(data["hi"]), int(data.get("scale", 1)))


def enumerate_thresholds(
    lo: float,
    hi: float,
    precision: ThresholdPrecision = ThresholdPrecision.STANDARD,
) -> list[float]:
    """Threshold values from ``lo`` to ``hi`` at the precision's step, inclusive."""
    return AxisRange.thresholds(lo, hi, precision).values()


# =============================================================================
# Grid Task
# =============================================================================


@dataclass
class GridTask:
    """
    What to sweep: row and column axes plus the parameters held fixed.

    ``fixed`` keys by kind:
    - threshold: buy_lookback, sell_lookback
    - phase1: none
    - phase2a: sell_lookback, sell_threshold
    - phase2b: buy_lookback, buy_threshold
    """

    kind: GridKind
    rows: AxisRange
    cols: AxisRange
    fixed: dict[str, Any] = field(default_factory=dict)
    initial_position: InitialPosition = InitialPosition.CASH
    symmetry: ThresholdSymmetry = ThresholdSymmetry.NEGATED
    chunk_index: int = 0
    chunk_count: int = 1
    run_id: str = ""
    include_trades: bool = True

    @property
    def cell_count(self) -> int:
        return len(self.rows) * len(self.cols)

    @property
    def decimal_places(self) -> int:
        return max(self.rows.decimal_places, self.cols.decimal_places)

    def config_for(self, row: float, col: float) -> SimulationConfig:
        fx = self.fixed
        if self.kind is GridKind.THRESHOLD:
            return SimulationConfig(fx["buy_lookback"], row, fx["sell_lookback"], col, self.initial_position)
        if self.kind is GridKind.PHASE1:
            return SimulationConfig(int(row), col, int(row), self.symmetry.sell_threshold(col), self.initial_position)
        if self.kind is GridKind.PHASE2A:
            return SimulationConfig(int(row), col, fx["sell_lookback"], fx["sell_threshold"], self.initial_position)
        if self.kind is GridKind.PHASE2B:
            return SimulationConfig(fx["buy_lookback"], fx["buy_threshold"], int(row), col, self.initial_position)
        raise InvalidParameterError(f"Unknown grid kind: {self.kind}")

    def split(self, parts: int, run_id: str = "") -> list["GridTask"]:
        """Chunk tasks along the row axis, in order."""
        row_chunks = self.rows.split(parts)
        return [
            replace(self, rows=rows, chunk_index=k, chunk_count=len(row_chunks), run_id=run_id or self.run_id)
            for k, rows in enumerate(row_chunks)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_type": self.kind.value,
            "row_range": self.rows.to_dict(),
            "col_range": self.cols.to_dict(),
            "fixed": dict(self.fixed),
            "initial_position": self.initial_position.value,
            "symmetry": self.symmetry.value,
            "decimal_places": self.decimal_places,
            "chunk_index": self.chunk_index,
            "chunk_count": self.chunk_count,
            "run_id": self.run_id,
            "include_trades": self.include_trades,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GridTask":
        return cls(
            kind=GridKind(data["task_type"]),
            rows=AxisRange.from_dict(data["row_range"]),
            cols=AxisRange.from_dict(data["col_range"]),
            fixed=dict(data.get("fixed", {})),
            initial_position=InitialPosition(data.get("initial_position", "cash")),
            symmetry=ThresholdSymmetry(data.get("symmetry", "negated")),
            chunk_index=int(data.get("chunk_index", 0)),
            chunk_count=int(data.get("chunk_count", 1)),
            run_id=data.get("run_id", ""),
            include_trades=bool(data.get("include_trades", True)),
        )


def threshold_grid_task(
    buy_range: tuple[float, float],
    sell_range: tuple[float, float],
    buy_lookback: int,
    sell_lookback: int,
    precision: ThresholdPrecision = ThresholdPrecision.STANDARD,
    initial_position: InitialPosition = InitialPosition.CASH,
) -> GridTask:
    """Buy-threshold x sell-threshold grid with fixed lookbacks."""
    if not (1 <= buy_lookback <= MAX_LOOKBACK and 1 <= sell_lookback <= MAX_LOOKBACK):
        raise InvalidParameterError(f"Lookback counts must be within [1, {MAX_LOOKBACK}]")
    return GridTask(
        kind=GridKind.THRESHOLD,
        rows=AxisRange.thresholds(buy_range[0], buy_range[1], precision),
        cols=AxisRange.thresholds(sell_range[0], sell_range[1], precision),
        fixed={"buy_lookback": int(buy_lookback), "sell_lookback": int(sell_lookback)},
        initial_position=initial_position,
    )


def phase1_task(
    condition_range: tuple[int, int] = CONDITION_COUNT_BOUNDS,
    threshold_range: tuple[float, float] = PHASE1_THRESHOLD_BOUNDS,
    precision: ThresholdPrecision = ThresholdPrecision.STANDARD,
    symmetry: ThresholdSymmetry = ThresholdSymmetry.NEGATED,
    initial_position: InitialPosition = InitialPosition.CASH,
) -> GridTask:
    """Condition count (both sides) x threshold magnitude (both sides)."""
    if threshold_range[0] < 0:
        raise InvalidParameterError("Phase 1 threshold magnitudes must be non-negative")
    return GridTask(
        kind=GridKind.PHASE1,
        rows=AxisRange.counts(*condition_range),
        cols=AxisRange.thresholds(threshold_range[0], threshold_range[1], precision),
        initial_position=initial_position,
        symmetry=symmetry,
    )


def _refine_window(
    count: int,
    threshold: float,
    precision: ThresholdPrecision,
) -> tuple[AxisRange, AxisRange]:
    lo_bound, hi_bound = CONDITION_COUNT_BOUNDS
    counts = AxisRange.counts(
        max(lo_bound, count - PHASE2_COUNT_RADIUS),
        min(hi_bound, count + PHASE2_COUNT_RADIUS),
    )
    thresholds = AxisRange.thresholds(
        max(-THRESHOLD_LIMIT, threshold - PHASE2_THRESHOLD_RADIUS),
        min(THRESHOLD_LIMIT, threshold + PHASE2_THRESHOLD_RADIUS),
        precision,
    )
    return counts, thresholds


def phase2a_task(
    baseline: SimulationConfig,
    precision: ThresholdPrecision = ThresholdPrecision.STANDARD,
) -> GridTask:
    """Refine the buy side around the baseline; the sell side stays fixed."""
    rows, cols = _refine_window(baseline.buy_lookback, baseline.buy_threshold, precision)
    return GridTask(
        kind=GridKind.PHASE2A,
        rows=rows,
        cols=cols,
        fixed={"sell_lookback": baseline.sell_lookback, "sell_threshold": baseline.sell_threshold},
        initial_position=baseline.initial_position,
    )


def phase2b_task(
    baseline: SimulationConfig,
    precision: ThresholdPrecision = ThresholdPrecision.STANDARD,
) -> GridTask:
    """Refine the sell side around the baseline; the buy side stays fixed."""
    rows, cols = _refine_window(baseline.sell_lookback, baseline.sell_threshold, precision)
    return GridTask(
        kind=GridKind.PHASE2B,
        rows=rows,
        cols=cols,
        fixed={"buy_lookback": baseline.buy_lookback, "buy_threshold": baseline.buy_threshold},
        initial_position=baseline.initial_position,
    )


# =============================================================================
# Simulator
# =============================================================================


class GridSimulator:
    """Evaluates every cell of a GridTask against one shared signal."""

    def __init__(self, candles: CandleArrays | pd.DataFrame, signal: SignalSeries) -> None:
        if isinstance(candles, pd.DataFrame):
            candles = CandleArrays.from_frame(candles)
        if not signal.matches(len(candles)):
            raise InvalidParameterError(
                f"Signal was computed for {signal.candle_count} candles, got {len(candles)}"
            )
        self.candles = candles
        self.signal = signal
        self._extremes = LookbackExtremes(signal)

    def evaluate_cell(self, config: SimulationConfig) -> SimulationResult:
        """One cell; arithmetic or value faults degrade to a neutral result."""
        try:
            return evaluate(self.candles, config, self.signal, extremes=self._extremes)
        except (ArithmeticError, ValueError) as e:
            logger.warning("Cell evaluation failed", config=config.to_dict(), error=str(e))
            return SimulationResult.neutral()

    def run(
        self,
        task: GridTask,
        progress: ProgressSink | None = None,
        cancel: CancelFlag | None = None,
    ) -> GridResult | None:
        """
        Evaluate all cells row by row.

        Returns None if ``cancel`` is set while running; progress is emitted
        every BATCH_SIZE cells and after the last cell.
        """
        start_time = time.perf_counter()
        row_values = task.rows.values()
        col_values = task.cols.values()
        total = len(row_values) * len(col_values)
        done = 0

        rows: list[list[GridCell]] = []
        for row in row_values:
            cells: list[GridCell] = []
            for col in col_values:
                config = task.config_for(row, col)
                result = self.evaluate_cell(config)
                if not task.include_trades:
                    result.trades = []
                cells.append(GridCell(row, col, config, result))

                done += 1
                if done % BATCH_SIZE == 0 or done == total:
                    if cancel is not None and cancel.is_set():
                        logger.info("Grid chunk cancelled", chunk=task.chunk_index, completed=done)
                        return None
                    if progress is not None:
                        progress.put(ProgressMessage(
                            percent=done / total * 100,
                            message=f"{done}/{total} cells",
                            chunk_index=task.chunk_index,
                            run_id=task.run_id,
                        ).to_dict())
            rows.append(cells)

        logger.debug(
            "Grid chunk complete",
            kind=task.kind.value,
            chunk=task.chunk_index,
            cells=total,
            duration_s=round(time.perf_counter() - start_time, 3),
        )
        return GridResult.build(task.kind, row_values, col_values, rows, fixed=task.fixed)


# =============================================================================
# Standalone chunk runner (picklable for ProcessPoolExecutor)
# =============================================================================


def build_task_message(
    task: GridTask,
    candles: pd.DataFrame | dict[str, list],
    signal: SignalSeries | None,
    signal_config: SignalConfig,
) -> dict[str, Any]:
    """Self-contained task dict: candles, signal, config and chunk bounds."""
    if isinstance(candles, pd.DataFrame):
        candles = candles_to_dict(candles)
    return {
        **task.to_dict(),
        "candles": candles,
        "signal_config": signal_config.to_dict(),
        "signal": signal.to_dict() if signal is not None else None,
    }


def run_grid_chunk(
    message: dict[str, Any],
    progress: ProgressSink | None = None,
    cancel: CancelFlag | None = None,
) -> dict[str, Any] | None:
    """Run one chunk task dict; returns a COMPLETE message dict, or None if cancelled."""
    task = GridTask.from_dict(message)
    candles = candles_from_dict(message["candles"])

    if message.get("signal") is not None:
        signal = SignalSeries.from_dict(message["signal"])
    else:
        signal = resolve_signal(candles, SignalConfig.from_dict(message.get("signal_config", {})))

    result = GridSimulator(candles, signal).run(task, progress=progress, cancel=cancel)
    if result is None:
        return None
    return CompleteMessage(results=result, chunk_index=task.chunk_index, run_id=task.run_id).to_dict()

