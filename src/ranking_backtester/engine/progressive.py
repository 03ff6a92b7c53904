"""
ProgressiveSearchController — coarse-then-refine parameter search.

Phase 1 (Coarse): one condition count and one threshold magnitude shared by
both sides.
Phase 2A (Buy refinement): sell side fixed at the baseline; buy count within
+-3 and buy threshold within +-0.5 of it.
Phase 2B (Sell refinement): the mirror image of 2A.
Compare: the better of the 2A and 2B best cells (2A on ties) becomes the
recommended configuration.

The signal is resolved once per controller and shared by every phase and
detail query.
"""

import threading
import time

import pandas as pd

from ranking_backtester.caching.signal_cache import SignalCache
from ranking_backtester.engine.detail import run_detail_query
from ranking_backtester.engine.grid import (
    GridTask,
    phase1_task,
    phase2a_task,
    phase2b_task,
    threshold_grid_task,
)
from ranking_backtester.engine.models import (
    ComparisonOutcome,
    DetailResult,
    GridResult,
    PhaseBaseline,
    SavedCondition,
    SimulationConfig,
    validate_candles,
)
from ranking_backtester.engine.pool import ProgressCallback, WorkerPool
from ranking_backtester.engine.signal import SignalConfig, SignalSeries, resolve_signal
from ranking_backtester.enums import InitialPosition, ThresholdPrecision, ThresholdSymmetry
from ranking_backtester.errors import InvalidParameterError
from ranking_backtester.logging import get_logger
from ranking_backtester.settings import (
    CONDITION_COUNT_BOUNDS,
    DEFAULT_BUY_THRESHOLD_RANGE,
    DEFAULT_SELL_THRESHOLD_RANGE,
    PHASE1_THRESHOLD_BOUNDS,
    EngineSettings,
)

logger = get_logger(__name__)


class ProgressiveSearchController:
    """Drives the phased search over one candle history."""

    def __init__(
        self,
        candles: pd.DataFrame,
        signal_config: SignalConfig | None = None,
        initial_position: InitialPosition = InitialPosition.CASH,
        pool: WorkerPool | None = None,
        symmetry: ThresholdSymmetry | None = None,
        precision: ThresholdPrecision | None = None,
        cache: SignalCache | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        validate_candles(candles)
        settings = settings or EngineSettings()

        self.candles = candles.reset_index(drop=True)
        self.signal_config = signal_config or SignalConfig()
        self.initial_position = InitialPosition(initial_position)
        self.symmetry = symmetry or settings.threshold_symmetry
        self.precision = precision or settings.threshold_precision
        self.cache = cache

        self._owns_pool = pool is None
        self.pool = pool or WorkerPool(settings.max_workers)
        self._cancelled = threading.Event()
        self._signal: SignalSeries | None = None

    @property
    def signal(self) -> SignalSeries:
        """Signal for these candles; resolved on first use, then reused."""
        if self._signal is None:
            self._signal = resolve_signal(self.candles, self.signal_config, cache=self.cache)
            logger.info(
                "Signal resolved",
                source=self._signal.source,
                length=len(self._signal),
                offset=self._signal.offset,
            )
        return self._signal

    # =========================================================================
    # Phases
    # =========================================================================

    def run_phase1(
        self,
        condition_range: tuple[int, int] = CONDITION_COUNT_BOUNDS,
        threshold_range: tuple[float, float] = PHASE1_THRESHOLD_BOUNDS,
        on_progress: ProgressCallback | None = None,
    ) -> GridResult | None:
        task = phase1_task(
            condition_range,
            threshold_range,
            precision=self.precision,
            symmetry=self.symmetry,
            initial_position=self.initial_position,
        )
        return self._run_phase("Phase 1", task, on_progress)

    def run_phase2a(
        self,
        baseline: PhaseBaseline,
        on_progress: ProgressCallback | None = None,
    ) -> GridResult | None:
        task = phase2a_task(self._baseline_config(baseline), precision=self.precision)
        return self._run_phase("Phase 2A", task, on_progress)

    def run_phase2b(
        self,
        baseline: PhaseBaseline,
        on_progress: ProgressCallback | None = None,
    ) -> GridResult | None:
        task = phase2b_task(self._baseline_config(baseline), precision=self.precision)
        return self._run_phase("Phase 2B", task, on_progress)

    def run_threshold_grid(
        self,
        buy_lookback: int,
        sell_lookback: int,
        buy_range: tuple[float, float] = DEFAULT_BUY_THRESHOLD_RANGE,
        sell_range: tuple[float, float] = DEFAULT_SELL_THRESHOLD_RANGE,
        on_progress: ProgressCallback | None = None,
    ) -> GridResult | None:
        """Buy threshold x sell threshold sweep with both lookbacks fixed."""
        task = threshold_grid_task(
            buy_range,
            sell_range,
            buy_lookback,
            sell_lookback,
            precision=self.precision,
            initial_position=self.initial_position,
        )
        return self._run_phase("Threshold grid", task, on_progress)

    def select_baseline(
        self,
        grid: GridResult,
        row: int | None = None,
        col: int | None = None,
    ) -> PhaseBaseline:
        """Pick a cell by index, or the best cell when no index is given."""
        if row is None or col is None:
            cell = grid.best_cell()
            if cell is None:
                raise InvalidParameterError("Cannot select a baseline from an empty grid")
        else:
            rows, cols = grid.shape
            if not (0 <= row < rows and 0 <= col < cols):
                raise InvalidParameterError(f"Cell ({row}, {col}) is outside the {rows}x{cols} grid")
            cell = grid.cell(row, col)
        return PhaseBaseline.from_cell(grid, cell)

    def compare(self, phase2a: GridResult, phase2b: GridResult) -> ComparisonOutcome:
        """Best of each refinement; 2A wins ties."""
        best_a = self.select_baseline(phase2a)
        best_b = self.select_baseline(phase2b)
        if best_b.result.total_return_pct > best_a.result.total_return_pct:
            recommended = best_b
        else:
            recommended = best_a

        logger.info(
            "Phase comparison",
            phase2a_return=round(best_a.result.total_return_pct, 4),
            phase2b_return=round(best_b.result.total_return_pct, 4),
            recommended=recommended.source.value,
        )
        return ComparisonOutcome(recommended=recommended, phase2a_best=best_a, phase2b_best=best_b)

    def run_all(self, on_progress: ProgressCallback | None = None) -> ComparisonOutcome | None:
        """Phase 1, both refinements around its best cell, then compare."""
        phase1 = self.run_phase1(on_progress=on_progress)
        if phase1 is None:
            return None
        baseline = self.select_baseline(phase1)

        phase2a = self.run_phase2a(baseline, on_progress=on_progress)
        if phase2a is None:
            return None
        phase2b = self.run_phase2b(baseline, on_progress=on_progress)
        if phase2b is None:
            return None
        return self.compare(phase2a, phase2b)

    def cancel(self) -> None:
        """
        Cancel this search: the running phase and any later one return None.

        Only this controller's runs are affected when the pool is shared.
        """
        logger.info("Search cancel requested")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # =========================================================================
    # Detail / Saved conditions
    # =========================================================================

    def detail(self, config: SimulationConfig, analysis_start: int | None = None) -> DetailResult:
        return run_detail_query(
            self.candles,
            config,
            signal=self.signal,
            signal_config=self.signal_config,
            analysis_start=analysis_start,
        )

    @staticmethod
    def saved_condition(baseline: PhaseBaseline, name: str, memo: str | None = None) -> SavedCondition:
        if not name or not name.strip():
            raise InvalidParameterError("Saved condition name must not be empty")
        return SavedCondition.from_baseline(name.strip(), baseline, memo=memo)

    def close(self) -> None:
        if self._owns_pool:
            self.pool.close()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _baseline_config(self, baseline: PhaseBaseline) -> SimulationConfig:
        config = baseline.config
        if config.initial_position is not self.initial_position:
            config = SimulationConfig(
                config.buy_lookback,
                config.buy_threshold,
                config.sell_lookback,
                config.sell_threshold,
                self.initial_position,
            )
        return config

    def _run_phase(
        self,
        label: str,
        task: GridTask,
        on_progress: ProgressCallback | None,
    ) -> GridResult | None:
        start_time = time.perf_counter()
        signal = self.signal
        logger.info(f"{label}: search", kind=task.kind.value, cells=task.cell_count, fixed=task.fixed)

        grid = self.pool.run(
            task,
            self.candles,
            signal,
            self.signal_config,
            on_progress=on_progress,
            cancel_event=self._cancelled,
        )
        if grid is None:
            logger.info(f"{label}: cancelled")
            return None

        best = grid.best_cell()
        logger.info(
            f"{label} complete",
            best_return=round(best.result.total_return_pct, 4) if best else None,
            min_return=round(grid.min_return, 4),
            max_return=round(grid.max_return, 4),
            duration_s=round(time.perf_counter() - start_time, 2),
        )
        return grid
