"""Tests for ProgressiveSearchController — phases, baseline selection, compare."""

import pytest

from ranking_backtester.caching import SignalCache
from ranking_backtester.engine.models import (
    GridCell,
    GridResult,
    PhaseBaseline,
    SimulationConfig,
    SimulationResult,
)
from ranking_backtester.engine.pool import WorkerPool
from ranking_backtester.engine.progressive import ProgressiveSearchController
from ranking_backtester.enums import ConditionSource, GridKind, ThresholdSymmetry
from ranking_backtester.errors import InvalidParameterError, SignalUnavailableError
from tests.conftest import make_candles


@pytest.fixture
def controller(fast_signal_config):
    ctrl = ProgressiveSearchController(
        make_candles(n=150, seed=9),
        signal_config=fast_signal_config,
        pool=WorkerPool(1),
    )
    yield ctrl
    ctrl.pool.close()


def _single_cell_grid(kind: GridKind, return_pct: float, lookback: int = 2) -> GridResult:
    config = SimulationConfig(lookback, 0.5, lookback, 0.5)
    cell = GridCell(lookback, 0.5, config, SimulationResult(total_return_pct=return_pct))
    return GridResult.build(kind, [lookback], [0.5], [[cell]])


class TestPhase1:

    def test_grid_shape_and_symmetry(self, controller):
        grid = controller.run_phase1(condition_range=(1, 3), threshold_range=(0.2, 0.4))
        assert grid.kind is GridKind.PHASE1
        assert grid.shape == (3, 21)
        for cell in grid.iter_cells():
            assert cell.config.buy_lookback == cell.config.sell_lookback
            assert cell.config.sell_threshold == -cell.config.buy_threshold

    def test_mirrored_symmetry(self, fast_signal_config):
        ctrl = ProgressiveSearchController(
            make_candles(n=150, seed=9),
            signal_config=fast_signal_config,
            pool=WorkerPool(1),
            symmetry=ThresholdSymmetry.MIRRORED,
        )
        grid = ctrl.run_phase1(condition_range=(1, 2), threshold_range=(0.2, 0.3))
        assert all(c.config.sell_threshold == c.config.buy_threshold for c in grid.iter_cells())

    def test_insufficient_history_raises(self, fast_signal_config):
        ctrl = ProgressiveSearchController(
            make_candles(n=10), signal_config=fast_signal_config, pool=WorkerPool(1),
        )
        with pytest.raises(SignalUnavailableError):
            ctrl.run_phase1()

    def test_invalid_range_raises(self, controller):
        with pytest.raises(InvalidParameterError):
            controller.run_phase1(threshold_range=(1.0, 0.5))

    def test_cancel_returns_none(self, controller):
        result = controller.run_phase1(
            condition_range=(1, 5),
            threshold_range=(0.2, 0.5),
            on_progress=lambda _msg: controller.cancel(),
        )
        assert result is None

    def test_cancel_stops_later_phases_and_leaves_shared_pool_usable(self, fast_signal_config):
        pool = WorkerPool(1)
        candles = make_candles(n=150, seed=9)
        first = ProgressiveSearchController(candles, signal_config=fast_signal_config, pool=pool)
        second = ProgressiveSearchController(candles, signal_config=fast_signal_config, pool=pool)

        first.cancel()
        assert first.cancelled
        assert first.run_phase1(condition_range=(1, 2), threshold_range=(0.2, 0.3)) is None

        grid = second.run_phase1(condition_range=(1, 2), threshold_range=(0.2, 0.3))
        assert grid is not None
        assert grid.shape == (2, 11)

        first.close()
        assert second.run_phase1(condition_range=(1, 1), threshold_range=(0.2, 0.3)) is not None
        pool.close()


class TestBaselineSelection:

    def test_default_is_best_cell(self, controller):
        grid = controller.run_phase1(condition_range=(1, 3), threshold_range=(0.2, 0.3))
        baseline = controller.select_baseline(grid)
        assert baseline.source is ConditionSource.PHASE1
        assert baseline.result.total_return_pct == grid.max_return

    def test_select_by_index(self, controller):
        grid = controller.run_phase1(condition_range=(1, 3), threshold_range=(0.2, 0.3))
        baseline = controller.select_baseline(grid, row=1, col=4)
        assert baseline.config.buy_lookback == 2
        assert baseline.config.buy_threshold == 0.24

    def test_index_out_of_range(self, controller):
        grid = controller.run_phase1(condition_range=(1, 2), threshold_range=(0.2, 0.3))
        with pytest.raises(InvalidParameterError):
            controller.select_baseline(grid, row=5, col=0)

    def test_threshold_grid_cannot_be_baseline(self, controller):
        grid = controller.run_threshold_grid(2, 2, buy_range=(0.0, 0.05), sell_range=(-0.05, 0.0))
        with pytest.raises(InvalidParameterError):
            controller.select_baseline(grid)


class TestRefinement:

    def test_phase2a_keeps_sell_side(self, controller):
        phase1 = controller.run_phase1(condition_range=(1, 3), threshold_range=(0.2, 0.3))
        baseline = controller.select_baseline(phase1, row=1, col=0)
        grid = controller.run_phase2a(baseline)

        assert grid.kind is GridKind.PHASE2A
        assert grid.row_values == [1, 2, 3, 4, 5]
        for cell in grid.iter_cells():
            assert cell.config.sell_lookback == baseline.config.sell_lookback
            assert cell.config.sell_threshold == baseline.config.sell_threshold

    def test_phase2b_keeps_buy_side(self, controller):
        phase1 = controller.run_phase1(condition_range=(1, 3), threshold_range=(0.2, 0.3))
        baseline = controller.select_baseline(phase1, row=2, col=10)
        grid = controller.run_phase2b(baseline)

        assert grid.kind is GridKind.PHASE2B
        assert grid.col_values[0] == -0.8
        assert grid.col_values[-1] == 0.2
        for cell in grid.iter_cells():
            assert cell.config.buy_lookback == 3
            assert cell.config.buy_threshold == 0.3


class TestCompare:

    def test_higher_return_wins(self, controller):
        outcome = controller.compare(
            _single_cell_grid(GridKind.PHASE2A, 3.0),
            _single_cell_grid(GridKind.PHASE2B, 5.0),
        )
        assert outcome.recommended.source is ConditionSource.PHASE2B
        assert outcome.phase2a_best.result.total_return_pct == 3.0

    def test_tie_goes_to_buy_refinement(self, controller):
        outcome = controller.compare(
            _single_cell_grid(GridKind.PHASE2A, 4.0, lookback=2),
            _single_cell_grid(GridKind.PHASE2B, 4.0, lookback=3),
        )
        assert outcome.recommended.source is ConditionSource.PHASE2A
        assert outcome.recommended.config.buy_lookback == 2

    def test_run_all(self, controller):
        outcome = controller.run_all()
        best = max(
            outcome.phase2a_best.result.total_return_pct,
            outcome.phase2b_best.result.total_return_pct,
        )
        assert outcome.recommended.result.total_return_pct == best
        assert "recommended" in outcome.to_dict()


class TestSignalReuse:

    def test_signal_resolved_once(self, controller):
        assert controller.signal is controller.signal

    def test_shared_cache_between_controllers(self, fast_signal_config):
        cache = SignalCache()
        candles = make_candles(n=150, seed=9)
        first = ProgressiveSearchController(candles, fast_signal_config, pool=WorkerPool(1), cache=cache)
        second = ProgressiveSearchController(candles, fast_signal_config, pool=WorkerPool(1), cache=cache)
        assert first.signal is second.signal
        assert cache.stats["hits"] == 1


class TestDetailAndSaving:

    def test_detail_uses_controller_signal(self, controller):
        detail = controller.detail(SimulationConfig(2, 0.3, 2, 0.3))
        assert len(detail.details) == len(controller.signal)

    def test_saved_condition_from_baseline(self, controller):
        baseline = PhaseBaseline(
            source=ConditionSource.PHASE2B,
            config=SimulationConfig(4, 0.35, 6, 0.45),
            result=SimulationResult(total_return_pct=12.5, trade_count=7),
        )
        saved = controller.saved_condition(baseline, "  my condition ", memo="note")
        assert saved.name == "my condition"
        assert saved.buy_condition_count == 4
        assert saved.sell_condition_count == 6
        assert saved.sell_threshold == 0.45
        assert saved.expected_return == 12.5
        assert saved.trade_count == 7
        assert saved.source is ConditionSource.PHASE2B
        assert saved.memo == "note"

    def test_empty_name_rejected(self, controller):
        baseline = PhaseBaseline(ConditionSource.PHASE1, SimulationConfig(1, 0.2, 1, 0.2), SimulationResult())
        with pytest.raises(InvalidParameterError):
            controller.saved_condition(baseline, "   ")
