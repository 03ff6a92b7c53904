"""Tests for engine data models and worker messages."""

import pandas as pd
import pytest

from ranking_backtester.engine.messages import (
    CompleteMessage,
    DetailCompleteMessage,
    ErrorMessage,
    MessageType,
    ProgressMessage,
    message_from_dict,
)
from ranking_backtester.engine.models import (
    CandleArrays,
    DetailPoint,
    GridCell,
    GridResult,
    PhaseBaseline,
    SavedCondition,
    SimulationConfig,
    SimulationResult,
    TradeEvent,
    candles_from_dict,
    candles_to_dict,
    validate_candles,
)
from ranking_backtester.engine.signal import SignalConfig, SignalSeries
from ranking_backtester.enums import ConditionSource, Decision, GridKind, InitialPosition, TradeAction
from ranking_backtester.errors import InvalidParameterError
from tests.conftest import make_candles_from_closes


def _cell(row, col, return_pct):
    config = SimulationConfig(int(row), col, int(row), col)
    return GridCell(row, col, config, SimulationResult(total_return_pct=return_pct))


class TestCandles:

    def test_missing_column_rejected(self):
        candles = make_candles_from_closes([1.0, 2.0]).drop(columns=["high"])
        with pytest.raises(InvalidParameterError):
            validate_candles(candles)

    def test_unsorted_rejected(self):
        candles = make_candles_from_closes([1.0, 2.0, 3.0]).iloc[::-1]
        with pytest.raises(InvalidParameterError):
            validate_candles(candles)

    def test_duplicate_timestamps_rejected(self):
        candles = make_candles_from_closes([1.0, 2.0])
        candles["timestamp"] = 5
        with pytest.raises(InvalidParameterError):
            validate_candles(candles)

    def test_arrays_are_read_only(self):
        arrays = CandleArrays.from_frame(make_candles_from_closes([1.0, 2.0, 3.0]))
        with pytest.raises(ValueError):
            arrays.closes[0] = 9.0
        assert arrays.suffix(1).closes.tolist() == [2.0, 3.0]


class TestGridResult:

    def test_best_cell_first_wins_ties(self):
        grid = GridResult.build(
            GridKind.PHASE1, [1, 2], [0.2, 0.3],
            [[_cell(1, 0.2, 1.0), _cell(1, 0.3, 4.0)], [_cell(2, 0.2, 4.0), _cell(2, 0.3, -2.0)]],
        )
        best = grid.best_cell()
        assert (best.row_value, best.col_value) == (1, 0.3)
        assert grid.min_return == -2.0
        assert grid.max_return == 4.0
        assert [c.result.total_return_pct for c in grid.top_n(2)] == [4.0, 4.0]

    def test_to_frame_indexed_by_axes(self):
        grid = GridResult.build(GridKind.PHASE1, [1], [0.2, 0.3], [[_cell(1, 0.2, 1.0), _cell(1, 0.3, 2.0)]])
        frame = grid.to_frame()
        assert list(frame.index) == [1]
        assert list(frame.columns) == [0.2, 0.3]
        assert frame.loc[1, 0.3] == 2.0

    def test_dict_without_trades(self):
        cell = _cell(1, 0.2, 1.0)
        cell.result.trades = [TradeEvent(1, TradeAction.BUY, 10.0, -1.0, 0.2)]
        grid = GridResult.build(GridKind.PHASE1, [1], [0.2], [[cell]])
        data = grid.to_dict(include_trades=False)
        assert "trades" not in data["cells"][0][0]["result"]
        assert GridResult.from_dict(grid.to_dict()).cell(0, 0).result.trades[0].price == 10.0

    def test_empty_grid(self):
        grid = GridResult.build(GridKind.PHASE1, [], [], [])
        assert grid.best_cell() is None
        assert grid.min_return == 0.0


class TestBaselineAndSavedCondition:

    def test_baseline_source_follows_grid_kind(self):
        grid = GridResult.build(GridKind.PHASE2B, [1], [0.2], [[_cell(1, 0.2, 1.0)]])
        baseline = PhaseBaseline.from_cell(grid, grid.cell(0, 0))
        assert baseline.source is ConditionSource.PHASE2B
        assert baseline.condition_count == 1

    def test_saved_condition_to_config(self):
        condition = SavedCondition(
            name="x",
            buy_condition_count=3,
            buy_threshold=0.4,
            sell_condition_count=5,
            sell_threshold=0.6,
            expected_return=1.0,
            trade_count=2,
            source=ConditionSource.PHASE1,
        )
        config = condition.to_config(InitialPosition.COIN)
        assert config == SimulationConfig(3, 0.4, 5, 0.6, InitialPosition.COIN)
        assert len(condition.id) == 12
        assert SavedCondition.from_dict(condition.to_dict()) == condition


class TestSignalModels:

    def test_signal_series_is_immutable(self):
        signal = SignalSeries([1.0, 2.0], candle_count=4)
        assert signal.offset == 2
        with pytest.raises(ValueError):
            signal.values[0] = 5.0

    def test_signal_config_defaults(self):
        config = SignalConfig.from_dict({})
        assert config == SignalConfig()


class TestMessages:

    def test_progress_dict_carries_type(self):
        data = ProgressMessage(percent=50.0, message="5/10 cells", chunk_index=1, run_id="r").to_dict()
        assert data["type"] == "PROGRESS"
        decoded = message_from_dict(data)
        assert isinstance(decoded, ProgressMessage)
        assert decoded.chunk_index == 1

    def test_error_message(self):
        decoded = message_from_dict(ErrorMessage(error="boom", chunk_index=2).to_dict())
        assert isinstance(decoded, ErrorMessage)
        assert decoded.type is MessageType.ERROR
        assert decoded.error == "boom"

    def test_complete_message_carries_grid(self):
        grid = GridResult.build(GridKind.PHASE2A, [1], [0.2], [[_cell(1, 0.2, 3.0)]])
        decoded = message_from_dict(CompleteMessage(results=grid).to_dict())
        assert isinstance(decoded, CompleteMessage)
        assert decoded.results.kind is GridKind.PHASE2A
        assert decoded.results.max_return == 3.0

    def test_detail_complete_message(self):
        point = DetailPoint(1, 0.5, Decision.BUY, 10.0, 0.0, 0.0)
        message = DetailCompleteMessage(details=[point], analysis_start_price=10.0, analysis_start_timestamp=1)
        decoded = message_from_dict(message.to_dict())
        assert decoded.details[0].decision is Decision.BUY
        assert decoded.analysis_start_price == 10.0

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            message_from_dict({"type": "NOPE"})


def test_candle_frame_roundtrip_keeps_order():
    candles = make_candles_from_closes([3.0, 1.0, 2.0])
    restored = candles_from_dict(candles_to_dict(candles))
    pd.testing.assert_series_equal(restored["close"], candles["close"])
