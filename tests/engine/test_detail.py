"""Tests for the trade detail query."""

import pytest

from ranking_backtester.engine.detail import DetailQueryRunner, run_detail_query
from ranking_backtester.engine.messages import DetailCompleteMessage
from ranking_backtester.engine.models import SimulationConfig
from ranking_backtester.engine.policy import evaluate, signal_from_values
from ranking_backtester.engine.signal import resolve_signal
from ranking_backtester.enums import Decision, InitialPosition, TradeAction
from tests.conftest import HOUR_MS, START_TS, make_candles, make_candles_from_closes

CLOSES = [100.0, 100.0, 100.0, 100.0, 150.0]
VALUES = [-1.0, -1.0, -1.0, 1.0, 1.0]


@pytest.fixture
def candles():
    return make_candles_from_closes(CLOSES)


@pytest.fixture
def config():
    return SimulationConfig(3, 0.5, 3, -0.5)


class TestRunDetailQuery:

    def test_reports_every_step(self, candles, config):
        detail = run_detail_query(candles, config, signal=signal_from_values(VALUES))

        assert [d.decision for d in detail.details] == [Decision.HOLD] * 3 + [Decision.BUY, Decision.HOLD]
        assert [d.ranking_value for d in detail.details] == VALUES
        assert detail.details[-1].cumulative_return == pytest.approx(50.0)
        assert detail.analysis_start_price == 100.0
        assert detail.analysis_start_timestamp == START_TS

    def test_hold_return_based_on_first_buy(self, candles, config):
        detail = run_detail_query(candles, config, signal=signal_from_values(VALUES))
        assert [d.hold_return for d in detail.details[:4]] == [0.0] * 4
        assert detail.details[-1].hold_return == pytest.approx(50.0)

    def test_coin_start_hold_base_is_first_close(self):
        closes = [200.0, 100.0, 100.0, 100.0, 150.0]
        config = SimulationConfig(3, 0.5, 3, -0.5, InitialPosition.COIN)
        detail = run_detail_query(make_candles_from_closes(closes), config, signal=signal_from_values(VALUES))
        assert detail.details[1].hold_return == pytest.approx(-50.0)
        assert detail.details[-1].hold_return == pytest.approx(-25.0)

    def test_coin_start_hold_base_is_analysis_start_close(self):
        closes = [200.0, 100.0, 100.0, 120.0, 150.0]
        config = SimulationConfig(3, 0.5, 3, -0.5, InitialPosition.COIN)
        start = START_TS + 2 * HOUR_MS
        detail = run_detail_query(
            make_candles_from_closes(closes), config, signal=signal_from_values(VALUES), analysis_start=start,
        )

        assert detail.analysis_start_price == 100.0
        assert [d.hold_return for d in detail.details] == pytest.approx([0.0, 20.0, 50.0])
        # the position itself still converted at the first close
        assert detail.details[-1].cumulative_return == pytest.approx(-25.0)

    def test_analysis_start_hides_earlier_steps(self, candles, config):
        start = START_TS + 3 * HOUR_MS
        detail = run_detail_query(candles, config, signal=signal_from_values(VALUES), analysis_start=start)

        assert len(detail.details) == 2
        assert detail.analysis_start_timestamp == start
        assert detail.analysis_start_price == 100.0
        assert detail.result.trades[0].action is TradeAction.BUY

    def test_agrees_with_grid_evaluation(self, fast_signal_config):
        candles = make_candles(n=120, seed=4)
        signal = resolve_signal(candles, fast_signal_config)
        config = SimulationConfig(2, 0.3, 4, -0.2)

        detail = run_detail_query(candles, config, signal=signal)
        grid_result = evaluate(candles, config, signal)

        assert detail.result.total_return_pct == grid_result.total_return_pct
        assert detail.result.trade_count == grid_result.trade_count
        assert detail.details[-1].cumulative_return == pytest.approx(grid_result.total_return_pct)

    def test_mismatched_signal_is_rebuilt(self, fast_signal_config):
        candles = make_candles(n=120, seed=4)
        stale = signal_from_values([0.0] * 10)
        detail = run_detail_query(candles, SimulationConfig(2, 0.3, 2, -0.3), signal=stale,
                                  signal_config=fast_signal_config)
        assert len(detail.details) == 120 - 20 - 5 + 2

    def test_to_frame(self, candles, config):
        frame = run_detail_query(candles, config, signal=signal_from_values(VALUES)).to_frame()
        assert list(frame["decision"]) == ["hold", "hold", "hold", "buy", "hold"]


class TestDetailQueryRunner:

    def test_runs_out_of_process(self, candles, config):
        with DetailQueryRunner() as runner:
            message = runner.run(candles, config, signal=signal_from_values(VALUES))

        assert isinstance(message, DetailCompleteMessage)
        assert len(message.details) == 5
        assert [t.action for t in message.trades] == [TradeAction.BUY]
        assert message.analysis_start_price == 100.0
