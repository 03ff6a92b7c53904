"""Tests for signal construction and resolution."""

import numpy as np
import pytest

from ranking_backtester.engine.signal import SignalConfig, SignalSeries, build_signal, resolve_signal
from ranking_backtester.enums import SignalSource, ZScoreMode
from ranking_backtester.errors import SignalUnavailableError
from ranking_backtester.indicators.library import calculate_rti
from ranking_backtester.ranking.composite import IndicatorFlags, calculate_ranking
from tests.conftest import make_candles


class TestBuildSignal:

    def test_rti_signal_matches_indicator(self, candles_200, fast_signal_config):
        signal = build_signal(candles_200, fast_signal_config)
        rti = calculate_rti(candles_200, trend_window=20, signal_length=5)

        assert signal.source == "rti"
        assert signal.candle_count == 200
        assert len(signal) == 200 - 20 - 5 + 2
        np.testing.assert_allclose(signal.values, rti.rti.values)

    def test_composite_signal_matches_ranking(self, candles_200):
        config = SignalConfig(source=SignalSource.COMPOSITE, zscore_mode=ZScoreMode.SLIDING)
        signal = build_signal(candles_200, config)
        ranking = calculate_ranking(candles_200, config.indicators, zscore_mode=ZScoreMode.SLIDING)

        assert signal.source == "composite"
        assert signal.offset == ranking.offset
        np.testing.assert_allclose(signal.values, ranking.values.values)

    def test_composite_with_subset_of_indicators(self, candles_200):
        flags = IndicatorFlags(macd=False, rsi=True, ao=False, disparity=False, rti=False)
        signal = build_signal(candles_200, SignalConfig(source=SignalSource.COMPOSITE, indicators=flags))
        assert signal is not None
        assert signal.offset == 14

    def test_short_history_returns_none(self, fast_signal_config):
        assert build_signal(make_candles(n=10), fast_signal_config) is None


class TestResolveSignal:

    def test_raises_when_unavailable(self, fast_signal_config):
        with pytest.raises(SignalUnavailableError):
            resolve_signal(make_candles(n=10), fast_signal_config)

    def test_without_cache(self, candles_200, fast_signal_config):
        assert len(resolve_signal(candles_200, fast_signal_config)) == 200 - 20 - 5 + 2


class TestSignalSeries:

    def test_longer_than_history_rejected(self):
        with pytest.raises(ValueError):
            SignalSeries([0.0, 1.0, 2.0], candle_count=2)

    def test_dict_roundtrip(self):
        signal = SignalSeries([0.5, -0.5], candle_count=5, source="rti")
        restored = SignalSeries.from_dict(signal.to_dict())
        assert restored.to_list() == [0.5, -0.5]
        assert restored.matches(5)
        assert not restored.matches(6)

    def test_config_dict_roundtrip(self):
        config = SignalConfig(source=SignalSource.COMPOSITE, zscore_mode=ZScoreMode.SLIDING, rti_trend_window=50)
        assert SignalConfig.from_dict(config.to_dict()) == config
