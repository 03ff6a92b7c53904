"""Tests for IncrementalStats — sliding-window mean and stdev."""

import numpy as np
import pytest

from ranking_backtester.ranking import IncrementalStats


class TestIncrementalStats:

    def test_empty_window(self):
        stats = IncrementalStats(max_size=5)
        assert stats.count == 0
        assert stats.mean == 0.0
        assert stats.std == 0.0
        assert stats.zscore(3.0) == 0.0

    def test_matches_batch_statistics_over_window(self):
        rng = np.random.RandomState(7)
        values = rng.normal(10.0, 3.0, size=200)
        stats = IncrementalStats(max_size=50)
        for v in values:
            stats.add(v)

        window = values[-50:]
        assert stats.count == 50
        assert stats.mean == pytest.approx(window.mean(), rel=1e-9)
        assert stats.std == pytest.approx(window.std(), rel=1e-6)

    def test_zscore(self):
        stats = IncrementalStats(max_size=10)
        for v in (1.0, 2.0, 3.0, 4.0, 5.0):
            stats.add(v)
        expected = (5.0 - 3.0) / np.std([1.0, 2.0, 3.0, 4.0, 5.0])
        assert stats.zscore(5.0) == pytest.approx(expected)

    def test_constant_values_have_zero_std(self):
        stats = IncrementalStats(max_size=10)
        for _ in range(20):
            stats.add(0.1)
        assert stats.std == 0.0
        assert stats.zscore(0.1) == 0.0

    def test_reset(self):
        stats = IncrementalStats(max_size=10)
        stats.add(1.0)
        stats.add(2.0)
        stats.reset()
        assert stats.count == 0
        assert stats.stats["mean"] == 0.0

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            IncrementalStats(max_size=0)
