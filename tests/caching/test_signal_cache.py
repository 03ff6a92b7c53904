"""Tests for SignalCache."""

import pytest

from ranking_backtester.caching import SignalCache
from ranking_backtester.engine.signal import resolve_signal
from ranking_backtester.errors import SignalUnavailableError
from tests.conftest import make_candles


class TestSignalCache:

    def test_put_get(self):
        cache = SignalCache()
        cache.put("k", [1, 2, 3])
        assert cache.get("k") == [1, 2, 3]
        assert cache.stats["hits"] == 1

    def test_miss(self):
        cache = SignalCache()
        assert cache.get("missing") is None
        assert cache.stats["misses"] == 1

    def test_get_or_compute_calls_once(self):
        cache = SignalCache()
        calls = []

        def compute():
            calls.append(1)
            return "value"

        assert cache.get_or_compute("k", compute) == "value"
        assert cache.get_or_compute("k", compute) == "value"
        assert len(calls) == 1

    def test_none_never_cached(self):
        cache = SignalCache()
        assert cache.get_or_compute("k", lambda: None) is None
        assert len(cache) == 0

    def test_eviction_removes_oldest(self):
        cache = SignalCache(max_size=3)
        for key in ("a", "b", "c", "d"):
            cache.put(key, key)
        assert len(cache) == 3
        assert cache.get("a") is None
        assert cache.get("d") == "d"

    def test_clear_resets_stats(self):
        cache = SignalCache()
        cache.put("k", 1)
        cache.get("k")
        cache.clear()
        assert cache.stats == {"size": 0, "max_size": 64, "hits": 0, "misses": 0, "hit_rate": 0.0}

    def test_make_key_ignores_param_order(self):
        assert SignalCache.make_key("rti", "h", a=1, b=2) == SignalCache.make_key("rti", "h", b=2, a=1)


class TestHashFrame:

    def test_stable(self):
        assert SignalCache.hash_frame(make_candles(n=50)) == SignalCache.hash_frame(make_candles(n=50))

    def test_distinct(self):
        assert SignalCache.hash_frame(make_candles(n=50, seed=1)) != SignalCache.hash_frame(make_candles(n=50, seed=2))

    def test_ignores_volume(self):
        candles = make_candles(n=50)
        other = candles.copy()
        other["volume"] = 0.0
        assert SignalCache.hash_frame(candles) == SignalCache.hash_frame(other)


class TestResolveSignal:

    def test_second_resolve_hits_cache(self, candles_200, fast_signal_config):
        cache = SignalCache()
        first = resolve_signal(candles_200, fast_signal_config, cache)
        second = resolve_signal(candles_200, fast_signal_config, cache)
        assert first is second
        assert cache.stats["hits"] == 1
        assert cache.stats["misses"] == 1

    def test_unavailable_signal_not_cached(self, fast_signal_config):
        cache = SignalCache()
        with pytest.raises(SignalUnavailableError):
            resolve_signal(make_candles(n=10), fast_signal_config, cache)
        assert len(cache) == 0
