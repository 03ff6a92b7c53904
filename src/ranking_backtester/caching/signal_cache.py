"""
SignalCache — reuse computed signal series across searches on the same candles.

A progressive search, a detail query and repeated API jobs often ask for the
same signal over the same candle history. The key is the hash of the candle
columns plus the signal parameters; values are immutable SignalSeries, so
handing out the same object to several callers is safe.
"""

import hashlib
import json
from collections import OrderedDict
from typing import Any, Callable

import pandas as pd

from ranking_backtester.logging import get_logger

logger = get_logger(__name__)


class SignalCache:
    """In-memory cache with oldest-first eviction for signal computations."""

    def __init__(self, max_size: int = 64) -> None:
        self._cache: OrderedDict[str, Any] = OrderedDict()
        self._max_size = max_size
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any | None:
        value = self._cache.get(key)
        if value is not None:
            self._hits += 1
        else:
            self._misses += 1
        return value

    def put(self, key: str, value: Any) -> None:
        """Cache a value. Evicts the oldest 10% when at capacity."""
        if key not in self._cache and len(self._cache) >= self._max_size:
            remove_count = max(1, self._max_size // 10)
            for _ in range(remove_count):
                self._cache.popitem(last=False)
            logger.debug("Cache eviction", evicted=remove_count)

        self._cache[key] = value

    def get_or_compute(self, key: str, compute_fn: Callable[[], Any]) -> Any:
        """Return the cached value, computing and storing it on a miss. None is never cached."""
        value = self.get(key)
        if value is not None:
            return value
        value = compute_fn()
        if value is not None:
            self.put(key, value)
        return value

    def clear(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._cache),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total > 0 else 0.0,
        }

    @staticmethod
    def make_key(kind: str, data_hash: str, **params: Any) -> str:
        """Build a cache key from signal kind, data hash, and parameters."""
        param_str = json.dumps(params, sort_keys=True, default=str)
        return f"{kind}:{data_hash}:{param_str}"

    @staticmethod
    def hash_frame(candles: pd.DataFrame) -> str:
        """Short hash of the timestamp/high/low/close columns."""
        cols = [c for c in ("timestamp", "high", "low", "close") if c in candles.columns]
        row_hashes = pd.util.hash_pandas_object(candles[cols], index=False).to_numpy()
        digest = hashlib.sha256(",".join(cols).encode())
        digest.update(row_hashes.tobytes())
        return digest.hexdigest()[:16]
