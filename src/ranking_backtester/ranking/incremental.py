"""
IncrementalStats — O(1) sliding-window mean and population standard deviation.

Keeps a running sum and sum of squares over the last ``max_size`` values, so
scoring a long series against its trailing window costs one update per step
instead of a full window pass.
"""

import math
from collections import deque
from typing import Any


class IncrementalStats:
    """Sliding-window mean/stdev with constant-time updates."""

    def __init__(self, max_size: int = 1000) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._window: deque[float] = deque()
        self._sum = 0.0
        self._sum_squares = 0.0

    def add(self, value: float) -> None:
        """Push a value, dropping the oldest one once the window is full."""
        value = float(value)
        self._window.append(value)
        self._sum += value
        self._sum_squares += value * value

        if len(self._window) > self.max_size:
            removed = self._window.popleft()
            self._sum -= removed
            self._sum_squares -= removed * removed

    @property
    def count(self) -> int:
        return len(self._window)

    @property
    def mean(self) -> float:
        if not self._window:
            return 0.0
        return self._sum / len(self._window)

    @property
    def std(self) -> float:
        """Population stdev via E[x^2] - mean^2, floored at zero against rounding."""
        if not self._window:
            return 0.0
        mean = self.mean
        variance = self._sum_squares / len(self._window) - mean * mean
        return math.sqrt(max(0.0, variance))

    def zscore(self, value: float) -> float:
        std = self.std
        if std == 0:
            return 0.0
        return (value - self.mean) / std

    def reset(self) -> None:
        self._window.clear()
        self._sum = 0.0
        self._sum_squares = 0.0

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "max_size": self.max_size,
            "mean": self.mean,
            "std": self.std,
        }
