"""
IndicatorSeries — a named, read-only float series aligned to a candle suffix.

Indicators need warm-up history, so ``values[i]`` belongs to
``candle[offset + i]`` where ``offset = candle_count - len(values)``.
"""

from dataclasses import dataclass, field
from typing import Any

import numpy as np


def frozen_array(values: Any) -> np.ndarray:
    """Copy ``values`` into a float64 array that cannot be written to."""
    arr = np.array(values, dtype=np.float64)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class IndicatorSeries:
    """Dense indicator values plus the candle count they were computed from."""

    name: str
    values: np.ndarray = field(repr=False)
    candle_count: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", frozen_array(self.values))
        if self.values.ndim != 1:
            raise ValueError(f"{self.name}: indicator values must be one-dimensional")
        if self.candle_count < len(self.values):
            raise ValueError(
                f"{self.name}: {len(self.values)} values cannot align to {self.candle_count} candles"
            )

    @property
    def offset(self) -> int:
        return self.candle_count - len(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def tail(self, length: int) -> "IndicatorSeries":
        """Keep the last ``length`` values; the offset grows accordingly."""
        if length >= len(self.values):
            return self
        return IndicatorSeries(self.name, self.values[len(self.values) - length:], self.candle_count)

    def last(self) -> float | None:
        return float(self.values[-1]) if len(self.values) else None

    def to_list(self) -> list[float]:
        return [float(v) for v in self.values]
