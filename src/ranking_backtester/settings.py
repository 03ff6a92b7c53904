"""
Engine constants and environment-driven settings.

Constants are fixed by the trading rule and the search protocol; settings are
the knobs an operator may change per deployment through environment variables.
"""

import os
from dataclasses import dataclass
from typing import Any

from ranking_backtester.enums import ThresholdPrecision, ThresholdSymmetry

# Simulation
INITIAL_CAPITAL = 1_000_000.0
BATCH_SIZE = 10

# Ranking composite
LOOKBACK_WINDOW = 1000
MIN_ZSCORE_SAMPLES = 10
DISPARITY_PERIODS = (20, 60, 120)
RANKING_DISPARITY_PERIOD = 20

# Worker pool
MAX_POOL_WORKERS = 4

# Search domains
CONDITION_COUNT_BOUNDS = (1, 10)
PHASE1_THRESHOLD_BOUNDS = (0.2, 2.0)
THRESHOLD_LIMIT = 5.0
MAX_LOOKBACK = 120
PHASE2_COUNT_RADIUS = 3
PHASE2_THRESHOLD_RADIUS = 0.5
FINE_MAX_SPAN = 0.2

DEFAULT_BUY_THRESHOLD_RANGE = (0.0, 2.0)
DEFAULT_SELL_THRESHOLD_RANGE = (-2.0, 0.0)


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    return int(raw)


@dataclass
class EngineSettings:
    """Deployment settings for the search engine."""

    max_workers: int | None = None
    threshold_precision: ThresholdPrecision = ThresholdPrecision.STANDARD
    threshold_symmetry: ThresholdSymmetry = ThresholdSymmetry.NEGATED
    signal_cache_size: int = 64

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from BACKTESTER_* environment variables."""
        return cls(
            max_workers=_env_int("BACKTESTER_MAX_WORKERS", None),
            threshold_precision=ThresholdPrecision(
                os.environ.get("BACKTESTER_THRESHOLD_PRECISION", "standard").lower()
            ),
            threshold_symmetry=ThresholdSymmetry(
                os.environ.get("BACKTESTER_THRESHOLD_SYMMETRY", "negated").lower()
            ),
            signal_cache_size=_env_int("BACKTESTER_SIGNAL_CACHE_SIZE", 64) or 64,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_workers": self.max_workers,
            "threshold_precision": self.threshold_precision.value,
            "threshold_symmetry": self.threshold_symmetry.value,
            "signal_cache_size": self.signal_cache_size,
        }
