"""Enumerations shared by the policy, grid and search layers."""

from enum import Enum


class InitialPosition(str, Enum):
    """What the simulated account holds before the first step."""

    CASH = "cash"
    COIN = "coin"


class PolicyState(str, Enum):
    FLAT = "flat"
    HOLDING = "holding"


class TradeAction(str, Enum):
    BUY = "buy"
    SELL = "sell"


class Decision(str, Enum):
    """Per-step outcome reported by the detail query."""

    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class GridKind(str, Enum):
    """Which parameters the grid rows and columns sweep."""

    THRESHOLD = "threshold"
    PHASE1 = "phase1"
    PHASE2A = "phase2a"
    PHASE2B = "phase2b"


class ThresholdPrecision(str, Enum):
    """Threshold step: 0.01 (standard) or 0.001 (fine, span capped at 0.2)."""

    STANDARD = "standard"
    FINE = "fine"

    @property
    def scale(self) -> int:
        return 1000 if self is ThresholdPrecision.FINE else 100

    @property
    def decimal_places(self) -> int:
        return 3 if self is ThresholdPrecision.FINE else 2


class ThresholdSymmetry(str, Enum):
    """
    How Phase 1 derives the sell threshold from one magnitude.

    NEGATED stores ``-magnitude`` as the sell threshold, so the sell rule asks
    for a drop from the prior maximum as large as the rise the buy rule asks
    for. MIRRORED reuses the magnitude unchanged on the sell side.
    """

    MIRRORED = "mirrored"
    NEGATED = "negated"

    def sell_threshold(self, magnitude: float) -> float:
        if self is ThresholdSymmetry.NEGATED:
            return -magnitude
        return magnitude


class ConditionSource(str, Enum):
    """Search phase a saved condition came from."""

    PHASE1 = "phase1"
    PHASE2A = "phase2a"
    PHASE2B = "phase2b"


class SignalSource(str, Enum):
    """Which series drives the decision policy."""

    RTI = "rti"
    COMPOSITE = "composite"


class ZScoreMode(str, Enum):
    FULL_RANGE = "full_range"
    SLIDING = "sliding"
