"""
Backtesting data models — candles, configs, trade logs, grid results.

Defines every structure that crosses the policy, grid, pool and search
layers:
- Read-only candle arrays taken once from a caller's DataFrame
- Simulation configuration (validated, immutable)
- Trade events and per-run simulation results
- Grid cells and grid results with axis arrays and global min/max
- Phase baselines, comparison outcome and saved conditions
- Per-step detail rows for the trade-detail query

All models serialize to plain dicts so they can cross process boundaries.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import numpy as np
import pandas as pd

from ranking_backtester.enums import (
    ConditionSource,
    Decision,
    GridKind,
    InitialPosition,
    TradeAction,
)
from ranking_backtester.errors import InvalidParameterError
from ranking_backtester.indicators.series import frozen_array
from ranking_backtester.settings import INITIAL_CAPITAL


# =============================================================================
# Candles
# =============================================================================


REQUIRED_COLUMNS = ("timestamp", "open", "high", "low", "close")


def validate_candles(candles: pd.DataFrame) -> None:
    """Reject frames missing OHLC columns or not strictly ascending by timestamp."""
    missing = set(REQUIRED_COLUMNS) - set(candles.columns)
    if missing:
        raise InvalidParameterError(f"Missing columns: {sorted(missing)}")
    ts = candles["timestamp"]
    if len(ts) > 1 and not ts.is_monotonic_increasing:
        raise InvalidParameterError("Candles must be ordered by ascending timestamp")
    if ts.duplicated().any():
        raise InvalidParameterError("Candles contain duplicate timestamps")


@dataclass(frozen=True)
class CandleArrays:
    """Timestamps and closes as read-only arrays; what the policy actually reads."""

    timestamps: np.ndarray = field(repr=False)
    closes: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        ts = np.array(self.timestamps, dtype=np.int64)
        ts.setflags(write=False)
        object.__setattr__(self, "timestamps", ts)
        object.__setattr__(self, "closes", frozen_array(self.closes))
        if len(self.timestamps) != len(self.closes):
            raise InvalidParameterError("timestamps and closes differ in length")

    @classmethod
    def from_frame(cls, candles: pd.DataFrame) -> "CandleArrays":
        return cls(
            timestamps=candles["timestamp"].to_numpy(),
            closes=candles["close"].to_numpy(dtype=np.float64),
        )

    def __len__(self) -> int:
        return len(self.closes)

    def suffix(self, offset: int) -> "CandleArrays":
        if offset <= 0:
            return self
        return CandleArrays(self.timestamps[offset:], self.closes[offset:])


def candles_to_dict(candles: pd.DataFrame) -> dict[str, list]:
    """Serialize a candle frame into picklable column lists."""
    return candles[list(REQUIRED_COLUMNS)].to_dict(orient="list")


def candles_from_dict(data: dict[str, list]) -> pd.DataFrame:
    return pd.DataFrame(data, columns=list(REQUIRED_COLUMNS))


# =============================================================================
# Simulation Config
# =============================================================================


@dataclass(frozen=True)
class SimulationConfig:
    """Four policy parameters plus the starting position; immutable per run."""

    buy_lookback: int
    buy_threshold: float
    sell_lookback: int
    sell_threshold: float
    initial_position: InitialPosition = InitialPosition.CASH

    def __post_init__(self) -> None:
        if int(self.buy_lookback) < 1 or int(self.sell_lookback) < 1:
            raise InvalidParameterError(
                f"Lookback counts must be >= 1 (buy={self.buy_lookback}, sell={self.sell_lookback})"
            )
        object.__setattr__(self, "buy_lookback", int(self.buy_lookback))
        object.__setattr__(self, "sell_lookback", int(self.sell_lookback))
        object.__setattr__(self, "buy_threshold", float(self.buy_threshold))
        object.__setattr__(self, "sell_threshold", float(self.sell_threshold))
        object.__setattr__(self, "initial_position", InitialPosition(self.initial_position))

    @property
    def start_index(self) -> int:
        return max(self.buy_lookback, self.sell_lookback)

    def to_dict(self) -> dict[str, Any]:
        return {
            "buy_lookback": self.buy_lookback,
            "buy_threshold": self.buy_threshold,
            "sell_lookback": self.sell_lookback,
            "sell_threshold": self.sell_threshold,
            "initial_position": self.initial_position.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SimulationConfig":
        return cls(
            buy_lookback=data["buy_lookback"],
            buy_threshold=data["buy_threshold"],
            sell_lookback=data["sell_lookback"],
            sell_threshold=data["sell_threshold"],
            initial_position=InitialPosition(data.get("initial_position", "cash")),
        )


# =============================================================================
# Trade Event / Simulation Result
# =============================================================================


@dataclass
class TradeEvent:
    """A discretionary buy or sell; the terminal liquidation is never logged."""

    timestamp: int
    action: TradeAction
    price: float
    lookback_extreme: float
    threshold_used: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "action": self.action.value,
            "price": self.price,
            "lookback_extreme": self.lookback_extreme,
            "threshold_used": self.threshold_used,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradeEvent":
        return cls(
            timestamp=int(data["timestamp"]),
            action=TradeAction(data["action"]),
            price=float(data["price"]),
            lookback_extreme=float(data["lookback_extreme"]),
            threshold_used=float(data["threshold_used"]),
        )


@dataclass
class SimulationResult:
    """Outcome of one policy run over the candle range."""

    total_return_pct: float = 0.0
    trade_count: int = 0
    trades: list[TradeEvent] = field(default_factory=list)
    final_balance: float = INITIAL_CAPITAL
    hold_return_pct: float = 0.0

    @classmethod
    def neutral(cls) -> "SimulationResult":
        """Result used when a cell cannot be evaluated: flat capital, no trades."""
        return cls()

    def to_dict(self, include_trades: bool = True) -> dict[str, Any]:
        d: dict[str, Any] = {
            "total_return_pct": self.total_return_pct,
            "trade_count": self.trade_count,
            "final_balance": self.final_balance,
            "hold_return_pct": self.hold_return_pct,
        }
        if include_trades:
            d["trades"] = [t.to_dict() for t in self.trades]
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SimulationResult":
        return cls(
            total_return_pct=float(data.get("total_return_pct", 0.0)),
            trade_count=int(data.get("trade_count", 0)),
            trades=[TradeEvent.from_dict(t) for t in data.get("trades", [])],
            final_balance=float(data.get("final_balance", INITIAL_CAPITAL)),
            hold_return_pct=float(data.get("hold_return_pct", 0.0)),
        )


# =============================================================================
# Grid Result
# =============================================================================


@dataclass
class GridCell:
    """One evaluated grid point and the configuration that produced it."""

    row_value: float
    col_value: float
    config: SimulationConfig
    result: SimulationResult

    def to_dict(self, include_trades: bool = True) -> dict[str, Any]:
        return {
            "row_value": self.row_value,
            "col_value": self.col_value,
            "config": self.config.to_dict(),
            "result": self.result.to_dict(include_trades=include_trades),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GridCell":
        return cls(
            row_value=data["row_value"],
            col_value=data["col_value"],
            config=SimulationConfig.from_dict(data["config"]),
            result=SimulationResult.from_dict(data["result"]),
        )


@dataclass
class GridResult:
    """Row-major matrix of grid cells with axis arrays and global return bounds."""

    kind: GridKind
    row_values: list[float] = field(default_factory=list)
    col_values: list[float] = field(default_factory=list)
    cells: list[list[GridCell]] = field(default_factory=list)
    min_return: float = 0.0
    max_return: float = 0.0
    fixed: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        kind: GridKind,
        row_values: list[float],
        col_values: list[float],
        cells: list[list[GridCell]],
        fixed: dict[str, Any] | None = None,
    ) -> "GridResult":
        """Assemble a result, deriving min/max return from the cells."""
        returns = [c.result.total_return_pct for row in cells for c in row]
        return cls(
            kind=kind,
            row_values=list(row_values),
            col_values=list(col_values),
            cells=cells,
            min_return=min(returns) if returns else 0.0,
            max_return=max(returns) if returns else 0.0,
            fixed=dict(fixed or {}),
        )

    @property
    def shape(self) -> tuple[int, int]:
        return len(self.cells), len(self.col_values)

    def cell(self, row: int, col: int) -> GridCell:
        return self.cells[row][col]

    def iter_cells(self):
        for row in self.cells:
            yield from row

    def best_cell(self) -> GridCell | None:
        """Highest return; the first cell in row-major order wins ties."""
        best: GridCell | None = None
        for c in self.iter_cells():
            if best is None or c.result.total_return_pct > best.result.total_return_pct:
                best = c
        return best

    def top_n(self, n: int = 5) -> list[GridCell]:
        return sorted(
            self.iter_cells(),
            key=lambda c: c.result.total_return_pct,
            reverse=True,
        )[:n]

    def returns_matrix(self) -> np.ndarray:
        return np.array(
            [[c.result.total_return_pct for c in row] for row in self.cells],
            dtype=np.float64,
        )

    def to_frame(self) -> pd.DataFrame:
        """Return matrix as a DataFrame indexed by row values, columns by col values."""
        return pd.DataFrame(self.returns_matrix(), index=self.row_values, columns=self.col_values)

    def to_dict(self, include_trades: bool = True) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "row_values": self.row_values,
            "col_values": self.col_values,
            "cells": [[c.to_dict(include_trades=include_trades) for c in row] for row in self.cells],
            "min_return": self.min_return,
            "max_return": self.max_return,
            "fixed": self.fixed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GridResult":
        return cls(
            kind=GridKind(data["kind"]),
            row_values=list(data.get("row_values", [])),
            col_values=list(data.get("col_values", [])),
            cells=[[GridCell.from_dict(c) for c in row] for row in data.get("cells", [])],
            min_return=float(data.get("min_return", 0.0)),
            max_return=float(data.get("max_return", 0.0)),
            fixed=dict(data.get("fixed", {})),
        )


# =============================================================================
# Phase Baseline / Comparison
# =============================================================================


_KIND_TO_SOURCE = {
    GridKind.PHASE1: ConditionSource.PHASE1,
    GridKind.PHASE2A: ConditionSource.PHASE2A,
    GridKind.PHASE2B: ConditionSource.PHASE2B,
}


@dataclass(frozen=True)
class PhaseBaseline:
    """The cell selected from one phase, carried read-only into the next."""

    source: ConditionSource
    config: SimulationConfig
    result: SimulationResult

    @classmethod
    def from_cell(cls, grid: GridResult, cell: GridCell) -> "PhaseBaseline":
        source = _KIND_TO_SOURCE.get(grid.kind)
        if source is None:
            raise InvalidParameterError(f"A {grid.kind.value} grid cannot provide a phase baseline")
        return cls(source=source, config=cell.config, result=cell.result)

    @property
    def condition_count(self) -> int:
        """Phase 1 uses one count for both sides; the buy count stands for it."""
        return self.config.buy_lookback

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "config": self.config.to_dict(),
            "result": self.result.to_dict(include_trades=False),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PhaseBaseline":
        return cls(
            source=ConditionSource(data["source"]),
            config=SimulationConfig.from_dict(data["config"]),
            result=SimulationResult.from_dict(data.get("result", {})),
        )


@dataclass
class ComparisonOutcome:
    """Best cells of the buy and sell refinements and the recommended one."""

    recommended: PhaseBaseline
    phase2a_best: PhaseBaseline
    phase2b_best: PhaseBaseline

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommended": self.recommended.to_dict(),
            "phase2a_best": self.phase2a_best.to_dict(),
            "phase2b_best": self.phase2b_best.to_dict(),
        }


# =============================================================================
# Saved Condition
# =============================================================================


@dataclass
class SavedCondition:
    """Configuration record handed to the external store for later reuse."""

    name: str
    buy_condition_count: int
    buy_threshold: float
    sell_condition_count: int
    sell_threshold: float
    expected_return: float
    trade_count: int
    source: ConditionSource
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:12])
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    memo: str | None = None

    @classmethod
    def from_baseline(cls, name: str, baseline: PhaseBaseline, memo: str | None = None) -> "SavedCondition":
        return cls(
            name=name,
            buy_condition_count=baseline.config.buy_lookback,
            buy_threshold=baseline.config.buy_threshold,
            sell_condition_count=baseline.config.sell_lookback,
            sell_threshold=baseline.config.sell_threshold,
            expected_return=baseline.result.total_return_pct,
            trade_count=baseline.result.trade_count,
            source=baseline.source,
            memo=memo,
        )

    def to_config(self, initial_position: InitialPosition = InitialPosition.CASH) -> SimulationConfig:
        return SimulationConfig(
            buy_lookback=self.buy_condition_count,
            buy_threshold=self.buy_threshold,
            sell_lookback=self.sell_condition_count,
            sell_threshold=self.sell_threshold,
            initial_position=initial_position,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "buy_condition_count": self.buy_condition_count,
            "buy_threshold": self.buy_threshold,
            "sell_condition_count": self.sell_condition_count,
            "sell_threshold": self.sell_threshold,
            "expected_return": self.expected_return,
            "trade_count": self.trade_count,
            "source": self.source.value,
            "created_at": self.created_at,
            "memo": self.memo,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SavedCondition":
        return cls(
            id=data["id"],
            name=data["name"],
            buy_condition_count=int(data["buy_condition_count"]),
            buy_threshold=float(data["buy_threshold"]),
            sell_condition_count=int(data["sell_condition_count"]),
            sell_threshold=float(data["sell_threshold"]),
            expected_return=float(data["expected_return"]),
            trade_count=int(data["trade_count"]),
            source=ConditionSource(data["source"]),
            created_at=data["created_at"],
            memo=data.get("memo"),
        )


# =============================================================================
# Trade Detail
# =============================================================================


@dataclass
class DetailPoint:
    """One reported step of a detail query."""

    timestamp: int
    ranking_value: float
    decision: Decision
    price: float
    cumulative_return: float
    hold_return: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "ranking_value": self.ranking_value,
            "decision": self.decision.value,
            "price": self.price,
            "cumulative_return": self.cumulative_return,
            "hold_return": self.hold_return,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DetailPoint":
        return cls(
            timestamp=int(data["timestamp"]),
            ranking_value=float(data["ranking_value"]),
            decision=Decision(data["decision"]),
            price=float(data["price"]),
            cumulative_return=float(data["cumulative_return"]),
            hold_return=float(data["hold_return"]),
        )


@dataclass
class DetailResult:
    """Per-step trace of one configuration plus its summary result."""

    config: SimulationConfig
    result: SimulationResult
    details: list[DetailPoint] = field(default_factory=list)
    analysis_start_price: float = 0.0
    analysis_start_timestamp: int = 0

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([d.to_dict() for d in self.details])
