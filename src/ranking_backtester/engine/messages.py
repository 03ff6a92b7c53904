"""
Messages exchanged between the controller and worker processes.

Workers never share memory with the controller: a task dict goes in, and
progress, completion, error and detail messages come back as plain dicts
built from these dataclasses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ranking_backtester.engine.models import DetailPoint, GridResult, TradeEvent


class MessageType(str, Enum):
    PROGRESS = "PROGRESS"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"
    DETAIL_COMPLETE = "DETAIL_COMPLETE"


@dataclass
class ProgressMessage:
    percent: float
    message: str = ""
    chunk_index: int = 0
    run_id: str = ""

    type: MessageType = field(default=MessageType.PROGRESS, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "percent": self.percent,
            "message": self.message,
            "chunk_index": self.chunk_index,
            "run_id": self.run_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProgressMessage":
        return cls(
            percent=float(data["percent"]),
            message=data.get("message", ""),
            chunk_index=int(data.get("chunk_index", 0)),
            run_id=data.get("run_id", ""),
        )


@dataclass
class CompleteMessage:
    results: GridResult
    chunk_index: int = 0
    run_id: str = ""

    type: MessageType = field(default=MessageType.COMPLETE, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "results": self.results.to_dict(),
            "chunk_index": self.chunk_index,
            "run_id": self.run_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompleteMessage":
        return cls(
            results=GridResult.from_dict(data["results"]),
            chunk_index=int(data.get("chunk_index", 0)),
            run_id=data.get("run_id", ""),
        )


@dataclass
class ErrorMessage:
    error: str
    chunk_index: int | None = None
    run_id: str = ""

    type: MessageType = field(default=MessageType.ERROR, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "error": self.error,
            "chunk_index": self.chunk_index,
            "run_id": self.run_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ErrorMessage":
        return cls(
            error=data["error"],
            chunk_index=data.get("chunk_index"),
            run_id=data.get("run_id", ""),
        )


@dataclass
class DetailCompleteMessage:
    details: list[DetailPoint]
    trades: list[TradeEvent] = field(default_factory=list)
    analysis_start_price: float = 0.0
    analysis_start_timestamp: int = 0

    type: MessageType = field(default=MessageType.DETAIL_COMPLETE, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "details": [d.to_dict() for d in self.details],
            "trades": [t.to_dict() for t in self.trades],
            "analysis_start_price": self.analysis_start_price,
            "analysis_start_timestamp": self.analysis_start_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DetailCompleteMessage":
        return cls(
            details=[DetailPoint.from_dict(d) for d in data.get("details", [])],
            trades=[TradeEvent.from_dict(t) for t in data.get("trades", [])],
            analysis_start_price=float(data.get("analysis_start_price", 0.0)),
            analysis_start_timestamp=int(data.get("analysis_start_timestamp", 0)),
        )


_MESSAGE_TYPES = {
    MessageType.PROGRESS: ProgressMessage,
    MessageType.COMPLETE: CompleteMessage,
    MessageType.ERROR: ErrorMessage,
    MessageType.DETAIL_COMPLETE: DetailCompleteMessage,
}


def message_from_dict(
    data: dict[str, Any],
) -> ProgressMessage | CompleteMessage | ErrorMessage | DetailCompleteMessage:
    """Decode any worker message by its ``type`` field."""
    return _MESSAGE_TYPES[MessageType(data["type"])].from_dict(data)
