"""Custom exceptions for backtesting and parameter search."""


class BacktestError(Exception):
    """Base exception for all ranking backtester errors"""

    pass


class InvalidParameterError(BacktestError, ValueError):
    """Raised when a parameter or range is rejected before any computation starts"""

    pass


class SignalUnavailableError(BacktestError):
    """Raised when no enabled indicator has enough history to build a signal"""

    pass


class WorkerFailureError(BacktestError):
    """Raised when a worker chunk fails; sibling chunks are cancelled"""

    def __init__(self, message: str, chunk_index: int | None = None) -> None:
        super().__init__(message)
        self.chunk_index = chunk_index
