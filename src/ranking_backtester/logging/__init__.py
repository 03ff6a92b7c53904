"""Structured logging for the ranking backtester."""

from ranking_backtester.logging.logger import get_logger, setup_logging, log_context

__all__ = ["get_logger", "setup_logging", "log_context"]
