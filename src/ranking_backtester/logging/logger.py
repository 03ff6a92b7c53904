"""
Structured logging for the ranking backtester.

structlog renders either human-readable console output or JSON lines; stdlib
logging carries the rotating file handlers so that worker processes and the
API share one configuration.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.types import Processor

_MAX_LOG_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5


def _rotating_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=_MAX_LOG_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_logging(
    log_level: str = "INFO",
    log_dir: Path | None = None,
    log_to_console: bool = True,
    log_to_file: bool = False,
    json_logs: bool = False,
) -> None:
    """
    Configure structlog and the stdlib handlers behind it.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for rotating log files (default: ./logs)
        log_to_console: Emit to stdout
        log_to_file: Write backtester.log and error.log under log_dir
        json_logs: Render events as JSON instead of the console format
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    handlers: list[logging.Handler] = []

    if log_to_console:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        handlers.append(console)

    if log_to_file:
        log_dir = log_dir or Path("logs")
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating_handler(log_dir / "backtester.log", level))
        handlers.append(_rotating_handler(log_dir / "error.log", logging.ERROR))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=log_to_console and sys.stdout.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=handlers,
        force=True,
    )

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance for a module."""
    return structlog.get_logger(name)


class log_context:
    """Bind key/value pairs to every event logged inside the block."""

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
