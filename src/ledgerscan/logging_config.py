"""Structured logging configuration with per-tick correlation.

Every log record emitted while a reconciliation tick is running carries that
tick's ID, so the lines belonging to one pass can be grouped by operators.
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

tick_id_var: ContextVar[Optional[str]] = ContextVar("tick_id", default=None)

# LogRecord attributes that are not user-supplied extras.
_RESERVED_ATTRS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "tick_id",
})


class TickContextFilter(logging.Filter):
    """Logging filter that adds the current tick ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tick_id = tick_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        tick_id = getattr(record, "tick_id", None)
        if tick_id:
            log_data["tick_id"] = tick_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for the service.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or plain text (False)
        log_file: Optional file path for logging output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(tick_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(TickContextFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(TickContextFilter())
        root_logger.addHandler(file_handler)


def generate_tick_id() -> str:
    return f"tick_{uuid.uuid4().hex[:16]}"


def get_tick_id() -> Optional[str]:
    return tick_id_var.get()


class TickContext:
    """Context manager binding a tick ID to log records for its duration."""

    def __init__(self, tick_id: Optional[str] = None):
        self.tick_id = tick_id or generate_tick_id()
        self._token = None

    def __enter__(self) -> "TickContext":
        self._token = tick_id_var.set(self.tick_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        tick_id_var.reset(self._token)
