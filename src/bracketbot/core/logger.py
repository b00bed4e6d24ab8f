from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from rich.logging import RichHandler

# Context variable for the current trading cycle
_cycle_id: ContextVar[str] = ContextVar("cycle_id", default="")

# Extra record attributes copied into structured output
_EXTRA_FIELDS = (
    "event_type",
    "side",
    "price",
    "quantity",
    "order_id",
    "position_id",
    "pnl",
    "status_code",
    "error",
    "error_type",
)


def get_cycle_id() -> str:
    """Get the current cycle ID."""
    return _cycle_id.get()


def set_cycle_id(cid: Optional[str] = None) -> str:
    """Set a cycle ID so every log line of one loop iteration can be grouped.

    Args:
        cid: Cycle ID to set. If None, generates a new short UUID.

    Returns:
        The cycle ID that was set.
    """
    if cid is None:
        cid = str(uuid.uuid4())[:8]
    _cycle_id.set(cid)
    return cid


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter for production use."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cid = getattr(record, "cycle_id", "") or get_cycle_id()
        if cid:
            log_data["cycle_id"] = cid

        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ContextFilter(logging.Filter):
    """Filter that adds the cycle ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.cycle_id = get_cycle_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, use JSON structured format (for production)
        log_file: Optional file path to write logs to

    Console output goes to stderr so that operational logs never mix
    with anything a caller pipes from stdout.
    """
    if os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes"):
        json_output = True

    root = logging.getLogger()
    root.setLevel(level)

    root.handlers = []
    root.filters = []
    root.addFilter(ContextFilter())

    if json_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler = RichHandler(
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        console_handler.setFormatter(logging.Formatter("%(message)s"))

    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        root.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger by name.

    Args:
        name: Logger name (e.g., "trader", "quoine", "line")
    """
    return logging.getLogger(name)


def log_trade_event(
    logger: logging.Logger,
    event_type: str,
    **kwargs: Any,
) -> None:
    """Log an order or position event with standard fields.

    Args:
        logger: Logger instance
        event_type: Type of event (order_placed, order_cancelled, position_closed, ...)
        **kwargs: Additional fields (side, quantity, price, order_id, position_id, pnl)
    """
    parts = [f"[{event_type.upper()}]"]
    for key, value in kwargs.items():
        if value is not None:
            parts.append(f"{key}={value}")

    record = logger.makeRecord(
        logger.name,
        logging.INFO,
        "(trade)",
        0,
        " ".join(parts),
        args=(),
        exc_info=None,
    )
    record.event_type = event_type
    for key, value in kwargs.items():
        setattr(record, key, value)

    logger.handle(record)


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    error: BaseException,
    **context: Any,
) -> None:
    """Log an error with additional context.

    Args:
        logger: Logger instance
        message: Error message
        error: Exception that occurred
        **context: Additional context fields
    """
    extra = {"error": str(error), "error_type": type(error).__name__}
    extra.update(context)

    record = logger.makeRecord(
        logger.name,
        logging.ERROR,
        "(error)",
        0,
        f"{message}: {error}",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)

    logger.handle(record)
