"""Logging configuration utilities with structured output and correlation IDs."""

from __future__ import annotations

import contextvars
import json
import logging
import uuid
from logging import LogRecord
from typing import Any, Optional

# Context variable used to propagate a correlation ID through the call stack
_correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set a correlation ID for subsequent log messages and return it.

    A fresh UUID is generated when no ID is given.
    """

    correlation_id = correlation_id or str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str:
    return _correlation_id.get("")


class CorrelationIdFilter(logging.Filter):
    """Inject the current correlation ID into log records."""

    def filter(self, record: LogRecord) -> bool:  # type: ignore[override]
        record.correlation_id = _correlation_id.get("")
        return True


class JsonFormatter(logging.Formatter):
    """Format log records as structured JSON."""

    def format(self, record: LogRecord) -> str:  # type: ignore[override]
        log_dict: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        correlation_id = getattr(record, "correlation_id", "")
        if correlation_id:
            log_dict["correlation_id"] = correlation_id
        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_dict)


def configure_logging(log_file: Optional[str] = None) -> None:
    """Configure root logging with JSON formatting and correlation IDs.

    Records go to stderr, and also to ``log_file`` when one is given. This
    function is idempotent; calling it multiple times will have no effect
    once logging has been configured.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    root_logger.setLevel(logging.INFO)

    formatter = JsonFormatter()
    correlation_filter = CorrelationIdFilter()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(correlation_filter)
        root_logger.addHandler(handler)


__all__ = [
    "configure_logging",
    "set_correlation_id",
    "get_correlation_id",
    "CorrelationIdFilter",
    "JsonFormatter",
]
