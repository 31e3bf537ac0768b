"""
Structured JSON logging utilities.

Diagram sessions usually run inside a hosted editor backend whose log
pipeline expects single-line JSON records. Session and diagram context
travels in the record's extra fields.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

# Context fields emitted right after the fixed ones, in this order
CONTEXT_FIELDS = ("session_id", "user_id", "diagram_id")


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Each record becomes one JSON object:
    - timestamp: ISO 8601 in UTC
    - level, logger, message
    - session_id / user_id / diagram_id when present
    - any other extra field; values JSON cannot encode are stringified
    - exception: formatted traceback, if any
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for key in CONTEXT_FIELDS:
            if key in extras:
                log_obj[key] = extras.pop(key)
        for key, value in extras.items():
            log_obj[key] = _jsonable(value)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = "process_sheets",
) -> logging.Logger:
    """
    Route a logger's output to stdout as JSON lines.

    Existing handlers of that logger are replaced, so calling this twice
    does not duplicate output.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)

    return logger


def get_sheets_logger(name: str) -> logging.Logger:
    """Component logger named 'process_sheets.{name}'."""
    return logging.getLogger(f"process_sheets.{name}")


class DiagramLoggerAdapter(logging.LoggerAdapter):
    """Adds session context (session_id, user_id, ...) to every record.

    Fields passed as ``extra`` at the call site take precedence over the
    adapter's own context.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs

    def for_diagram(self, diagram_id: str) -> DiagramLoggerAdapter:
        """Child adapter whose records also carry ``diagram_id``."""
        return DiagramLoggerAdapter(self.logger, {**(self.extra or {}), "diagram_id": diagram_id})
