"""
Structured logging for the library.

Loggers accept keyword context next to the message::

    logger = get_logger(__name__)
    logger.info("Entity committed", model="Order", entity_id=5)

The context travels on the record as ``extra_data``. The host application
decides how records are rendered by calling ``setup_logging()`` once: JSON
lines in production, a compact coloured line everywhere else.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from basemodel_shared.config.settings import settings


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "extra_data", None) or {}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = _context(record)
        if context:
            payload["data"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if settings.debug:
            payload["source"] = f"{record.pathname}:{record.lineno}"
        return json.dumps(payload, default=str)


class DevelopmentFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message (key=value ...)`` with ANSI colours."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.RESET)
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{clock} {color}{record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        context = _context(record)
        if context:
            line += " (" + " ".join(f"{key}={value}" for key, value in context.items()) + ")"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger(logging.Logger):
    """Logger whose level methods take keyword context (``exc_info`` included)."""

    def _log_context(self, level: int, msg: str, args: tuple, context: dict[str, Any]) -> None:
        if not self.isEnabledFor(level):
            return
        exc_info = context.pop("exc_info", None)
        extra = context.pop("extra", None) or {}
        extra["extra_data"] = context or None
        self._log(level, msg, args, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, *args: Any, **context: Any) -> None:
        self._log_context(logging.DEBUG, msg, args, context)

    def info(self, msg: str, *args: Any, **context: Any) -> None:
        self._log_context(logging.INFO, msg, args, context)

    def warning(self, msg: str, *args: Any, **context: Any) -> None:
        self._log_context(logging.WARNING, msg, args, context)

    def error(self, msg: str, *args: Any, **context: Any) -> None:
        self._log_context(logging.ERROR, msg, args, context)

    def critical(self, msg: str, *args: Any, **context: Any) -> None:
        self._log_context(logging.CRITICAL, msg, args, context)


logging.setLoggerClass(StructuredLogger)


def setup_logging(level: int | None = None, json_output: bool | None = None) -> logging.Handler:
    """
    Install one stdout handler on the root logger and return it.

    Defaults follow the settings: DEBUG when ``debug`` is on, JSON output in
    the ``production`` environment.
    """
    if level is None:
        level = logging.DEBUG if settings.debug else logging.INFO
    if json_output is None:
        json_output = settings.environment == "production"

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if json_output else DevelopmentFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # SQL echo stays opt-in
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return handler


def get_logger(name: str) -> StructuredLogger:
    """Logger for ``name`` that accepts keyword context."""
    return logging.getLogger(name)  # type: ignore[return-value]


audit_logger = get_logger("basemodel.audit")
