"""Structured logging for the cache layer.

Two formatters share one set of context variables:
- JsonFormatter, one JSON object per line for log aggregation
- ConsoleFormatter, a single readable line for local development

Context (request, trip and user ids) is bound with LogContext and attached
to every record emitted inside the block, including records from
background tasks spawned there, since asyncio copies the context.

Usage:
    from tripnotes.observability.logging import LogContext, configure_logging

    configure_logging(json_format=True, level="INFO")

    with LogContext(document_id=trip_id, user_id=user_id):
        logger.info("Saving trip")  # Carries document_id and user_id
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
document_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("document_id", default="")
user_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("user_id", default="")

_CONTEXT_VARS: dict[str, contextvars.ContextVar[str]] = {
    "request_id": request_id_var,
    "document_id": document_id_var,
    "user_id": user_id_var,
}

# Attributes every LogRecord has; anything else came in through ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Marks the handler installed by configure_logging so a second call replaces it
_HANDLER_MARK = "_tripnotes_handler"

_NOISY_LOGGERS = ("httpx", "httpcore", "redis", "sqlalchemy.engine", "aiosqlite")


def current_context() -> dict[str, str]:
    """Context variables that are set, by name."""
    return {name: var.get() for name, var in _CONTEXT_VARS.items() if var.get()}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Example:
    {"timestamp": "2026-03-01T09:30:00.120000+00:00", "level": "INFO",
     "logger": "tripnotes.loader", "message": "Trip t1 assembled",
     "module": "loader", "function": "load_document", "line": 72,
     "document_id": "t1"}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(current_context())

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                entry[key] = _jsonable(value)

        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output.

    2026-03-01 09:30:00 | INFO     | tripnotes.loader | Trip t1 assembled | trip=t1 user=u1
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    # Context variable -> short label, in display order
    LABELS = {"request_id": "req", "document_id": "trip", "user_id": "user"}

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"

        line = f"{timestamp} | {level} | {record.name} | {record.getMessage()}"

        context = current_context()
        labels = [
            f"{label}={context[name][:8]}"
            for name, label in self.LABELS.items()
            if name in context
        ]
        if labels:
            line += " | " + " ".join(labels)

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    json_format: bool = True,
    level: str = "INFO",
    use_colors: bool = True,
) -> None:
    """Install the tripnotes handler on the root logger.

    Handlers installed by the host application are left in place; calling
    this again replaces only the handler from the previous call.

    Args:
        json_format: JSON lines (production) instead of console output
        level: Root log level name, case-insensitive
        use_colors: ANSI colors for console output on a TTY
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else ConsoleFormatter(use_colors))
    setattr(handler, _HANDLER_MARK, True)
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class LogContext:
    """Bind context variables for the duration of a block.

    None values are skipped and unknown names ignored, so callers can pass
    optional ids straight through.

    Usage:
        with LogContext(document_id="t1", user_id="u1"):
            logger.info("Applying change bundle")
    """

    def __init__(self, **values: Any) -> None:
        self.values = values
        self._tokens: list[tuple[contextvars.ContextVar[str], contextvars.Token[str]]] = []

    def __enter__(self) -> LogContext:
        for name, value in self.values.items():
            var = _CONTEXT_VARS.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(str(value))))
        return self

    def __exit__(self, *exc: object) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
