"""
Structured logging configuration for the Crazy Aces server.

Provides:
- JSONFormatter for production (machine-readable logs)
- Human-readable formatter for development
- Contextual logging (request_id, session_id, game_id)

The context variables are set per HTTP request (RequestIDMiddleware), per
WebSocket connection (session) and per controller action (game), so every
record logged while handling them is tagged without passing ids around.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

# Context variables for request-scoped data
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
game_id_var: ContextVar[Optional[str]] = ContextVar("game_id", default=None)

# Field name -> (context variable, short label used by the dev formatter)
_CONTEXT_FIELDS: dict[str, tuple[ContextVar, str]] = {
    "request_id": (request_id_var, "req"),
    "session_id": (session_id_var, "session"),
    "game_id": (game_id_var, "game"),
}

# Libraries that are chatty at INFO
_QUIET_LOGGERS = ("uvicorn.access", "uvicorn.error", "websockets", "asyncio", "httpx")


def log_context(record: logging.LogRecord) -> dict[str, str]:
    """
    Collect the context ids for a record.

    An explicit `extra=` field wins over the context variable.
    """
    context = {}
    for name, (var, _) in _CONTEXT_FIELDS.items():
        value = getattr(record, name, None) or var.get()
        if value:
            context[name] = value
    return context


class JSONFormatter(logging.Formatter):
    """
    Format logs as JSON for production log aggregation.

    One object per line: timestamp, level, logger, message, any context
    ids, plus source location for errors and the formatted traceback.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **log_context(record),
        }

        if record.levelno >= logging.ERROR:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Colored single-line formatter with short context ids."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        context_parts = [
            f"{_CONTEXT_FIELDS[name][1]}={value[:8]}"
            for name, value in log_context(record).items()
        ]
        context = f" [{', '.join(context_parts)}]" if context_parts else ""

        output = f"{timestamp} {color}{record.levelname:8}{reset} {record.name}{context} - {record.getMessage()}"
        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)
        return output


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        environment: Environment name (production uses JSON, else human-readable).
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if environment == "production" else DevelopmentFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level}, environment={environment}")
