"""
Structured logging configuration for the Mau game server.

Provides:
- JSONFormatter for production (machine-readable logs)
- Human-readable formatter for development
- Per-message context: the connection and room a log line belongs to
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

# Set by the WebSocket loop before each message is dispatched
connection_id_var: ContextVar[Optional[str]] = ContextVar("connection_id", default=None)
room_code_var: ContextVar[Optional[str]] = ContextVar("room_code", default=None)

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "uvicorn.error", "websockets", "asyncio")


def log_context(record: logging.LogRecord) -> dict[str, str]:
    """
    Collect the connection/room context for a record.

    Context variables win; a ``room_code`` passed via ``extra=`` is used
    when the record was emitted outside a message handler.
    """
    context = {}
    connection_id = connection_id_var.get()
    if connection_id:
        context["connection_id"] = connection_id
    room_code = room_code_var.get() or getattr(record, "room_code", None)
    if room_code:
        context["room_code"] = room_code
    return context


class JSONFormatter(logging.Formatter):
    """
    Format logs as one JSON object per line for log aggregation.
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
    """
    Human-readable, colorized formatter for development.

    Example:
        12:01:33.120 INFO     room [conn=3f2a9c01 room=K7QZ2] - Room K7QZ2 created by ...
    """

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

        context = log_context(record)
        parts = []
        if "connection_id" in context:
            parts.append(f"conn={context['connection_id'][:8]}")
        if "room_code" in context:
            parts.append(f"room={context['room_code']}")
        tag = f" [{' '.join(parts)}]" if parts else ""

        output = f"{timestamp} {color}{record.levelname:8}{reset} {record.name}{tag} - {record.getMessage()}"
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
        environment: "production" selects JSON output; anything else is
            human-readable.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if environment == "production" else DevelopmentFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level}, environment={environment}")
