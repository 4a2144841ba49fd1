"""
Diagnostics logging for the log tailer.

Rendered log lines own stdout, so every diagnostic (JSON spans that fail to
re-render, skipped lines, transport trouble) goes to stderr. Supports a
pretty format for terminals and JSON for piping into a collector.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from common.telemetry import get_current_trace_fields

# Context variable for the tail session (one per invocation)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)

# Log format: "pretty" for terminals, "json" for collectors
LOG_FORMAT = os.getenv("LOG_FORMAT", "pretty").strip().lower()


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs as JSON.
    """

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }

        session_id = session_id_var.get()
        if session_id:
            log_data["session_id"] = session_id

        # Add active trace/span IDs when OpenTelemetry context is available.
        trace_fields = get_current_trace_fields()
        if trace_fields:
            log_data.update(trace_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_data.update(extra_fields)

        for field in ["backend", "target", "pattern", "size_bytes"]:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data)


class PrettyFormatter(logging.Formatter):
    """
    Human-readable formatter for terminals.
    """

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def __init__(self, service_name: str, *, use_color: bool = True):
        super().__init__()
        self.service_name = service_name
        self.use_color = use_color

    def _paint(self, code: str, text: str) -> str:
        if not self.use_color or not code:
            return text
        return f"{code}{text}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        level = self._paint(
            self.COLORS.get(record.levelname, ""), f"{record.levelname:<7}"
        )
        service = self._paint(self.DIM, self.service_name)

        message = record.getMessage()

        context_parts = []

        session_id = session_id_var.get()
        if session_id:
            context_parts.append(f"session={session_id[:8]}")

        trace_fields = get_current_trace_fields()
        if trace_fields.get("trace_id"):
            context_parts.append(f"trace={trace_fields['trace_id'][:8]}")

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            for key, value in extra_fields.items():
                if key == "line" and isinstance(value, str) and len(value) > 60:
                    value = value[:57] + "..."
                if key == "size_bytes":
                    value = f"{value}B"
                context_parts.append(f"{key}={value}")

        context = (
            " " + self._paint(self.DIM, f"[{', '.join(context_parts)}]")
            if context_parts
            else ""
        )
        output = f"{timestamp} {level} {service} │ {message}{context}"

        if record.exc_info:
            output += f"\n{self.formatException(record.exc_info)}"

        return output


def setup_logging(
    service_name: str,
    level: int = logging.WARNING,
    *,
    log_format: Optional[str] = None,
) -> None:
    """
    Configure diagnostics logging on stderr.

    Args:
        service_name: Name shown in every record (e.g. 'logtail')
        level: Logging level (default: WARNING)
        log_format: "pretty" or "json"; falls back to the LOG_FORMAT env var
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    fmt = (log_format or LOG_FORMAT).strip().lower()
    if fmt == "json":
        formatter: logging.Formatter = JSONFormatter(service_name)
    else:
        formatter = PrettyFormatter(
            service_name, use_color=sys.stderr.isatty() and not os.getenv("NO_COLOR")
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)

    # The SDKs log every HTTP request at DEBUG; keep them one notch quieter.
    for logger_name in ["urllib3", "docker", "kubernetes"]:
        logging.getLogger(logger_name).setLevel(max(level, logging.INFO))


def set_session_id(session_id: str) -> None:
    """Set the tail session id attached to every record."""
    session_id_var.set(session_id)


def get_session_id() -> Optional[str]:
    return session_id_var.get()


def clear_session_id() -> None:
    session_id_var.set(None)


def log_with_context(
    logger: logging.Logger, level: int, message: str, **kwargs
) -> None:
    """
    Log a message with additional context fields.

    Args:
        logger: Logger instance
        level: Log level (e.g., logging.INFO)
        message: Log message
        **kwargs: Additional fields to include in the output
    """
    extra = {"extra_fields": kwargs}
    logger.log(level, message, extra=extra)
