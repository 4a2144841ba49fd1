from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

DEFAULT_MAX_ERROR_CHARS = 300

EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_TRANSPORT = 3
EXIT_BAD_TIMESTAMP = 4
EXIT_INTERRUPTED = 130


class LogtailError(Exception):
    """Base class for errors that end a tail session."""


class NothingSelectedError(LogtailError):
    def __init__(self, message: str = "No item was selected") -> None:
        super().__init__(message)


class TransportError(LogtailError):
    def __init__(self, backend: str, message: str) -> None:
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class TimestampFormatError(LogtailError):
    def __init__(self, value: str, *, line: Optional[str] = None) -> None:
        super().__init__(f"malformed timestamp {value!r}")
        self.value = value
        self.line = line


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str
    exit_code: int
    log_traceback: bool = False


def _truncate(value: str, *, max_chars: int) -> str:
    s = str(value or "")
    if max_chars <= 0 or len(s) <= max_chars:
        return s
    return s[: max(0, max_chars - 3)] + "..."


def classify_exception(
    exc: BaseException, *, max_error_chars: int = DEFAULT_MAX_ERROR_CHARS
) -> ErrorInfo:
    if isinstance(exc, NothingSelectedError):
        return ErrorInfo(
            code="nothing_selected",
            message=_truncate(str(exc), max_chars=max_error_chars),
            exit_code=EXIT_FAILURE,
        )

    if isinstance(exc, TransportError):
        return ErrorInfo(
            code="transport_error",
            message=_truncate(str(exc), max_chars=max_error_chars),
            exit_code=EXIT_TRANSPORT,
        )

    if isinstance(exc, TimestampFormatError):
        return ErrorInfo(
            code="bad_timestamp",
            message=_truncate(str(exc), max_chars=max_error_chars),
            exit_code=EXIT_BAD_TIMESTAMP,
        )

    if isinstance(exc, KeyboardInterrupt):
        return ErrorInfo(
            code="interrupted",
            message="interrupted",
            exit_code=EXIT_INTERRUPTED,
        )

    if isinstance(exc, json.JSONDecodeError):
        return ErrorInfo(
            code="invalid_json",
            message=_truncate(str(exc), max_chars=max_error_chars),
            exit_code=EXIT_FAILURE,
            log_traceback=True,
        )

    # TailConfig.validate() raises RuntimeError naming the env var.
    msg = str(exc or "").strip()
    if isinstance(exc, RuntimeError) and (
        msg.startswith("LOGTAIL_") or msg.startswith("LOG_")
    ):
        return ErrorInfo(
            code="invalid_config",
            message=_truncate(msg, max_chars=max_error_chars),
            exit_code=EXIT_CONFIG,
        )

    # Library transport errors that escaped an adapter (avoid importing the SDKs here).
    exc_name = exc.__class__.__name__
    if exc_name.lower().endswith("timeout") or exc_name in (
        "ApiException",
        "APIError",
        "ConnectionError",
        "DockerException",
        "NotFound",
        "ProtocolError",
        "ReadTimeoutError",
    ):
        return ErrorInfo(
            code="transport_error",
            message=_truncate(f"{exc_name}: {msg}" if msg else exc_name, max_chars=max_error_chars),
            exit_code=EXIT_TRANSPORT,
        )

    return ErrorInfo(
        code="internal_error",
        message=_truncate(
            f"{exc_name}: {msg}" if msg else exc_name, max_chars=max_error_chars
        ),
        exit_code=EXIT_FAILURE,
        log_traceback=True,
    )
