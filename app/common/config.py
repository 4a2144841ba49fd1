from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_MAX_FRAME_SIZE = 8192
DEFAULT_MAX_PENDING_BYTES = 1024 * 1024
DEFAULT_SUPPRESSED_LEVELS = ("security.DEBUG", "security.INFO")
DEFAULT_UNRECOGNIZED_MARKER = "↵"

COLOR_MODES = ("auto", "always", "never")
LOG_FORMATS = ("pretty", "json")


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r})") from e


def _csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class TailConfig:
    max_frame_size: int
    max_pending_bytes: int
    strict_timestamps: bool
    color: str
    since_hours: int
    suppressed_levels: tuple[str, ...]
    unrecognized_marker: str
    kube_context: Optional[str]

    log_level: str
    log_format: str

    @staticmethod
    def from_env() -> TailConfig:
        max_frame_size = _int_env("LOGTAIL_MAX_FRAME_SIZE", DEFAULT_MAX_FRAME_SIZE)
        max_pending_bytes = _int_env(
            "LOGTAIL_MAX_PENDING_BYTES", DEFAULT_MAX_PENDING_BYTES
        )
        strict_timestamps = _is_truthy(os.getenv("LOGTAIL_STRICT_TIMESTAMPS", "true"))
        color = os.getenv("LOGTAIL_COLOR", "auto").strip().lower() or "auto"
        since_hours = _int_env("LOGTAIL_SINCE_HOURS", 1)
        suppressed_levels = _csv_env(
            "LOGTAIL_SUPPRESSED_LEVELS", DEFAULT_SUPPRESSED_LEVELS
        )
        unrecognized_marker = os.getenv(
            "LOGTAIL_UNRECOGNIZED_MARKER", DEFAULT_UNRECOGNIZED_MARKER
        )
        kube_context = (os.getenv("LOGTAIL_KUBE_CONTEXT") or "").strip() or None

        log_level = os.getenv("LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
        log_format = os.getenv("LOG_FORMAT", "pretty").strip().lower() or "pretty"

        return TailConfig(
            max_frame_size=max_frame_size,
            max_pending_bytes=max_pending_bytes,
            strict_timestamps=strict_timestamps,
            color=color,
            since_hours=since_hours,
            suppressed_levels=suppressed_levels,
            unrecognized_marker=unrecognized_marker,
            kube_context=kube_context,
            log_level=log_level,
            log_format=log_format,
        )

    def with_overrides(self, **changes) -> TailConfig:
        """Return a copy with the non-None CLI overrides applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    def validate(self) -> None:
        if self.max_frame_size <= 0:
            raise RuntimeError("LOGTAIL_MAX_FRAME_SIZE must be greater than 0")
        if self.max_pending_bytes < 0:
            raise RuntimeError("LOGTAIL_MAX_PENDING_BYTES must not be negative")
        if self.color not in COLOR_MODES:
            raise RuntimeError("LOGTAIL_COLOR must be 'auto', 'always' or 'never'")
        if self.since_hours < 1:
            raise RuntimeError("LOGTAIL_SINCE_HOURS must be at least 1")
        if not isinstance(self.log_level_value, int):
            raise RuntimeError(f"LOG_LEVEL is not a logging level: {self.log_level!r}")
        if self.log_format not in LOG_FORMATS:
            raise RuntimeError("LOG_FORMAT must be 'pretty' or 'json'")
