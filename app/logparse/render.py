"""Classify one logical line and turn it into a render decision.

Timestamps are yellow, structured levels bold and underlined, class names
magenta. Embedded JSON objects are re-serialized compactly and highlighted;
a span that is not valid JSON keeps its original text.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Collection, Optional

from rich.highlighter import JSONHighlighter
from rich.text import Text

from common.config import DEFAULT_SUPPRESSED_LEVELS, DEFAULT_UNRECOGNIZED_MARKER
from common.errors import TimestampFormatError
from common.logging_config import log_with_context
from logparse.formats import DEFAULT_REGISTRY, FormatRegistry, RenderPolicy
from logparse.json_spans import find_json_spans

logger = logging.getLogger(__name__)

TIMESTAMP_STYLE = "yellow"
LEVEL_STYLE = "bold underline"
NOTICE_LEVEL_STYLE = "bold"
CLASS_STYLE = "magenta"
MARKER_STYLE = "dim"

FALLBACK = "unrecognized"

_json_highlighter = JSONHighlighter()


@dataclass(frozen=True)
class RenderDecision:
    text: Optional[Text]
    pattern: str

    @property
    def suppressed(self) -> bool:
        return self.text is None

    @classmethod
    def print(cls, text: Text, *, pattern: str) -> RenderDecision:
        return cls(text=text, pattern=pattern)

    @classmethod
    def suppress(cls, *, pattern: str) -> RenderDecision:
        return cls(text=None, pattern=pattern)


def format_relative_time(dt: datetime, now: Optional[datetime] = None) -> str:
    """Describe how long ago `dt` was; older than 12 hours prints local time."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    seconds = int((now - dt).total_seconds())
    hours = seconds // 3600 if seconds >= 0 else 0
    minutes = seconds // 60 if seconds >= 0 else 0

    if hours >= 12:
        return dt.astimezone().strftime("%a, %d %b %H:%M")
    if hours >= 2:
        return f"{hours} hours ago"
    if hours == 1:
        return "1 hour ago"
    if minutes >= 2:
        return f"{minutes} minutes ago"
    if minutes == 1:
        return "1 minute ago"
    if seconds >= 10:
        return f"{seconds} seconds ago"
    return "a few moments ago"


def colorize_json(fragment: str) -> Text:
    """Compact, highlighted re-serialization of one JSON span."""
    try:
        value = json.loads(fragment)
    except ValueError as exc:
        log_with_context(
            logger,
            logging.ERROR,
            f"Could not re-render JSON span: {exc}",
            fragment=fragment[:80],
        )
        return Text(fragment)
    compact = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return _json_highlighter(Text(compact))


def colorize_json_spans(text: str) -> Text:
    """Replace every top-level JSON span of `text` by its highlighted form."""
    out = Text()
    pos = 0
    for start, end in find_json_spans(text):
        out.append(text[pos:start])
        out.append_text(colorize_json(text[start:end]))
        pos = end
    out.append(text[pos:])
    return out


def parse_timestamp(value: str, *, line: Optional[str] = None) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise TimestampFormatError(value, line=line) from exc


class LogRenderer:
    """First-match classifier over a format registry.

    Holds configuration only; rendering the same line twice gives the same
    decision as long as `now` returns the same instant.
    """

    def __init__(
        self,
        registry: FormatRegistry = DEFAULT_REGISTRY,
        *,
        suppressed_levels: Collection[str] = DEFAULT_SUPPRESSED_LEVELS,
        unrecognized_marker: str = DEFAULT_UNRECOGNIZED_MARKER,
        strict_timestamps: bool = True,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.registry = registry
        self.suppressed_levels = frozenset(suppressed_levels)
        self.unrecognized_marker = unrecognized_marker
        self.strict_timestamps = strict_timestamps
        self._now = now

    def render(self, line: str) -> RenderDecision:
        text = line.rstrip()
        if not text.strip():
            return RenderDecision.suppress(pattern="empty")

        pattern, m = self.registry.classify(text)
        if pattern is None:
            out = colorize_json_spans(text)
            out.append(self.unrecognized_marker, style=MARKER_STYLE)
            return RenderDecision.print(out, pattern=FALLBACK)

        if pattern.policy is RenderPolicy.STRUCTURED:
            return self._render_structured(text, m, pattern.name)
        if pattern.policy is RenderPolicy.NOTICE:
            return self._render_notice(m, pattern.name)
        return RenderDecision.suppress(pattern=pattern.name)

    def _render_structured(self, line: str, m, name: str) -> RenderDecision:
        level = m.group("level")
        if level in self.suppressed_levels:
            return RenderDecision.suppress(pattern=name)

        try:
            dt = parse_timestamp(m.group("dt"), line=line)
        except TimestampFormatError as exc:
            if self.strict_timestamps:
                raise
            log_with_context(
                logger,
                logging.WARNING,
                f"Skipping line with {exc}",
                pattern=name,
                line=line,
            )
            return RenderDecision.suppress(pattern=name)

        out = Text("[")
        out.append(format_relative_time(dt, self._now()), style=TIMESTAMP_STYLE)
        out.append("] ")
        out.append(level, style=LEVEL_STYLE)
        out.append(":")
        cls = m.group("class")
        if cls:
            out.append(" [")
            out.append(cls, style=CLASS_STYLE)
            out.append("]")
        out.append(" ")
        out.append_text(colorize_json_spans(m.group("msg")))
        return RenderDecision.print(out, pattern=name)

    def _render_notice(self, m, name: str) -> RenderDecision:
        out = Text("[")
        out.append(m.group("dt"), style=TIMESTAMP_STYLE)
        out.append("] ")
        out.append(m.group("level"), style=NOTICE_LEVEL_STYLE)
        out.append(" ")
        out.append(m.group("msg"))
        return RenderDecision.print(out, pattern=name)
