"""Format pattern catalog.

Conventions:
- each pattern is named after the producer whose lines it recognizes
- the registry order is the matching order (first match wins); several
  patterns overlap structurally, so reordering changes behaviour
- compiled once at import; the registry is immutable and shared
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Iterator, Optional, Pattern, Tuple


class RenderPolicy(enum.Enum):
    STRUCTURED = "structured"
    NOTICE = "notice"
    SUPPRESS = "suppress"


@dataclass(frozen=True)
class FormatPattern:
    name: str
    regex: Pattern[str]
    policy: RenderPolicy
    # Anchored patterns use fullmatch; marker patterns only need to occur somewhere.
    anchored: bool = True

    def match(self, line: str) -> Optional[re.Match]:
        if self.anchored:
            return self.regex.fullmatch(line)
        return self.regex.search(line)


# [2024-01-01T10:00:00.123456+00:00] app.ERROR: [App\Exception] message {"json":1}
STRUCTURED_APP_LOG_RE: Pattern[str] = re.compile(
    r"""
    \[(?P<dt>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[-+]\d{2}:\d{2}))\]
    (?:\s+(?P<level>\w+\.\w+):)
    (?:\s+\[(?P<class>[^\]]+)\])?
    (?:\s+(?P<msg>.+))
    """,
    re.VERBOSE,
)

# NOTICE: PHP message: 2024-01-01T10:00:00+00:00 [error] message
WRAPPED_RUNTIME_NOTICE_RE: Pattern[str] = re.compile(
    r"""
    NOTICE:\sPHP\smessage:
    (?:\s(?P<dt>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[-+]\d{2}:\d{2})))
    (?:\s\[(?P<level>\w+)\])
    (?:\s+(?P<msg>.+))
    """,
    re.VERBOSE,
)

# "01/Jan/2024:10:00:00 +0000" GET /health HTTP/1.1 200
WEB_ACCESS_LOG_RE: Pattern[str] = re.compile(
    r"""
    "(?P<dt>\d{2}/\w{3}/\d{4}:\d{2}:\d{2}:\d{2}\s[-+]\d{4})"
    (?:\s+(?P<msg>.+))
    """,
    re.VERBOSE,
)

# 10.0.0.1 - - [01/Jan/2024:10:00:00 +0000] "GET / HTTP/1.1" 200 612
PROXY_ACCESS_LOG_RE: Pattern[str] = re.compile(
    r"""
    (?P<ip>(?:(?:25[0-5]|(?:2[0-4]|1\d|[1-9]|)\d)\.?\b){4})
    (?:\s+-)
    (?:\s+(?P<username>.+)?)
    (?:\s+\[?(?P<dt>\d{2}/\w{3}/\d{4}:\d{2}:\d{2}:\d{2}\s[-+]\d{4})\]?)
    (?:\s+(?P<msg>.+))
    """,
    re.VERBOSE,
)

GATEWAY_STDERR_MARKER_RE: Pattern[str] = re.compile(r"FastCGI sent in stderr")

# [01-Jan-2024 10:00:00] WARNING: [pool www] child 12 said into stderr: "..."
PROCESS_MANAGER_LOG_RE: Pattern[str] = re.compile(
    r"""
    \[(?P<dt>\d{2}-\w{3}-\d{4}\s\d{2}:\d{2}:\d{2})\]
    (?:\s+(?P<level>\w+):)
    (?:\s+\[(?P<instance>.+)\])
    (?:\s+(?P<msg>.+))
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class FormatRegistry:
    patterns: Tuple[FormatPattern, ...]

    def __iter__(self) -> Iterator[FormatPattern]:
        return iter(self.patterns)

    def __len__(self) -> int:
        return len(self.patterns)

    def names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.patterns)

    def classify(self, line: str) -> Tuple[Optional[FormatPattern], Optional[re.Match]]:
        """Return the first pattern matching `line` and its match, or (None, None)."""
        for pattern in self.patterns:
            m = pattern.match(line)
            if m:
                return pattern, m
        return None, None


DEFAULT_REGISTRY = FormatRegistry(
    patterns=(
        FormatPattern("structured-app-log", STRUCTURED_APP_LOG_RE, RenderPolicy.STRUCTURED),
        FormatPattern("wrapped-runtime-notice", WRAPPED_RUNTIME_NOTICE_RE, RenderPolicy.NOTICE),
        FormatPattern("web-access-log", WEB_ACCESS_LOG_RE, RenderPolicy.SUPPRESS),
        FormatPattern("proxy-access-log", PROXY_ACCESS_LOG_RE, RenderPolicy.SUPPRESS),
        FormatPattern(
            "gateway-stderr-marker",
            GATEWAY_STDERR_MARKER_RE,
            RenderPolicy.SUPPRESS,
            anchored=False,
        ),
        FormatPattern("process-manager-log", PROCESS_MANAGER_LOG_RE, RenderPolicy.SUPPRESS),
    )
)
