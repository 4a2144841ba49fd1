"""Locate top-level JSON object literals embedded in free text.

The scanner only balances braces; it never parses JSON. A `"` toggles the
quoted-string state wherever it appears, and a backslash inside a quoted
string escapes the next character, so `{"a":"say \\"hi\\" {"}` is one span.
Offsets index the scanned sequence: characters for `str`, bytes for `bytes`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple, Union

Span = Tuple[int, int]
Scannable = Union[str, bytes, bytearray]

_STR_TOKENS = ("{", "}", '"', "\\")
_BYTE_TOKENS = (ord("{"), ord("}"), ord('"'), ord("\\"))


@dataclass(frozen=True)
class JsonScan:
    spans: List[Span]
    # Offsets of `{` still waiting for their `}` when the input ended.
    dangling: Tuple[int, ...]

    @property
    def balanced(self) -> bool:
        return not self.dangling


def scan_json(text: Scannable) -> JsonScan:
    """Single left-to-right pass returning complete spans and unclosed braces."""
    if isinstance(text, (bytes, bytearray)):
        open_brace, close_brace, quote, backslash = _BYTE_TOKENS
    else:
        open_brace, close_brace, quote, backslash = _STR_TOKENS

    spans: List[Span] = []
    stack: List[int] = []
    inside_str = False
    escaped = False

    for i, c in enumerate(text):
        if escaped:
            escaped = False
        elif inside_str and c == backslash:
            escaped = True
        elif c == quote:
            inside_str = not inside_str
        elif inside_str:
            continue
        elif c == open_brace:
            stack.append(i)
        elif c == close_brace and stack:
            start = stack.pop()
            if not stack:
                spans.append((start, i + 1))

    return JsonScan(spans=spans, dangling=tuple(stack))


def find_json_spans(text: Scannable) -> List[Span]:
    """Return the half-open ranges of top-level `{...}` groups, left to right.

    Nested objects are absorbed into their parent's span. An unclosed
    trailing `{` produces no span.
    """
    return scan_json(text).spans


def json_is_balanced(text: Scannable) -> bool:
    """True when every `{` outside a quoted string has been closed."""
    return scan_json(text).balanced
