"""
Re-delimit raw byte chunks into logical lines.

Two framing disciplines reach us:

- FRAMED (runtime-multiplexed): every chunk is one runtime frame ending in a
  newline. A line longer than the maximum frame size is cut into several
  full-size frames; a frame shorter than the maximum ends the line.
- UNFRAMED (plain byte stream): chunks are cut anywhere. Newlines end a line,
  unless the buffered text still has an unclosed JSON object, in which case
  the fragments are joined until the object balances.

Each reassembler owns exactly one line buffer for the lifetime of a stream
and flushes whatever is left when the stream closes.
"""

from __future__ import annotations

import abc
import enum
import logging
from typing import AsyncIterable, AsyncIterator, List

from common.config import DEFAULT_MAX_FRAME_SIZE, DEFAULT_MAX_PENDING_BYTES
from common.logging_config import log_with_context
from logparse.json_spans import json_is_balanced

logger = logging.getLogger(__name__)


class Framing(enum.Enum):
    FRAMED = "framed"
    UNFRAMED = "unframed"


def decode_lossy(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class LineReassembler(abc.ABC):
    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    @abc.abstractmethod
    def feed(self, chunk: bytes) -> List[str]:
        """Consume one chunk and return the logical lines it completed."""

    def finish(self) -> List[str]:
        """End of stream: flush whatever is still buffered."""
        if not self._buffer:
            return []
        return [self._flush()]

    def _flush(self) -> str:
        text = decode_lossy(bytes(self._buffer))
        self._buffer.clear()
        return text

    async def lines(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
        async for chunk in chunks:
            for line in self.feed(chunk):
                yield line
        for line in self.finish():
            yield line


class FramedLineReassembler(LineReassembler):
    """Variant A: frames below `max_frame_size` terminate the buffered line.

    A final frame of exactly `max_frame_size` bytes is indistinguishable from
    a continuation; it stays buffered until the next frame or end of stream.
    """

    def __init__(self, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> None:
        super().__init__()
        self.max_frame_size = max_frame_size

    def feed(self, chunk: bytes) -> List[str]:
        is_last = len(chunk) < self.max_frame_size
        if chunk.endswith(b"\n"):
            chunk = chunk[:-1]
        self._buffer.extend(chunk)

        if not is_last or not self._buffer:
            return []
        return self._flush().split("\n")

    def finish(self) -> List[str]:
        if not self._buffer:
            return []
        return self._flush().split("\n")


class StreamLineReassembler(LineReassembler):
    """Variant B: newline-delimited, but never splits an open JSON object.

    Fragments held back because of an unclosed `{` are joined without the
    newline between them. `max_pending_bytes` (0 disables it) bounds how
    much text a stray brace can hold back.
    """

    def __init__(self, max_pending_bytes: int = DEFAULT_MAX_PENDING_BYTES) -> None:
        super().__init__()
        self.max_pending_bytes = max_pending_bytes

    def feed(self, chunk: bytes) -> List[str]:
        out: List[str] = []
        ends_with_newline = chunk.endswith(b"\n")
        segments = chunk.split(b"\n")

        for i, segment in enumerate(segments):
            self._buffer.extend(segment)
            at_boundary = i + 1 < len(segments) or ends_with_newline
            if not at_boundary or not self._buffer:
                continue
            if json_is_balanced(self._buffer):
                out.append(self._flush())
            elif self.max_pending_bytes and len(self._buffer) > self.max_pending_bytes:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Flushing oversized line with unbalanced JSON",
                    size_bytes=len(self._buffer),
                )
                out.append(self._flush())
        return out


def make_reassembler(
    framing: Framing,
    *,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    max_pending_bytes: int = DEFAULT_MAX_PENDING_BYTES,
) -> LineReassembler:
    if framing is Framing.FRAMED:
        return FramedLineReassembler(max_frame_size)
    return StreamLineReassembler(max_pending_bytes)
