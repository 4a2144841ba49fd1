from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable, Optional

from logparse.reassembly import Framing

_END = object()

# Upper bound for one coalesced read from a byte-at-a-time stream.
DEFAULT_COALESCE_BYTES = 64 * 1024


@dataclass(frozen=True)
class LogSource:
    """An opened log stream: chunks in delivery order, tagged with their framing."""

    backend: str
    target: str
    framing: Framing
    chunks: AsyncIterator[bytes]


class _ChunkPuller:
    """Runs in a worker thread; returns one chunk (or one coalesced batch) per call.

    With `coalesce_bytes` set, consecutive chunks are joined until one ends
    with a newline or the batch reaches the limit. Frame boundaries are lost,
    so only unframed streams may be coalesced. An error raised after part of
    a batch was read is held back until that part has been delivered.
    """

    def __init__(self, iterable: Iterable[bytes], coalesce_bytes: int = 0) -> None:
        self._iterator = iter(iterable)
        self._coalesce_bytes = coalesce_bytes
        self._pending_error: Optional[BaseException] = None
        self._exhausted = False

    def pull(self):
        if self._pending_error is not None:
            error, self._pending_error = self._pending_error, None
            raise error
        if self._exhausted:
            return _END

        parts = []
        size = 0
        while True:
            try:
                chunk = next(self._iterator)
            except StopIteration:
                self._exhausted = True
                break
            except Exception as e:
                if not parts:
                    raise
                self._pending_error = e
                break
            parts.append(chunk)
            size += len(chunk)
            if not self._coalesce_bytes or size >= self._coalesce_bytes:
                break
            if chunk.endswith(b"\n"):
                break

        if not parts:
            return _END
        return parts[0] if len(parts) == 1 else b"".join(parts)


async def iterate_in_thread(
    iterable: Iterable[bytes],
    *,
    close: Optional[Callable[[], None]] = None,
    coalesce_bytes: int = 0,
) -> AsyncIterator[bytes]:
    """Pull a blocking SDK iterator from a worker thread.

    `close` runs when iteration ends for any reason, cancellation included;
    it must unblock a read that is still waiting in the worker thread, or the
    process cannot exit until the backend sends another byte.

    Exceptions raised by the iterator propagate to the consumer.
    """
    puller = _ChunkPuller(iterable, coalesce_bytes)
    try:
        while True:
            chunk = await asyncio.to_thread(puller.pull)
            if chunk is _END:
                return
            yield chunk
    finally:
        if close is not None:
            close()
