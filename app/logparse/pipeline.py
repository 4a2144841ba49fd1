from __future__ import annotations

import logging
import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import AsyncIterable, Optional, Protocol

from rich.console import Console

from logparse.reassembly import LineReassembler
from logparse.render import LogRenderer, RenderDecision

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def emit(self, decision: RenderDecision) -> None: ...


def make_console(color: str = "auto", *, file=None) -> Console:
    """stdout console; `color` is 'auto', 'always' or 'never'."""
    kwargs = {}
    if color == "always":
        kwargs["force_terminal"] = True
    elif color == "never":
        kwargs["color_system"] = None
    return Console(
        file=file or sys.stdout,
        highlight=False,
        markup=False,
        emoji=False,
        soft_wrap=True,
        **kwargs,
    )


class ConsoleSink:
    """Prints every non-suppressed decision, one line each, synchronously."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or make_console()

    def emit(self, decision: RenderDecision) -> None:
        if decision.suppressed:
            return
        self.console.print(decision.text)


@dataclass
class PipelineStats:
    lines: int = 0
    printed: int = 0
    suppressed: int = 0
    by_pattern: Counter = field(default_factory=Counter)

    def record(self, decision: RenderDecision) -> None:
        self.lines += 1
        self.by_pattern[decision.pattern] += 1
        if decision.suppressed:
            self.suppressed += 1
        else:
            self.printed += 1


async def run_pipeline(
    chunks: AsyncIterable[bytes],
    *,
    reassembler: LineReassembler,
    renderer: LogRenderer,
    sink: Sink,
) -> PipelineStats:
    """Drive chunks -> logical lines -> decisions -> sink until the source closes.

    Transport errors and fatal timestamp errors propagate unchanged. The
    chunk source is closed however the loop ends, so its reader stops too.
    """
    stats = PipelineStats()
    try:
        async for line in reassembler.lines(chunks):
            decision = renderer.render(line)
            stats.record(decision)
            sink.emit(decision)
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
    logger.debug(
        "Stream closed (lines=%d printed=%d suppressed=%d)",
        stats.lines,
        stats.printed,
        stats.suppressed,
    )
    return stats
