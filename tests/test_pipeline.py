"""Tests for logparse/pipeline.py - chunks in, printed lines out."""

from __future__ import annotations

import asyncio
import io
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

# The application code lives under ./app; add it to sys.path for tests.
REPO_ROOT = Path(__file__).resolve().parents[1]
APP_ROOT = REPO_ROOT / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from common.errors import TimestampFormatError, TransportError  # noqa: E402
from logparse.pipeline import ConsoleSink, make_console, run_pipeline  # noqa: E402
from logparse.reassembly import (  # noqa: E402
    FramedLineReassembler,
    StreamLineReassembler,
)
from logparse.render import LogRenderer  # noqa: E402
from sources.base import iterate_in_thread  # noqa: E402

NOW = datetime(2024, 1, 1, 10, 5, 0, tzinfo=timezone.utc)


class RecordingSink:
    def __init__(self):
        self.decisions = []

    def emit(self, decision):
        self.decisions.append(decision)


async def _chunks(items):
    for item in items:
        if isinstance(item, Exception):
            raise item
        yield item


def _run(chunks, reassembler, sink):
    return asyncio.run(
        run_pipeline(
            _chunks(chunks),
            reassembler=reassembler,
            renderer=LogRenderer(now=lambda: NOW),
            sink=sink,
        )
    )


def test_framed_stream_end_to_end():
    sink = RecordingSink()
    stats = _run(
        [
            b'[2024-01-01T10:00:00+00:00] app.ERROR: [Exception] failure {"code":500}\n',
            b'"01/Jan/2024:10:00:00 +0000" GET /health HTTP/1.1 200\n',
            b"something else\n",
        ],
        FramedLineReassembler(),
        sink,
    )

    printed = [d.text.plain for d in sink.decisions if not d.suppressed]
    assert printed == [
        '[5 minutes ago] app.ERROR: [Exception] failure {"code":500}',
        "something else↵",
    ]
    assert stats.lines == 3
    assert stats.printed == 2
    assert stats.suppressed == 1
    assert stats.by_pattern["web-access-log"] == 1


def test_unframed_stream_keeps_multiline_json_together():
    sink = RecordingSink()
    _run([b'dump {"a":\n', b'{"b":2}}\n'], StreamLineReassembler(), sink)
    assert [d.text.plain for d in sink.decisions] == ['dump {"a":{"b":2}}↵']


def test_transport_error_aborts_the_run():
    sink = RecordingSink()
    with pytest.raises(TransportError):
        _run(
            [b"first\n", TransportError("docker", "connection reset")],
            StreamLineReassembler(),
            sink,
        )
    assert [d.text.plain for d in sink.decisions] == ["first↵"]


def test_bad_timestamp_aborts_the_run():
    with pytest.raises(TimestampFormatError):
        _run(
            [b"[2024-02-30T10:00:00+00:00] app.ERROR: no such day\n"],
            StreamLineReassembler(),
            RecordingSink(),
        )


class IdleFollowStream:
    """Yields one line, then blocks like a quiet followed socket until closed."""

    def __init__(self):
        self.released = threading.Event()
        self.close_calls = 0

    def __iter__(self):
        yield b"first line\n"
        self.released.wait(timeout=10)

    def close(self):
        self.close_calls += 1
        self.released.set()


def test_cancelling_an_idle_follow_stream_stops_the_reader():
    stream = IdleFollowStream()
    sink = RecordingSink()

    async def _main():
        task = asyncio.create_task(
            run_pipeline(
                iterate_in_thread(stream, close=stream.close),
                reassembler=StreamLineReassembler(),
                renderer=LogRenderer(now=lambda: NOW),
                sink=sink,
            )
        )
        while not sink.decisions:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    started = time.monotonic()
    asyncio.run(asyncio.wait_for(_main(), timeout=5))

    # asyncio.run() only returns once the worker thread has finished its read.
    assert time.monotonic() - started < 5
    assert stream.close_calls == 1
    assert [d.text.plain for d in sink.decisions] == ["first line↵"]


def test_render_failure_closes_the_source():
    closed = []
    chunks = iterate_in_thread(
        [b"[2024-02-30T10:00:00+00:00] app.ERROR: no such day\n", b"never read\n"],
        close=lambda: closed.append(True),
    )
    with pytest.raises(TimestampFormatError):
        asyncio.run(
            run_pipeline(
                chunks,
                reassembler=StreamLineReassembler(),
                renderer=LogRenderer(now=lambda: NOW),
                sink=RecordingSink(),
            )
        )
    assert closed == [True]


class TestConsoleSink:
    def test_prints_plain_text_without_color(self):
        buf = io.StringIO()
        sink = ConsoleSink(make_console("never", file=buf))
        _run([b'hello {"a": 1}\n', b"\n"], StreamLineReassembler(), sink)
        assert buf.getvalue() == 'hello {"a":1}↵\n'

    def test_suppressed_lines_are_not_printed(self):
        buf = io.StringIO()
        sink = ConsoleSink(make_console("never", file=buf))
        _run(
            [b'10.0.0.1 - - [01/Jan/2024:10:00:00 +0000] "GET / HTTP/1.1" 200 612\n'],
            StreamLineReassembler(),
            sink,
        )
        assert buf.getvalue() == ""

    def test_always_color_emits_ansi_codes(self):
        buf = io.StringIO()
        sink = ConsoleSink(make_console("always", file=buf))
        _run([b'hello {"a": 1}\n'], StreamLineReassembler(), sink)
        assert "\x1b[" in buf.getvalue()

    def test_long_lines_are_not_wrapped(self):
        buf = io.StringIO()
        sink = ConsoleSink(make_console("never", file=buf))
        long_line = "x" * 500
        _run([long_line.encode() + b"\n"], StreamLineReassembler(), sink)
        assert buf.getvalue() == long_line + "↵\n"
