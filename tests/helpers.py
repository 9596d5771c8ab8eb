"""Shared test helpers and stub classes.

This module contains reusable fakes for the completion pipeline. Import from
here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from ghosttext.ai.transport import StreamCallbacks
from ghosttext.completion.types import CompletionContext, CursorPosition


def sse_line(payload: Mapping[str, Any] | str) -> bytes:
    """Encode one ``data:`` line; strings are sent verbatim."""
    body = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return f"data: {body}\n".encode("utf-8")


def text_delta(text: str) -> bytes:
    return sse_line({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}})


MESSAGE_STOP = sse_line({"type": "message_stop"})
DONE = sse_line("[DONE]")


def stream_body(*texts: str, stop: bool = True) -> bytes:
    """Build a realistic event stream carrying ``texts`` as deltas."""
    parts = [
        b"event: message_start\n",
        sse_line({"type": "message_start", "message": {"id": "msg_1"}}),
        b"\n",
        sse_line({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
    ]
    for text in texts:
        parts.append(b"event: content_block_delta\n")
        parts.append(text_delta(text))
        parts.append(b"\n")
    if stop:
        parts.append(MESSAGE_STOP)
    return b"".join(parts)


class FakeHandle:
    """Transport handle recording cancellation."""

    def __init__(self) -> None:
        self.cancel_calls = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_calls > 0

    def cancel(self) -> None:
        self.cancel_calls += 1


@dataclass
class OpenedStream:
    body: Mapping[str, Any]
    callbacks: StreamCallbacks
    handle: FakeHandle

    def feed(self, data: bytes) -> None:
        self.callbacks.on_data(data)

    def finish(self, status: int = 0) -> None:
        self.callbacks.on_done(status)

    def fail(self, message: str, status: int = 1) -> None:
        self.callbacks.on_error(message)
        self.callbacks.on_done(status)


class FakeTransport:
    """Transport that records every open and lets tests drive the callbacks."""

    def __init__(self) -> None:
        self.opened: list[OpenedStream] = []

    def open(self, body: Mapping[str, Any], callbacks: StreamCallbacks) -> FakeHandle:
        handle = FakeHandle()
        self.opened.append(OpenedStream(body=body, callbacks=callbacks, handle=handle))
        return handle

    @property
    def last(self) -> OpenedStream:
        return self.opened[-1]


class FailingTransport:
    def open(self, body: Mapping[str, Any], callbacks: StreamCallbacks) -> FakeHandle:
        raise ConnectionError("socket closed")


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MutableCursor:
    """Cursor source whose position tests move explicitly."""

    def __init__(self, buffer_id: Any = 1, row: int = 0, col: int = 0) -> None:
        self.position = CursorPosition(buffer_id, row, col)

    def __call__(self) -> CursorPosition:
        return self.position

    def move(self, *, buffer_id: Any | None = None, row: int | None = None, col: int | None = None) -> None:
        current = self.position
        self.position = CursorPosition(
            current.buffer_id if buffer_id is None else buffer_id,
            current.row if row is None else row,
            current.col if col is None else col,
        )


@dataclass
class RecordingObserver:
    failures: list[tuple[int, str]] = field(default_factory=list)
    completions: list[tuple[int, str]] = field(default_factory=list)

    def request_failed(self, request_id: int, message: str) -> None:
        self.failures.append((request_id, message))

    def request_completed(self, request_id: int, text: str) -> None:
        self.completions.append((request_id, text))


def make_context(
    *,
    buffer_id: Any = 1,
    row: int = 3,
    col: int = 5,
    filetype: str = "python",
    before: str = "def add(a, b):\n    ret",
    after: str = "\n\nprint(add(1, 2))",
    **extra: Any,
) -> CompletionContext:
    return CompletionContext(
        buffer_id=buffer_id,
        row=row,
        col=col,
        filetype=filetype,
        before_cursor=before,
        after_cursor=after,
        **extra,
    )
