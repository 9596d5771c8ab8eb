"""Incremental decoder for the server-sent event stream of a completion."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Union

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = b"data: "
DONE_SENTINEL = "[DONE]"
DEFAULT_ERROR_MESSAGE = "API error"


@dataclass(slots=True, frozen=True)
class TextDelta:
    """Incremental fragment of model output."""

    text: str


@dataclass(slots=True, frozen=True)
class Complete:
    """Terminal marker: the model finished streaming."""


@dataclass(slots=True, frozen=True)
class StreamError:
    """Error payload reported in-band by the API."""

    message: str


StreamEvent = Union[TextDelta, Complete, StreamError]


class StreamParser:
    """Reassembles arbitrarily split chunks into lines and emits typed events.

    Chunks carry no alignment guarantee with the SSE framing, so partial lines
    stay buffered until their newline arrives. Lines without the ``data:``
    prefix (comments, ``event:`` names, blank separators) and payloads that are
    not valid JSON are dropped silently. Once ``Complete`` has been emitted the
    parser ignores all further input.
    """

    def __init__(
        self,
        *,
        on_text: Callable[[str], None] | None = None,
        on_complete: Callable[[], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self._on_text = on_text
        self._on_complete = on_complete
        self._on_error = on_error
        self._buffer = bytearray()
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def pending(self) -> bytes:
        """Bytes of the trailing partial line still waiting for a newline."""

        return bytes(self._buffer)

    def feed(self, chunk: bytes | str | None) -> List[StreamEvent]:
        """Consume ``chunk`` and return the events it completed, in order.

        Every returned event has already been dispatched to the matching
        callback.
        """

        if not chunk or self._completed:
            return []
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._buffer.extend(chunk)

        events: List[StreamEvent] = []
        while not self._completed:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            if line.endswith(b"\r"):
                line = line[:-1]
            event = self._parse_line(line)
            if event is None:
                continue
            events.append(event)
            self._dispatch(event)
        return events

    def reset(self) -> None:
        self._buffer.clear()
        self._completed = False

    def _parse_line(self, line: bytes) -> StreamEvent | None:
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX) :].decode("utf-8", errors="replace")
        if payload == DONE_SENTINEL:
            return Complete()
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            LOGGER.debug("Ignoring malformed stream payload: %.80s", payload)
            return None
        if not isinstance(data, dict):
            return None
        return _event_from_payload(data)

    def _dispatch(self, event: StreamEvent) -> None:
        if isinstance(event, TextDelta):
            if self._on_text is not None:
                self._on_text(event.text)
        elif isinstance(event, Complete):
            self._completed = True
            self._buffer.clear()
            if self._on_complete is not None:
                self._on_complete()
        elif isinstance(event, StreamError):
            if self._on_error is not None:
                self._on_error(event.message)


def _event_from_payload(data: dict[str, Any]) -> StreamEvent | None:
    event_type = data.get("type")
    if event_type == "content_block_delta":
        delta = data.get("delta")
        if isinstance(delta, dict) and delta.get("type") == "text_delta":
            text = delta.get("text")
            if isinstance(text, str):
                return TextDelta(text)
        return None
    if event_type == "message_stop":
        return Complete()
    if event_type == "error":
        error = data.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        return StreamError(message if isinstance(message, str) and message else DEFAULT_ERROR_MESSAGE)
    # message_start, content_block_start/stop, message_delta, ping
    return None


def parse_stream(data: bytes | str) -> List[StreamEvent]:
    """Parse a complete stream body in one go."""

    return StreamParser().feed(data)


__all__ = [
    "Complete",
    "StreamError",
    "StreamEvent",
    "StreamParser",
    "TextDelta",
    "parse_stream",
]
