"""Tests for the incremental SSE stream parser."""

from __future__ import annotations

import pytest

from ghosttext.completion.stream_parser import (
    Complete,
    StreamError,
    StreamParser,
    TextDelta,
    parse_stream,
)

from helpers import DONE, MESSAGE_STOP, sse_line, stream_body, text_delta


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    def parser(self) -> StreamParser:
        return StreamParser(
            on_text=lambda text: self.calls.append(("text", text)),
            on_complete=lambda: self.calls.append(("complete", None)),
            on_error=lambda message: self.calls.append(("error", message)),
        )


# =============================================================================
# Framing
# =============================================================================


class TestFraming:
    def test_single_delta_emits_text(self) -> None:
        recorder = _Recorder()
        events = recorder.parser().feed(text_delta("hi"))

        assert events == [TextDelta("hi")]
        assert recorder.calls == [("text", "hi")]

    @pytest.mark.parametrize("split_at", [1, 5, 17, 40, 63])
    def test_arbitrary_split_matches_whole_feed(self, split_at: int) -> None:
        body = stream_body("def ", "add(a, b):", "\n    return a + b")
        whole = _Recorder()
        whole.parser().feed(body)

        split = _Recorder()
        parser = split.parser()
        parser.feed(body[:split_at])
        parser.feed(body[split_at:])

        assert split.calls == whole.calls
        assert whole.calls[-1] == ("complete", None)

    def test_byte_at_a_time_feed(self) -> None:
        body = stream_body("x = ", "1")
        recorder = _Recorder()
        parser = recorder.parser()
        for index in range(len(body)):
            parser.feed(body[index : index + 1])

        assert recorder.calls == [("text", "x = "), ("text", "1"), ("complete", None)]

    def test_partial_line_waits_for_newline(self) -> None:
        recorder = _Recorder()
        parser = recorder.parser()
        line = text_delta("abc")

        assert parser.feed(line[:-1]) == []
        assert parser.pending == line[:-1]
        assert parser.feed(b"\n") == [TextDelta("abc")]
        assert parser.pending == b""

    def test_crlf_line_endings(self) -> None:
        body = text_delta("a").replace(b"\n", b"\r\n") + MESSAGE_STOP.replace(b"\n", b"\r\n")
        assert parse_stream(body) == [TextDelta("a"), Complete()]

    def test_multibyte_character_split_across_chunks(self) -> None:
        line = text_delta("héllo ✓")
        split_at = line.index("✓".encode("utf-8")) + 1
        recorder = _Recorder()
        parser = recorder.parser()
        parser.feed(line[:split_at])
        parser.feed(line[split_at:])

        assert recorder.calls == [("text", "héllo ✓")]

    def test_string_chunks_are_accepted(self) -> None:
        assert parse_stream(text_delta("z").decode("utf-8")) == [TextDelta("z")]

    def test_empty_chunk_is_noop(self) -> None:
        parser = StreamParser()
        assert parser.feed(b"") == []
        assert parser.feed(None) == []


# =============================================================================
# Payloads
# =============================================================================


class TestPayloads:
    def test_non_data_lines_are_ignored(self) -> None:
        body = b": keep-alive\nevent: ping\n\nid: 3\n" + text_delta("ok")
        assert parse_stream(body) == [TextDelta("ok")]

    def test_invalid_json_is_dropped_silently(self) -> None:
        body = b"data: {not json\n" + text_delta("after")
        assert parse_stream(body) == [TextDelta("after")]

    def test_non_object_json_is_ignored(self) -> None:
        assert parse_stream(b"data: [1, 2]\ndata: \"text\"\n") == []

    def test_structural_events_produce_nothing(self) -> None:
        body = (
            sse_line({"type": "message_start", "message": {}})
            + sse_line({"type": "content_block_start", "index": 0})
            + sse_line({"type": "ping"})
            + sse_line({"type": "content_block_stop", "index": 0})
            + sse_line({"type": "message_delta", "delta": {"stop_reason": "end_turn"}})
        )
        assert parse_stream(body) == []

    def test_non_text_delta_is_ignored(self) -> None:
        body = sse_line(
            {"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": "{}"}}
        )
        assert parse_stream(body) == []

    def test_empty_text_delta_is_still_delivered(self) -> None:
        assert parse_stream(text_delta("")) == [TextDelta("")]

    def test_error_event_carries_message(self) -> None:
        body = sse_line({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
        recorder = _Recorder()
        recorder.parser().feed(body)

        assert recorder.calls == [("error", "Overloaded")]

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "error"},
            {"type": "error", "error": {}},
            {"type": "error", "error": {"message": ""}},
            {"type": "error", "error": "boom"},
        ],
    )
    def test_error_without_message_uses_default(self, payload: dict) -> None:
        assert parse_stream(sse_line(payload)) == [StreamError("API error")]

    def test_error_does_not_stop_parsing(self) -> None:
        body = sse_line({"type": "error", "error": {"message": "x"}}) + text_delta("still here")
        assert parse_stream(body) == [StreamError("x"), TextDelta("still here")]


# =============================================================================
# Completion
# =============================================================================


class TestCompletion:
    def test_done_sentinel_completes(self) -> None:
        assert parse_stream(text_delta("a") + DONE) == [TextDelta("a"), Complete()]

    def test_complete_fires_once_for_stop_then_done(self) -> None:
        recorder = _Recorder()
        parser = recorder.parser()
        parser.feed(text_delta("a") + MESSAGE_STOP + DONE)

        assert [name for name, _ in recorder.calls].count("complete") == 1
        assert parser.completed

    def test_input_after_complete_is_ignored(self) -> None:
        recorder = _Recorder()
        parser = recorder.parser()
        parser.feed(MESSAGE_STOP + text_delta("late"))
        parser.feed(text_delta("later"))

        assert recorder.calls == [("complete", None)]
        assert parser.pending == b""

    def test_reset_allows_reuse(self) -> None:
        parser = StreamParser()
        parser.feed(MESSAGE_STOP)
        parser.reset()

        assert not parser.completed
        assert parser.feed(text_delta("again")) == [TextDelta("again")]

    def test_callbacks_are_optional(self) -> None:
        parser = StreamParser()
        events = parser.feed(stream_body("a", "b"))
        assert events == [TextDelta("a"), TextDelta("b"), Complete()]
