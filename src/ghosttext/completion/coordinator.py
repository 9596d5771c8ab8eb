"""Request lifecycle for inline completions.

Each ``request()`` supersedes the previous one. Cancellation is only a hint
to the transport; the real guard is the request id compared at delivery time,
so callbacks of a stale request can never reach the acceptance engine.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Mapping, Protocol

from ..ai.prompts import CompletionPrompt, build_prompt
from ..ai.transport import StreamCallbacks, Transport, TransportHandle, build_request_body
from ..services import telemetry
from .acceptance import AcceptanceEngine
from .cache import SuggestionCache, make_key
from .classifier import EditSuggestion, Suggestion, classify
from .stream_parser import StreamParser
from .types import CompletionContext, CursorSource, RequestSnapshot

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-haiku-4-5"
DEFAULT_MAX_TOKENS = 512

PromptBuilder = Callable[[CompletionContext], CompletionPrompt]


class RequestPhase(str, Enum):
    """Lifecycle phase of a single completion request."""

    IDLE = "idle"
    PENDING = "pending"
    DELIVERING = "delivering"
    SUPERSEDED = "superseded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (RequestPhase.PENDING, RequestPhase.DELIVERING)


class CompletionObserver(Protocol):
    """Receives request outcomes, typically to surface errors to the user."""

    def request_failed(self, request_id: int, message: str) -> None:  # pragma: no cover - protocol stub
        ...

    def request_completed(self, request_id: int, text: str) -> None:  # pragma: no cover - protocol stub
        ...


@dataclass(slots=True)
class _InFlight:
    snapshot: RequestSnapshot
    cache_key: str
    phase: RequestPhase = RequestPhase.PENDING
    chunks: List[str] = field(default_factory=list)
    transport_handle: TransportHandle | None = None
    detached: bool = False
    error: str | None = None

    @property
    def request_id(self) -> int:
        return self.snapshot.request_id

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    @property
    def finished(self) -> bool:
        return self.phase.terminal


class RequestHandle:
    """Returned by :meth:`RequestCoordinator.request`; calling it cancels."""

    __slots__ = ("_coordinator", "_inflight")

    def __init__(self, coordinator: RequestCoordinator, inflight: _InFlight) -> None:
        self._coordinator = coordinator
        self._inflight = inflight

    @property
    def request_id(self) -> int:
        return self._inflight.request_id

    @property
    def state(self) -> RequestPhase:
        return self._inflight.phase

    @property
    def text(self) -> str:
        """Raw text accumulated so far."""
        return self._inflight.text

    @property
    def error(self) -> str | None:
        return self._inflight.error

    @property
    def done(self) -> bool:
        return self._inflight.finished

    def cancel(self) -> None:
        self._coordinator._cancel_inflight(self._inflight)

    def __call__(self) -> None:
        self.cancel()

    def __repr__(self) -> str:
        return f"RequestHandle(request_id={self.request_id}, state={self.state.value})"


class RequestCoordinator:
    """Drives one live completion request at a time.

    Args:
        transport: Opens the streaming request.
        cache: Raw completion text keyed by context fingerprint.
        engine: Receives every valid suggestion for display.
        cursor_source: Returns the live cursor for validity checks.
        model: Model identifier placed in the request body.
        max_tokens: Maximum tokens the model may generate.
        prompt_builder: Turns a context into system/user prompts.
        observer: Optional receiver of failures and completions.
        metadata: Extra request-body metadata.
    """

    def __init__(
        self,
        transport: Transport,
        cache: SuggestionCache,
        engine: AcceptanceEngine,
        cursor_source: CursorSource,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        prompt_builder: PromptBuilder = build_prompt,
        observer: CompletionObserver | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        self._transport = transport
        self._cache = cache
        self._engine = engine
        self._cursor_source = cursor_source
        self._model = model
        self._max_tokens = max_tokens
        self._prompt_builder = prompt_builder
        self._observer = observer
        self._metadata = dict(metadata or {})
        self._ids = itertools.count(1)
        self._snapshot: RequestSnapshot | None = None
        self._current: _InFlight | None = None
        self._engine.add_consume_listener(self._handle_consumed)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> RequestPhase:
        """``PENDING``/``DELIVERING`` while a request is live, else ``IDLE``."""

        current = self._current
        if current is None or current.finished:
            return RequestPhase.IDLE
        return current.phase

    @property
    def snapshot(self) -> RequestSnapshot | None:
        return self._snapshot

    @property
    def cache(self) -> SuggestionCache:
        return self._cache

    @property
    def engine(self) -> AcceptanceEngine:
        return self._engine

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def request(self, context: CompletionContext) -> RequestHandle:
        """Start a completion for ``context``, superseding any live request."""

        request_id = next(self._ids)
        previous = self._current
        snapshot = RequestSnapshot.capture(request_id, context)
        self._snapshot = snapshot
        if previous is not None and not previous.finished:
            self._supersede(previous, request_id)

        inflight = _InFlight(snapshot=snapshot, cache_key=make_key(context))
        self._current = inflight
        handle = RequestHandle(self, inflight)
        LOGGER.debug("Request #%d: row=%d, col=%d", request_id, context.row, context.col)
        telemetry.emit(
            "completion.request",
            {
                "request_id": request_id,
                "filetype": context.filetype,
                "row": context.row,
                "col": context.col,
            },
        )

        if self._serve_from_cache(inflight):
            return handle

        prompt = self._prompt_builder(context)
        body = build_request_body(
            prompt,
            model=self._model,
            max_tokens=self._max_tokens,
            metadata=self._metadata or None,
        )
        parser = StreamParser(
            on_text=lambda text: self._handle_text(inflight, text),
            on_complete=lambda: self._handle_complete(inflight),
            on_error=lambda message: self._handle_error(inflight, message),
        )
        callbacks = StreamCallbacks(
            on_data=lambda chunk: self._handle_data(inflight, parser, chunk),
            on_error=lambda message: self._handle_error(inflight, message),
            on_done=lambda status: self._handle_done(inflight, parser, status),
        )
        try:
            transport_handle = self._transport.open(body, callbacks)
        except Exception as exc:
            LOGGER.warning("Unable to open completion stream: %s", exc)
            self._handle_error(inflight, str(exc) or exc.__class__.__name__)
            return handle
        inflight.transport_handle = transport_handle
        if inflight.finished and inflight.phase is RequestPhase.CANCELLED:
            self._abort_transport(inflight)
        return handle

    def is_valid(self, request_id: int) -> bool:
        """Return whether results for ``request_id`` may still be shown."""

        snapshot = self._snapshot
        if snapshot is None or request_id != snapshot.request_id:
            return False
        try:
            cursor = self._cursor_source()
        except Exception:
            LOGGER.debug("Cursor source failed; treating request #%d as stale", request_id, exc_info=True)
            return False
        if cursor.buffer_id != snapshot.buffer_id:
            return False
        if cursor.row != snapshot.row:
            return False
        # Typing forward keeps the suggestion a valid continuation.
        return cursor.col >= snapshot.column

    def cancel(self) -> None:
        """Stop caring about the live request; idempotent."""

        current = self._current
        if current is not None:
            self._cancel_inflight(current)

    # ------------------------------------------------------------------
    # Cache path
    # ------------------------------------------------------------------
    def _serve_from_cache(self, inflight: _InFlight) -> bool:
        cached = self._cache.get(inflight.cache_key)
        if cached is None:
            return False
        suggestion = classify(cached)
        if suggestion is None:
            LOGGER.debug("Cached completion for request #%d is empty; fetching", inflight.request_id)
            return False
        inflight.chunks.append(cached)
        telemetry.emit("completion.cache_hit", {"request_id": inflight.request_id})
        self._deliver(inflight, suggestion, final=True)
        inflight.phase = RequestPhase.IDLE
        return True

    # ------------------------------------------------------------------
    # Stream callbacks
    # ------------------------------------------------------------------
    def _handle_data(self, inflight: _InFlight, parser: StreamParser, chunk: bytes) -> None:
        if inflight.finished:
            return
        parser.feed(chunk)

    def _handle_text(self, inflight: _InFlight, text: str) -> None:
        if inflight.finished:
            return
        inflight.chunks.append(text)
        if inflight.detached:
            return
        suggestion = classify(inflight.text)
        if suggestion is None:
            return
        self._deliver(inflight, suggestion, final=False)

    def _handle_complete(self, inflight: _InFlight) -> None:
        if inflight.finished:
            return
        text = inflight.text
        inflight.phase = RequestPhase.IDLE
        self._cache.set(inflight.cache_key, text)
        if not inflight.detached:
            suggestion = classify(text)
            if suggestion is not None:
                self._deliver(inflight, suggestion, final=True)
        LOGGER.debug("Request #%d complete (%d chars)", inflight.request_id, len(text))
        telemetry.emit(
            "completion.complete",
            {"request_id": inflight.request_id, "chars": len(text)},
        )
        self._notify("request_completed", inflight.request_id, text)

    def _handle_error(self, inflight: _InFlight, message: str) -> None:
        if inflight.finished:
            return
        inflight.phase = RequestPhase.FAILED
        inflight.error = message
        LOGGER.warning("Request #%d failed: %s", inflight.request_id, message)
        telemetry.emit("completion.error", {"request_id": inflight.request_id, "message": message})
        self._notify("request_failed", inflight.request_id, message)

    def _handle_done(self, inflight: _InFlight, parser: StreamParser, status: int) -> None:
        if inflight.finished:
            return
        if status != 0:
            self._handle_error(inflight, f"Transport exited with status {status}")
            return
        LOGGER.debug(
            "Request #%d stream closed without a stop event (%d byte(s) pending)",
            inflight.request_id,
            len(parser.pending),
        )
        inflight.phase = RequestPhase.IDLE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _deliver(self, inflight: _InFlight, suggestion: Suggestion, *, final: bool) -> None:
        if not self.is_valid(inflight.request_id):
            LOGGER.debug("Discarding stale result for request #%d", inflight.request_id)
            return
        anchor = inflight.snapshot.anchor
        if final:
            self._engine.show(anchor, suggestion)
            telemetry.emit(
                "completion.delivered",
                {
                    "request_id": inflight.request_id,
                    "kind": "edit" if isinstance(suggestion, EditSuggestion) else "insert",
                },
            )
        else:
            if inflight.phase is RequestPhase.PENDING:
                inflight.phase = RequestPhase.DELIVERING
            self._engine.update(anchor, suggestion)

    def _supersede(self, inflight: _InFlight, new_request_id: int) -> None:
        inflight.phase = RequestPhase.SUPERSEDED
        LOGGER.debug("Request #%d superseded by #%d", inflight.request_id, new_request_id)
        telemetry.emit(
            "completion.superseded",
            {"request_id": inflight.request_id, "superseded_by": new_request_id},
        )
        self._abort_transport(inflight)

    def _cancel_inflight(self, inflight: _InFlight) -> None:
        if inflight.finished:
            return
        inflight.phase = RequestPhase.CANCELLED
        LOGGER.debug("Request #%d cancelled", inflight.request_id)
        self._abort_transport(inflight)

    def _abort_transport(self, inflight: _InFlight) -> None:
        handle = inflight.transport_handle
        if handle is None:
            return
        try:
            handle.cancel()
        except Exception:
            LOGGER.debug("Transport cancel failed for request #%d", inflight.request_id, exc_info=True)

    def _handle_consumed(self, reason: str) -> None:
        current = self._current
        if current is not None and not current.finished:
            # Keep streaming into the cache but stop re-rendering.
            current.detached = True
            LOGGER.debug("Request #%d detached after %s", current.request_id, reason)

    def _notify(self, method: str, *args: Any) -> None:
        observer = self._observer
        if observer is None:
            return
        callback = getattr(observer, method, None)
        if not callable(callback):
            return
        try:
            callback(*args)
        except Exception:  # pragma: no cover - observers must not break the pipeline
            LOGGER.debug("Completion observer %s failed", method, exc_info=True)


__all__ = [
    "CompletionObserver",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_MODEL",
    "RequestCoordinator",
    "RequestHandle",
    "RequestPhase",
]
