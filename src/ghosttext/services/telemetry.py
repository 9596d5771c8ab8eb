"""In-process telemetry for the completion pipeline."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Iterable, Mapping, Protocol

LOGGER = logging.getLogger(__name__)

_EVENT_LISTENERS: dict[str, list[Callable[[dict[str, Any]], None]]] = {}

COMPLETION_EVENTS: tuple[str, ...] = (
    "completion.request",
    "completion.cache_hit",
    "completion.delivered",
    "completion.complete",
    "completion.error",
    "completion.superseded",
    "completion.edit_span_missing",
)


@dataclass(slots=True)
class CompletionEvent:
    """Single recorded telemetry event."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class TelemetrySink(Protocol):
    """Sink interface used to collect telemetry events."""

    def record(self, event: CompletionEvent) -> None:  # pragma: no cover - protocol stub
        ...


class InMemoryTelemetrySink:
    """Simple ring-buffer telemetry sink for local inspection and tests."""

    def __init__(self, capacity: int = 200) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[CompletionEvent] = deque(maxlen=self._capacity)
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, event: CompletionEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def tail(self, limit: int | None = None) -> list[CompletionEvent]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def names(self) -> list[str]:
        return [event.name for event in self.tail()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class CompletionUsageSummary:
    """Aggregated counters across recorded completion events."""

    requests: int = 0
    cache_hits: int = 0
    delivered: int = 0
    completed: int = 0
    errors: int = 0
    superseded: int = 0
    edit_span_missing: int = 0

    @property
    def cache_hit_rate(self) -> float:
        if self.requests == 0:
            return 0.0
        return self.cache_hits / self.requests

    def as_status_text(self) -> str:
        """One-line summary printed by ``ghosttext --stats``."""

        parts = [
            f"Requests {self.requests:,}",
            f"Cache {self.cache_hit_rate:.0%}",
            f"Delivered {self.delivered:,}",
        ]
        for label, count in (
            ("Errors", self.errors),
            ("Superseded", self.superseded),
            ("Unplaced edits", self.edit_span_missing),
        ):
            if count:
                parts.append(f"{label} {count:,}")
        return " · ".join(parts)


_SUMMARY_FIELDS = {
    "completion.request": "requests",
    "completion.cache_hit": "cache_hits",
    "completion.delivered": "delivered",
    "completion.complete": "completed",
    "completion.error": "errors",
    "completion.superseded": "superseded",
    "completion.edit_span_missing": "edit_span_missing",
}


def summarize_events(events: Iterable[CompletionEvent] | None) -> CompletionUsageSummary:
    """Count completion events by kind."""

    summary = CompletionUsageSummary()
    for event in events or ():
        attr = _SUMMARY_FIELDS.get(event.name)
        if attr is not None:
            setattr(summary, attr, getattr(summary, attr) + 1)
    return summary


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


def register_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*."""

    if not event_name or callback is None:
        return
    listeners = _EVENT_LISTENERS.setdefault(event_name, [])
    if callback not in listeners:
        listeners.append(callback)


def unregister_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    listeners = _EVENT_LISTENERS.get(event_name)
    if not listeners:
        return
    try:
        listeners.remove(callback)
    except ValueError:
        return
    if not listeners:
        _EVENT_LISTENERS.pop(event_name, None)


def clear_event_listeners() -> None:
    _EVENT_LISTENERS.clear()


def attach_sink(
    sink: TelemetrySink,
    event_names: Iterable[str] = COMPLETION_EVENTS,
) -> Callable[[], None]:
    """Record every listed event into ``sink``; returns a detach callback."""

    def _listener(payload: dict[str, Any]) -> None:
        data = dict(payload)
        name = str(data.pop("event", ""))
        sink.record(CompletionEvent(name=name, payload=data))

    names = tuple(event_names)
    for name in names:
        register_event_listener(name, _listener)

    def _detach() -> None:
        for name in names:
            unregister_event_listener(name, _listener)

    return _detach


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Broadcast a structured telemetry event to in-process listeners."""

    if not event_name:
        return
    event_payload = {"event": event_name}
    if payload:
        event_payload.update(payload)
    listeners = list(_EVENT_LISTENERS.get(event_name, ()))
    for callback in listeners:
        try:
            callback(dict(event_payload))
        except Exception:  # pragma: no cover - listeners must not break emitters
            LOGGER.debug("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)


__all__ = [
    "COMPLETION_EVENTS",
    "CompletionEvent",
    "CompletionUsageSummary",
    "InMemoryTelemetrySink",
    "TelemetrySink",
    "attach_sink",
    "clear_event_listeners",
    "emit",
    "register_event_listener",
    "summarize_events",
    "unregister_event_listener",
]
