"""Displayed-suggestion state and progressive acceptance."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Callable, List, Sequence, Union

from ..services import telemetry
from .classifier import EditSuggestion, InsertSuggestion, Suggestion
from .history import EditHistory
from .span_locator import DEFAULT_SEARCH_RADIUS, SpanMatch, locate_span
from .types import Anchor

LOGGER = logging.getLogger(__name__)

_WORD_PATTERNS = (
    re.compile(r"\s*\w+"),
    re.compile(r"\s*\S+"),
    re.compile(r"\s+"),
)

LineSource = Callable[[], Sequence[str]]
ConsumeListener = Callable[[str], None]


@dataclass(slots=True, frozen=True)
class InsertAction:
    """Insert ``text`` at ``anchor``.

    ``line_break`` is set by line acceptance: the consumed line ended in a
    break that the host places after ``text``.
    """

    text: str
    anchor: Anchor
    line_break: bool = False


@dataclass(slots=True, frozen=True)
class EditAction:
    """Delete ``delete_span`` (when found) then insert ``insert_text`` at ``anchor``.

    ``delete_span`` is ``None`` when the suggestion had nothing to delete or
    when the text could not be located near the anchor.
    """

    delete_text: str | None
    delete_span: SpanMatch | None
    insert_text: str | None
    anchor: Anchor

    @property
    def delete_missing(self) -> bool:
        return bool(self.delete_text) and self.delete_span is None


AcceptAction = Union[InsertAction, EditAction]


@dataclass(slots=True, frozen=True)
class AcceptanceState:
    """Snapshot of the displayed suggestions; ``current_index`` is 1-based."""

    suggestions: tuple[Suggestion, ...] = ()
    current_index: int = 0
    anchor: Anchor | None = None

    @property
    def current(self) -> Suggestion | None:
        if self.current_index == 0:
            return None
        return self.suggestions[self.current_index - 1]


@dataclass(slots=True)
class _Display:
    suggestions: List[Suggestion] = field(default_factory=list)
    current_index: int = 0
    anchor: Anchor | None = None
    live_index: int | None = None


class AcceptanceEngine:
    """Holds the suggestions shown at one anchor and applies user choices.

    The engine never touches a buffer itself; every accept call returns an
    action describing the change for the host to apply.
    """

    def __init__(
        self,
        *,
        search_radius: int = DEFAULT_SEARCH_RADIUS,
        history: EditHistory | None = None,
        line_source: LineSource | None = None,
    ) -> None:
        self._search_radius = max(0, int(search_radius))
        self._history = history
        self._line_source = line_source
        self._display = _Display()
        self._consume_listeners: list[ConsumeListener] = []

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    @property
    def current(self) -> Suggestion | None:
        display = self._display
        if display.current_index == 0:
            return None
        return display.suggestions[display.current_index - 1]

    @property
    def current_index(self) -> int:
        return self._display.current_index

    @property
    def count(self) -> int:
        return len(self._display.suggestions)

    @property
    def anchor(self) -> Anchor | None:
        return self._display.anchor

    @property
    def state(self) -> AcceptanceState:
        display = self._display
        return AcceptanceState(
            suggestions=tuple(display.suggestions),
            current_index=display.current_index,
            anchor=display.anchor,
        )

    @property
    def has_suggestion(self) -> bool:
        return self._display.current_index > 0

    def add_consume_listener(self, listener: ConsumeListener) -> None:
        """Call ``listener(reason)`` whenever the display is accepted or dismissed."""

        if listener not in self._consume_listeners:
            self._consume_listeners.append(listener)

    def remove_consume_listener(self, listener: ConsumeListener) -> None:
        try:
            self._consume_listeners.remove(listener)
        except ValueError:
            return

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------
    def show(self, anchor: Anchor, suggestion: Suggestion) -> bool:
        """Add a finished suggestion; returns ``False`` for a duplicate.

        A provisional entry left by :meth:`update` is replaced rather than
        kept alongside the final one.
        """

        self._reset_if_moved(anchor)
        display = self._display
        had_live = self._drop_live()
        existing = self._index_of(suggestion.raw)
        if existing is not None:
            if had_live:
                display.current_index = existing + 1
            return False
        display.suggestions.append(suggestion)
        display.current_index = len(display.suggestions)
        return True

    def update(self, anchor: Anchor, suggestion: Suggestion) -> None:
        """Re-render the in-flight suggestion in place.

        Every streamed delta produces a fresh suggestion from the whole
        accumulated text; it overwrites the previous provisional entry
        instead of growing the list.
        """

        self._reset_if_moved(anchor)
        display = self._display
        existing = self._index_of(suggestion.raw)
        if existing is not None and existing != display.live_index:
            self._drop_live()
            existing = self._index_of(suggestion.raw)
            if existing is not None:
                display.current_index = existing + 1
            return
        if display.live_index is None:
            display.suggestions.append(suggestion)
            display.live_index = len(display.suggestions) - 1
        else:
            display.suggestions[display.live_index] = suggestion
        display.current_index = display.live_index + 1

    def next(self) -> bool:
        """Advance to the next suggestion; ``False`` means the list is exhausted."""

        display = self._display
        if display.current_index == 0 or display.current_index >= len(display.suggestions):
            return False
        display.current_index += 1
        return True

    def prev(self) -> bool:
        display = self._display
        if display.current_index <= 1:
            return False
        display.current_index -= 1
        return True

    def dismiss(self) -> None:
        """Drop every suggestion; safe to call repeatedly."""

        had_state = bool(self._display.suggestions)
        self._clear()
        if had_state:
            self._notify_consumed("dismiss")

    # ------------------------------------------------------------------
    # Acceptance
    # ------------------------------------------------------------------
    def accept_full(self, lines: Sequence[str] | None = None) -> AcceptAction | None:
        """Consume the current suggestion entirely.

        Args:
            lines: Live buffer content used to locate the delete half of an
                edit. Falls back to the engine's line source when omitted.

        Returns:
            The action to apply, or ``None`` when nothing is displayed.
        """

        suggestion = self.current
        anchor = self._display.anchor
        if suggestion is None or anchor is None:
            return None
        self._clear()

        action: AcceptAction
        if isinstance(suggestion, InsertSuggestion):
            action = InsertAction(text=suggestion.text, anchor=anchor)
        else:
            action = self._resolve_edit(suggestion, anchor, lines)

        if self._history is not None:
            self._history.record_accept(suggestion)
        self._notify_consumed("accept_full")
        return action

    def accept_word(self) -> InsertAction | None:
        """Consume the leading word of an insert suggestion."""

        return self._accept_partial(_split_word, "accept_word")

    def accept_line(self) -> InsertAction | None:
        """Consume the first line of an insert suggestion."""

        return self._accept_partial(_split_line, "accept_line")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _accept_partial(
        self,
        split: Callable[[str], tuple[str | None, str]],
        reason: str,
    ) -> InsertAction | None:
        suggestion = self.current
        anchor = self._display.anchor
        if not isinstance(suggestion, InsertSuggestion) or anchor is None:
            return None
        fragment, remainder = split(suggestion.text)
        if fragment is None:
            self._clear()
            return None

        consumed = suggestion.text[: len(suggestion.text) - len(remainder)]
        keep = bool(remainder.strip())
        if not keep:
            self._clear()
        else:
            self._display = _Display(
                suggestions=[replace(suggestion, text=remainder)],
                current_index=1,
                anchor=anchor.advanced(consumed),
            )
        self._notify_consumed(reason)
        return InsertAction(text=fragment, anchor=anchor, line_break=keep and consumed != fragment)

    def _resolve_edit(
        self,
        suggestion: EditSuggestion,
        anchor: Anchor,
        lines: Sequence[str] | None,
    ) -> EditAction:
        span: SpanMatch | None = None
        if suggestion.delete:
            if lines is None and self._line_source is not None:
                lines = self._line_source()
            if lines is not None:
                span = locate_span(lines, suggestion.delete, anchor.row, self._search_radius)
            if span is None:
                LOGGER.warning(
                    "Could not locate %d line(s) to delete near row %d; inserting only",
                    suggestion.delete.count("\n") + 1,
                    anchor.row,
                )
                telemetry.emit(
                    "completion.edit_span_missing",
                    {
                        "row": anchor.row,
                        "line_count": suggestion.delete.count("\n") + 1,
                        "radius": self._search_radius,
                    },
                )
        return EditAction(
            delete_text=suggestion.delete,
            delete_span=span,
            insert_text=suggestion.insert,
            anchor=anchor,
        )

    def _reset_if_moved(self, anchor: Anchor) -> None:
        if self._display.anchor != anchor:
            self._display = _Display(anchor=anchor)

    def _drop_live(self) -> bool:
        display = self._display
        live = display.live_index
        if live is None:
            return False
        del display.suggestions[live]
        display.live_index = None
        display.current_index = min(display.current_index, len(display.suggestions))
        return True

    def _index_of(self, raw: str) -> int | None:
        for index, existing in enumerate(self._display.suggestions):
            if existing.raw == raw:
                return index
        return None

    def _clear(self) -> None:
        self._display = _Display()

    def _notify_consumed(self, reason: str) -> None:
        for listener in list(self._consume_listeners):
            try:
                listener(reason)
            except Exception:  # pragma: no cover - listeners must not break acceptance
                LOGGER.debug("Consume listener %s failed", listener, exc_info=True)


def _split_word(text: str) -> tuple[str | None, str]:
    for pattern in _WORD_PATTERNS:
        match = pattern.match(text)
        if match:
            return match.group(0), text[match.end() :]
    return None, text


def _split_line(text: str) -> tuple[str | None, str]:
    # The break itself belongs to neither half.
    if not text:
        return None, ""
    newline = text.find("\n")
    if newline < 0:
        return text, ""
    return text[:newline], text[newline + 1 :]


__all__ = [
    "AcceptAction",
    "AcceptanceEngine",
    "AcceptanceState",
    "EditAction",
    "InsertAction",
]
