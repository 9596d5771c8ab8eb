"""In-memory line buffer used as the reference host document."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..completion.acceptance import AcceptAction, EditAction, InsertAction
from ..completion.history import EditHistory
from ..completion.types import CompletionContext, CursorPosition, Diagnostic, Symbol

LOGGER = logging.getLogger(__name__)

DEFAULT_LINES_BEFORE = 100
DEFAULT_LINES_AFTER = 50


class LineBuffer:
    """List-of-lines document with a single cursor (0-based row/col)."""

    def __init__(
        self,
        text: str = "",
        *,
        buffer_id: Any = 1,
        filename: str = "",
        history: EditHistory | None = None,
    ) -> None:
        self._lines: list[str] = _split_lines(text)
        self._row = 0
        self._col = 0
        self.buffer_id = buffer_id
        self.filename = filename
        self.history = history

    @classmethod
    def from_lines(cls, lines: Sequence[str], **kwargs: Any) -> LineBuffer:
        return cls("\n".join(lines), **kwargs)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    @property
    def lines(self) -> tuple[str, ...]:
        return tuple(self._lines)

    @property
    def text(self) -> str:
        return "\n".join(self._lines)

    @property
    def cursor(self) -> tuple[int, int]:
        return self._row, self._col

    def line(self, row: int) -> str:
        return self._lines[row]

    def cursor_position(self) -> CursorPosition:
        """Current cursor, usable directly as the coordinator's cursor source."""
        return CursorPosition(self.buffer_id, self._row, self._col)

    def __len__(self) -> int:
        return len(self._lines)

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------
    def set_cursor(self, row: int, col: int) -> None:
        """Move the cursor, clamping it into the document."""
        row = min(max(0, row), len(self._lines) - 1)
        col = min(max(0, col), len(self._lines[row]))
        self._row, self._col = row, col

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def insert_text(self, text: str) -> None:
        """Insert ``text`` at the cursor and leave the cursor after it."""
        if not text:
            return
        row, col = self._row, self._col
        current = self._lines[row]
        before, after = current[:col], current[col:]
        pieces = text.split("\n")
        if len(pieces) == 1:
            self._lines[row] = before + text + after
            self._col = col + len(text)
        else:
            pieces[0] = before + pieces[0]
            last = pieces[-1]
            pieces[-1] = last + after
            self._lines[row : row + 1] = pieces
            self._row = row + len(pieces) - 1
            self._col = len(last)
        self._record(row, col, "", text)

    def delete_lines(self, start: int, end: int) -> list[str]:
        """Remove rows ``[start, end)`` and return them."""
        start = max(0, start)
        end = min(len(self._lines), end)
        if end <= start:
            return []
        removed = self._lines[start:end]
        del self._lines[start:end]
        if not self._lines:
            self._lines.append("")
        count = end - start
        if self._row >= end:
            self._row -= count
        elif self._row >= start:
            self._row, self._col = min(start, len(self._lines) - 1), 0
        self._col = min(self._col, len(self._lines[self._row]))
        self._record(start, 0, "\n".join(removed), "")
        return removed

    def replace_lines(self, start: int, end: int, replacement: str) -> None:
        """Swap rows ``[start, end)`` for ``replacement`` and park the cursor after it."""
        new_lines = replacement.split("\n")
        removed = self._lines[start:end]
        self._lines[start:end] = new_lines
        self._row = start + len(new_lines) - 1
        self._col = len(new_lines[-1])
        self._record(start, 0, "\n".join(removed), replacement)

    def apply(self, action: AcceptAction | None) -> bool:
        """Apply an accept action; returns whether the buffer changed.

        Inserts go at the cursor. An edit whose delete span was located
        replaces those rows; otherwise only its insertion is applied.
        """
        if action is None:
            return False
        if isinstance(action, InsertAction):
            text = action.text + "\n" if action.line_break else action.text
            self.insert_text(text)
            return bool(text)
        if isinstance(action, EditAction):
            span = action.delete_span
            insert = action.insert_text or ""
            if span is not None:
                if insert:
                    self.replace_lines(span.start, span.end, insert)
                else:
                    self.delete_lines(span.start, span.end)
                return True
            if action.delete_missing:
                LOGGER.debug("Delete span unresolved; inserting at cursor %s", self.cursor)
            if insert:
                self.insert_text(insert)
                return True
            return False
        raise TypeError(f"Unsupported action: {action!r}")

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------
    def build_context(
        self,
        filetype: str,
        *,
        lines_before: int = DEFAULT_LINES_BEFORE,
        lines_after: int = DEFAULT_LINES_AFTER,
        scope: str | None = None,
        diagnostics: Sequence[Diagnostic] = (),
        symbols: Sequence[Symbol] = (),
    ) -> CompletionContext:
        """Capture the text around the cursor for a completion request."""
        row, col = self._row, self._col
        current = self._lines[row]
        first = max(0, row - max(0, lines_before))
        last = min(len(self._lines), row + 1 + max(0, lines_after))
        before = "\n".join(self._lines[first:row] + [current[:col]])
        after = "\n".join([current[col:]] + self._lines[row + 1 : last])
        recent = self.history.recent_changes() if self.history is not None else ()
        return CompletionContext(
            buffer_id=self.buffer_id,
            row=row,
            col=col,
            filetype=filetype,
            before_cursor=before,
            after_cursor=after,
            filename=self.filename,
            scope=scope,
            diagnostics=tuple(diagnostics),
            symbols=tuple(symbols),
            recent_changes=recent,
        )

    def _record(self, row: int, col: int, before: str, after: str) -> None:
        if self.history is not None:
            self.history.record_edit(row, col, before, after)


def _split_lines(text: str) -> list[str]:
    lines = text.split("\n")
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    return lines or [""]


__all__ = ["LineBuffer"]
