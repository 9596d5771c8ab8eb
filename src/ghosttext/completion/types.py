"""Shared value types for the completion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence


@dataclass(slots=True, frozen=True)
class CursorPosition:
    """Live cursor location reported by the host editor (0-based row/col)."""

    buffer_id: Any
    row: int
    col: int


@dataclass(slots=True, frozen=True)
class Anchor:
    """The (buffer, row, column) triple a displayed suggestion is pinned to."""

    buffer_id: Any
    row: int
    col: int

    def advanced(self, fragment: str) -> Anchor:
        """Return the anchor after ``fragment`` has been typed at this position."""

        if "\n" not in fragment:
            return Anchor(self.buffer_id, self.row, self.col + len(fragment))
        lines = fragment.split("\n")
        return Anchor(self.buffer_id, self.row + len(lines) - 1, len(lines[-1]))


@dataclass(slots=True, frozen=True)
class Diagnostic:
    """Single linter/LSP finding near the cursor."""

    row: int
    severity: str
    message: str


@dataclass(slots=True, frozen=True)
class Symbol:
    """Named symbol surfaced by the host's language tooling."""

    kind: str
    name: str


@dataclass(slots=True, frozen=True)
class CompletionContext:
    """Editing context captured by the host at request time.

    Only ``filetype``, ``before_cursor`` and ``after_cursor`` feed the cache
    fingerprint; the remaining fields are prompt material.
    """

    buffer_id: Any
    row: int
    col: int
    filetype: str
    before_cursor: str
    after_cursor: str
    filename: str = ""
    scope: str | None = None
    diagnostics: Sequence[Diagnostic] = field(default_factory=tuple)
    symbols: Sequence[Symbol] = field(default_factory=tuple)
    recent_changes: Sequence[Mapping[str, Any]] = field(default_factory=tuple)

    @property
    def anchor(self) -> Anchor:
        return Anchor(self.buffer_id, self.row, self.col)


@dataclass(slots=True, frozen=True)
class RequestSnapshot:
    """Cursor/buffer state captured when a request is issued."""

    request_id: int
    buffer_id: Any
    row: int
    column: int
    prefix: str

    @classmethod
    def capture(cls, request_id: int, context: CompletionContext) -> RequestSnapshot:
        return cls(
            request_id=request_id,
            buffer_id=context.buffer_id,
            row=context.row,
            column=context.col,
            prefix=context.before_cursor,
        )

    @property
    def anchor(self) -> Anchor:
        return Anchor(self.buffer_id, self.row, self.column)


CursorSource = Callable[[], CursorPosition]


__all__ = [
    "Anchor",
    "CompletionContext",
    "CursorPosition",
    "CursorSource",
    "Diagnostic",
    "RequestSnapshot",
    "Symbol",
]
