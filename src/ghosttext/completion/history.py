"""Recent-edit history used for prompt context and next-edit prediction."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from .classifier import Suggestion

DEFAULT_MAX_EDITS = 50
DEFAULT_MAX_ACCEPTS = 10


@dataclass(slots=True, frozen=True)
class EditRecord:
    """A text change at ``(row, col)``; ``before`` is the replaced text."""

    row: int
    col: int
    before: str
    after: str
    timestamp: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "col": self.col, "before": self.before, "after": self.after}


@dataclass(slots=True, frozen=True)
class AcceptRecord:
    suggestion: Suggestion
    timestamp: float = 0.0


@dataclass(slots=True, frozen=True)
class PredictedLocation:
    """Where the next edit is likely to happen, 0-based."""

    row: int
    col: int
    reason: str


@dataclass(slots=True)
class HistoryStats:
    edit_count: int
    accept_count: int
    max_edits: int
    max_accepts: int


class EditHistory:
    """Bounded log of recent edits and accepted suggestions."""

    def __init__(
        self,
        *,
        max_edits: int = DEFAULT_MAX_EDITS,
        max_accepts: int = DEFAULT_MAX_ACCEPTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_edits = max(1, int(max_edits))
        self._max_accepts = max(1, int(max_accepts))
        self._clock = clock
        self._edits: deque[EditRecord] = deque(maxlen=self._max_edits)
        self._accepts: deque[AcceptRecord] = deque(maxlen=self._max_accepts)

    def record_edit(self, row: int, col: int, before: str, after: str) -> EditRecord:
        record = EditRecord(row=row, col=col, before=before or "", after=after or "", timestamp=self._clock())
        self._edits.append(record)
        return record

    def record_accept(self, suggestion: Suggestion) -> None:
        self._accepts.append(AcceptRecord(suggestion=suggestion, timestamp=self._clock()))

    def recent_edits(self, limit: int | None = None) -> list[EditRecord]:
        edits = list(self._edits)
        if limit is None or limit >= len(edits):
            return edits
        return edits[-limit:] if limit > 0 else []

    def recent_accepts(self) -> list[AcceptRecord]:
        return list(self._accepts)

    def recent_changes(self, limit: int | None = None) -> tuple[dict[str, Any], ...]:
        """Edits in the mapping shape carried by ``CompletionContext.recent_changes``."""

        return tuple(record.to_dict() for record in self.recent_edits(limit))

    def predict_next(self, lines: Sequence[str]) -> PredictedLocation | None:
        """Guess the next edit location from the last two edits.

        Two identical replacements in a row point at the next line below that
        still contains the replaced text. Edits at the same column on
        consecutive rows point at the row below.
        """

        if len(self._edits) < 2:
            return None
        last = self._edits[-1]
        prev = self._edits[-2]

        if last.after == prev.after and last.before:
            for row in range(last.row + 1, len(lines)):
                col = lines[row].find(last.before)
                if col >= 0:
                    return PredictedLocation(row=row, col=col, reason="repeated_replacement")

        if last.col == prev.col and last.row == prev.row + 1:
            return PredictedLocation(row=last.row + 1, col=last.col, reason="vertical_edit")
        return None

    def clear(self) -> None:
        self._edits.clear()
        self._accepts.clear()

    def stats(self) -> HistoryStats:
        return HistoryStats(
            edit_count=len(self._edits),
            accept_count=len(self._accepts),
            max_edits=self._max_edits,
            max_accepts=self._max_accepts,
        )


__all__ = [
    "AcceptRecord",
    "EditHistory",
    "EditRecord",
    "HistoryStats",
    "PredictedLocation",
]
