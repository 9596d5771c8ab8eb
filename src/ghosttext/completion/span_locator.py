"""Locate the delete half of an edit suggestion inside live buffer lines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal, Sequence

DEFAULT_SEARCH_RADIUS = 20

MatchStrategy = Literal["exact", "fuzzy"]


@dataclass(slots=True, frozen=True)
class SpanMatch:
    """Half-open line range ``[start, end)`` holding the matched span."""

    start: int
    end: int
    strategy: MatchStrategy

    @property
    def line_count(self) -> int:
        return self.end - self.start


def find_exact(
    lines: Sequence[str],
    target: Sequence[str],
    search_start: int,
    search_end: int,
) -> int | None:
    """Return the lowest index in ``[search_start, search_end]`` where ``target`` matches verbatim."""

    return _scan(lines, target, search_start, search_end, _equal)


def find_fuzzy(
    lines: Sequence[str],
    target: Sequence[str],
    search_start: int,
    search_end: int,
) -> int | None:
    """Like :func:`find_exact`, ignoring leading/trailing whitespace on every line."""

    return _scan(lines, target, search_start, search_end, _equal_stripped)


def locate_span(
    lines: Sequence[str],
    delete_text: str | None,
    anchor_row: int,
    radius: int = DEFAULT_SEARCH_RADIUS,
) -> SpanMatch | None:
    """Find ``delete_text`` near ``anchor_row``.

    An exact scan over the whole radius runs first; the whitespace-tolerant
    scan is only attempted when it finds nothing.

    Args:
        lines: Current buffer content, one entry per line.
        delete_text: Text the suggestion wants removed.
        anchor_row: 0-based row the suggestion is pinned to.
        radius: Rows searched on each side of ``anchor_row``.

    Returns:
        The matched range, or ``None`` when the span is empty or absent.
    """

    if not delete_text:
        return None
    target = delete_text.split("\n")
    radius = max(0, radius)
    search_start = max(0, anchor_row - radius)
    search_end = min(len(lines) - len(target), anchor_row + radius)
    if search_end < search_start:
        return None

    index = find_exact(lines, target, search_start, search_end)
    if index is not None:
        return SpanMatch(index, index + len(target), "exact")
    index = find_fuzzy(lines, target, search_start, search_end)
    if index is not None:
        return SpanMatch(index, index + len(target), "fuzzy")
    return None


def _scan(
    lines: Sequence[str],
    target: Sequence[str],
    search_start: int,
    search_end: int,
    compare: Callable[[str, str], bool],
) -> int | None:
    if not target:
        return None
    start = max(0, search_start)
    end = min(search_end, len(lines) - len(target))
    for index in range(start, end + 1):
        if all(compare(lines[index + offset], line) for offset, line in enumerate(target)):
            return index
    return None


def _equal(left: str, right: str) -> bool:
    return left == right


def _equal_stripped(left: str, right: str) -> bool:
    return left.strip() == right.strip()


__all__ = [
    "DEFAULT_SEARCH_RADIUS",
    "SpanMatch",
    "find_exact",
    "find_fuzzy",
    "locate_span",
]
