"""Turn raw model output into a typed insert or edit suggestion."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Union

CURSOR_MARKER = "<|CURSOR|>"
DELETE_MARKER = "<<<DELETE"
INSERT_MARKER = "<<<INSERT"
CLOSE_MARKER = ">>>"

_OPENING_FENCE_RE = re.compile(r"\A```\w*\n?")
_CLOSING_FENCE_RE = re.compile(r"\n?```\s*\Z")


@dataclass(slots=True, frozen=True)
class InsertSuggestion:
    """Text to insert at the anchor."""

    text: str
    raw: str


@dataclass(slots=True, frozen=True)
class EditSuggestion:
    """Span to delete near the anchor plus text to insert in its place."""

    delete: str | None
    insert: str | None
    raw: str


Suggestion = Union[InsertSuggestion, EditSuggestion]


class _Section(Enum):
    NONE = "none"
    DELETE = "delete"
    INSERT = "insert"


def classify(raw_text: str | None) -> Suggestion | None:
    """Classify accumulated model output.

    Returns ``None`` when there is nothing useful to show.
    """

    if not raw_text or not raw_text.strip():
        return None

    if DELETE_MARKER in raw_text or INSERT_MARKER in raw_text:
        delete, insert = parse_edit_markers(raw_text)
        if delete is not None or insert is not None:
            return EditSuggestion(
                delete=None if delete is None else clean_completion_text(delete),
                insert=None if insert is None else clean_completion_text(insert),
                raw=raw_text,
            )

    cleaned = clean_completion_text(raw_text).lstrip()
    if not cleaned:
        return None
    return InsertSuggestion(text=cleaned, raw=raw_text)


def parse_edit_markers(text: str) -> tuple[str | None, str | None]:
    """Split ``text`` into its delete and insert sections.

    Markers are recognized only as whole physical lines, so marker-like
    substrings inside the content never open or close a section. A section
    that was never opened is returned as ``None``.
    """

    section = _Section.NONE
    delete_lines: List[str] | None = None
    insert_lines: List[str] | None = None

    for line in text.split("\n"):
        if line == DELETE_MARKER:
            section = _Section.DELETE
            if delete_lines is None:
                delete_lines = []
        elif line == INSERT_MARKER:
            section = _Section.INSERT
            if insert_lines is None:
                insert_lines = []
        elif line == CLOSE_MARKER:
            section = _Section.NONE
        elif section is _Section.DELETE and delete_lines is not None:
            delete_lines.append(line)
        elif section is _Section.INSERT and insert_lines is not None:
            insert_lines.append(line)

    delete = None if delete_lines is None else "\n".join(delete_lines)
    insert = None if insert_lines is None else "\n".join(insert_lines)
    return delete, insert


def clean_completion_text(text: str) -> str:
    """Strip cursor markers, one surrounding code fence and one trailing newline."""

    if not text:
        return ""
    cleaned = text.replace(CURSOR_MARKER, "")
    cleaned = _OPENING_FENCE_RE.sub("", cleaned, count=1)
    cleaned = _CLOSING_FENCE_RE.sub("", cleaned, count=1)
    if cleaned.endswith("\n"):
        cleaned = cleaned[:-1]
    return cleaned


def suggestion_text(suggestion: Suggestion | None) -> str | None:
    """Return the text a suggestion would put into the buffer."""

    if isinstance(suggestion, InsertSuggestion):
        return suggestion.text
    if isinstance(suggestion, EditSuggestion):
        return suggestion.insert
    return None


__all__ = [
    "CURSOR_MARKER",
    "EditSuggestion",
    "InsertSuggestion",
    "Suggestion",
    "classify",
    "clean_completion_text",
    "parse_edit_markers",
    "suggestion_text",
]
