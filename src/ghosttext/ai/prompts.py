"""Prompt templates for inline completion requests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..completion.classifier import CURSOR_MARKER
from ..completion.types import CompletionContext, Diagnostic, Symbol

MAX_DIAGNOSTICS = 5
MAX_SYMBOLS = 10
MAX_RECENT_CHANGES = 5
MAX_CHANGE_PREVIEW_CHARS = 80


@dataclass(slots=True, frozen=True)
class CompletionPrompt:
    """System and user halves of a completion request."""

    system: str
    user: str


def system_prompt() -> str:
    """Return the system prompt describing the output formats."""
    return f"""You are a code completion engine embedded in a text editor.

TASK: Complete OR edit the code at {CURSOR_MARKER}.

RULES:
1. Output ONLY the completion/edit, no explanations or markdown
2. If suggesting an EDIT to existing code, use this format:
   <<<DELETE
   [lines to delete]
   >>>
   <<<INSERT
   [lines to insert]
   >>>
3. If suggesting a pure INSERT, just output the text to insert directly
4. Match existing code style exactly (indentation, quotes, semicolons, etc.)
5. Be concise - complete the current thought, don't write essays
6. If there are linter errors nearby, consider fixing them
7. If you see a pattern in recent edits, continue it
8. Never include {CURSOR_MARKER} in your output
9. If no completion is appropriate, output nothing"""


SYSTEM_PROMPT = system_prompt()


# -----------------------------------------------------------------------------
# User prompt
# -----------------------------------------------------------------------------


def build_prompt(context: CompletionContext) -> CompletionPrompt:
    """Assemble the prompt for ``context``.

    Args:
        context: Editing context captured at request time.

    Returns:
        Prompt ready to be placed into a request body.
    """
    filetype = context.filetype or "text"
    parts = [f"File: {context.filename or 'untitled'} ({filetype})"]

    if context.scope:
        parts.append(f"Currently in: {context.scope}")

    diagnostics = format_diagnostics(context.diagnostics)
    if diagnostics:
        parts.append("\nCurrent issues:")
        parts.extend(diagnostics)

    symbols = format_symbols(context.symbols)
    if symbols:
        parts.append("\nRelevant symbols:")
        parts.extend(symbols)

    changes = format_recent_changes(context.recent_changes)
    if changes:
        parts.append("\nRecent edits:")
        parts.extend(changes)

    parts.append(f"\n```{filetype}")
    parts.append(f"{context.before_cursor}{CURSOR_MARKER}{context.after_cursor}")
    parts.append("```")
    parts.append(f"\nComplete at {CURSOR_MARKER}:")

    return CompletionPrompt(system=SYSTEM_PROMPT, user="\n".join(parts))


def format_diagnostics(diagnostics: Sequence[Diagnostic] | None) -> list[str]:
    lines: list[str] = []
    for diagnostic in list(diagnostics or ())[:MAX_DIAGNOSTICS]:
        lines.append(f"  Line {diagnostic.row + 1} [{diagnostic.severity}]: {diagnostic.message}")
    return lines


def format_symbols(symbols: Sequence[Symbol] | None) -> list[str]:
    return [f"  {symbol.kind}: {symbol.name}" for symbol in list(symbols or ())[:MAX_SYMBOLS]]


def format_recent_changes(changes: Sequence[Mapping[str, Any]] | None) -> list[str]:
    """Render the newest edits, oldest first."""
    lines: list[str] = []
    for change in list(changes or ())[-MAX_RECENT_CHANGES:]:
        row = _coerce_int(change.get("row"))
        before = _preview(change.get("before"))
        after = _preview(change.get("after"))
        location = f"Line {row + 1}" if row is not None else "Line ?"
        if before:
            lines.append(f"  {location}: {before!r} -> {after!r}")
        else:
            lines.append(f"  {location}: inserted {after!r}")
    return lines


def _preview(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    if len(value) <= MAX_CHANGE_PREVIEW_CHARS:
        return value
    return value[: MAX_CHANGE_PREVIEW_CHARS - 3] + "..."


def _coerce_int(value: Any) -> int | None:
    """Coerce value to int or return None."""
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "CompletionPrompt",
    "SYSTEM_PROMPT",
    "build_prompt",
    "format_diagnostics",
    "format_recent_changes",
    "format_symbols",
    "system_prompt",
]
