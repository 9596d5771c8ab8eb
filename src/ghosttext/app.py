"""Command-line entry point: run one completion against a file on disk."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.transport import HttpxTransport, TransportSettings
from .completion.acceptance import AcceptanceEngine
from .completion.cache import CacheConfig, SuggestionCache
from .completion.classifier import EditSuggestion, InsertSuggestion, Suggestion
from .completion.coordinator import RequestCoordinator, RequestPhase
from .completion.history import EditHistory
from .completion.span_locator import locate_span
from .editor.buffer import LineBuffer
from .services import telemetry
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

_FILETYPES_BY_SUFFIX: Mapping[str, str] = {
    ".py": "python",
    ".lua": "lua",
    ".js": "javascript",
    ".ts": "typescript",
    ".rs": "rust",
    ".go": "go",
    ".rb": "ruby",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".java": "java",
    ".sh": "sh",
    ".md": "markdown",
}


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure logging; console output only when debugging."""

    level = logging.DEBUG if debug else logging.INFO
    log_path = logging_utils.setup_logging(level, console=debug, force=force)
    _LOGGER.debug("Logging configured (level=%s, file=%s)", logging.getLevelName(level), log_path)


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:  # pragma: no cover - defensive path
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_transport_settings(settings: Settings, *, debug_logging: bool = False) -> TransportSettings:
    return TransportSettings(
        api_key=settings.api_key,
        base_url=settings.base_url,
        anthropic_version=settings.anthropic_version,
        request_timeout=settings.request_timeout,
        max_response_bytes=settings.max_response_bytes,
        default_headers=dict(settings.default_headers),
        debug_logging=debug_logging or settings.debug_logging,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `ghosttext` console script."""

    args = _parse_cli_args(argv)
    debug = bool(args.debug) or _env_flag("GHOSTTEXT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("GHOSTTEXT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if args.path is None:
        print("A file path is required unless --dump-settings is given.", file=sys.stderr)
        return 2

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
        debug = True

    if not settings.api_key:
        print("No API key configured (set GHOSTTEXT_API_KEY or ANTHROPIC_API_KEY).", file=sys.stderr)
        return 1

    path = Path(args.path).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Unable to read {path}: {exc}", file=sys.stderr)
        return 1

    history = EditHistory(max_edits=settings.max_history_edits)
    buffer = LineBuffer(text, buffer_id=str(path), filename=path.name, history=history)
    buffer.set_cursor(args.row, args.col)
    filetype = args.filetype or _FILETYPES_BY_SUFFIX.get(path.suffix.lower(), "text")

    sink = telemetry.InMemoryTelemetrySink() if args.stats else None
    detach = telemetry.attach_sink(sink) if sink is not None else None
    try:
        suggestion, error = asyncio.run(
            run_completion(settings, buffer, filetype, debug_logging=debug)
        )
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Completion interrupted by user.")
        return 1
    finally:
        if detach is not None:
            detach()

    if sink is not None:
        print(telemetry.summarize_events(sink.tail()).as_status_text(), file=sys.stderr)

    if error is not None:
        print(f"Completion failed: {error}", file=sys.stderr)
        return 1
    if suggestion is None:
        print("No suggestion.", file=sys.stderr)
        return 0
    sys.stdout.write(format_suggestion(suggestion, buffer, radius=settings.edit_search_radius))
    sys.stdout.write("\n")
    return 0


async def run_completion(
    settings: Settings,
    buffer: LineBuffer,
    filetype: str,
    *,
    debug_logging: bool = False,
    transport: HttpxTransport | None = None,
) -> tuple[Suggestion | None, str | None]:
    """Run one request for the buffer's cursor; returns ``(suggestion, error)``."""

    active_transport = transport or HttpxTransport(
        build_transport_settings(settings, debug_logging=debug_logging)
    )
    cache = SuggestionCache(
        CacheConfig(max_entries=settings.cache_max_size, ttl_seconds=settings.cache_ttl_seconds)
    )
    engine = AcceptanceEngine(
        search_radius=settings.edit_search_radius,
        history=buffer.history,
        line_source=lambda: buffer.lines,
    )
    coordinator = RequestCoordinator(
        active_transport,
        cache,
        engine,
        buffer.cursor_position,
        model=settings.model,
        max_tokens=settings.max_tokens,
        metadata={str(key): str(value) for key, value in settings.metadata.items()} or None,
    )
    context = buffer.build_context(
        filetype,
        lines_before=settings.lines_before,
        lines_after=settings.lines_after,
    )
    try:
        handle = coordinator.request(context)
        await active_transport.wait_closed()
    finally:
        if transport is None:
            await active_transport.aclose()
    if handle.state is RequestPhase.FAILED:
        return None, handle.error or "unknown error"
    return engine.current, None


def format_suggestion(suggestion: Suggestion, buffer: LineBuffer, *, radius: int = 20) -> str:
    """Render a suggestion for the terminal: raw text, or a -/+ diff for edits."""

    if isinstance(suggestion, InsertSuggestion):
        return suggestion.text
    if not isinstance(suggestion, EditSuggestion):
        raise TypeError(f"Unsupported suggestion: {suggestion!r}")
    lines: list[str] = []
    if suggestion.delete:
        span = locate_span(buffer.lines, suggestion.delete, buffer.cursor[0], radius)
        if span is not None:
            lines.append(f"@@ rows {span.start + 1}-{span.end} ({span.strategy}) @@")
        else:
            lines.append("@@ delete span not found near cursor @@")
        lines.extend(f"-{line}" for line in suggestion.delete.split("\n"))
    if suggestion.insert:
        lines.extend(f"+{line}" for line in suggestion.insert.split("\n"))
    return "\n".join(lines)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ghosttext",
        add_help=True,
        description="Request an inline completion for a cursor position in a file.",
    )
    parser.add_argument("path", nargs="?", help="File to complete in.")
    parser.add_argument("--row", type=int, default=0, help="0-based cursor row.")
    parser.add_argument("--col", type=int, default=0, help="0-based cursor column.")
    parser.add_argument("--filetype", help="Language name; guessed from the suffix when omitted.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.ghosttext/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--stats", action="store_true", help="Print request counters on stderr after the run.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging on stderr.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            payload = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(payload, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return payload
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    api_key = payload.get("api_key", "")
    if isinstance(api_key, str):
        payload["api_key"] = redact_secret(api_key)
    metadata = {
        "path": str(store.path),
        "key_path": str(store.vault.key_path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": payload, "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("GHOSTTEXT_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
