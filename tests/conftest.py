"""Shared pytest fixtures."""

from __future__ import annotations

import logging
from typing import Iterator

import pytest

from ghosttext.services import telemetry
from ghosttext.services.telemetry import InMemoryTelemetrySink, attach_sink


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in ("GHOSTTEXT_API_KEY", "GHOSTTEXT_BASE_URL", "GHOSTTEXT_MODEL", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GHOSTTEXT_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def restore_root_logging() -> Iterator[None]:
    """Undo ``setup_logging`` side effects on the root logger."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def telemetry_sink() -> Iterator[InMemoryTelemetrySink]:
    sink = InMemoryTelemetrySink(capacity=100)
    detach = attach_sink(sink)
    try:
        yield sink
    finally:
        detach()
        telemetry.clear_event_listeners()
