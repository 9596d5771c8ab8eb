"""Tests for the logging helpers."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

from ghosttext.utils import logging as logging_utils


def test_setup_logging_writes_rotating_file(tmp_path: Path, restore_root_logging) -> None:
    log_path = logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False, force=True)

    logging.getLogger("ghosttext.test").info("hello from test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_path == tmp_path / "ghosttext.log"
    assert logging_utils.get_log_path() == log_path
    assert "hello from test" in log_path.read_text(encoding="utf-8")


def test_setup_logging_honours_env_directory(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, restore_root_logging
) -> None:
    monkeypatch.setenv("GHOSTTEXT_LOG_DIR", str(tmp_path / "env-logs"))

    log_path = logging_utils.setup_logging(console=False, force=True)

    assert log_path.parent == tmp_path / "env-logs"


def test_setup_logging_is_idempotent_without_force(tmp_path: Path, restore_root_logging) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False, force=True)
    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False)

    assert first == second


def test_noisy_loggers_are_quieted(tmp_path: Path, restore_root_logging) -> None:
    logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False, force=True)

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING



def test_console_handler_writes_to_stderr(tmp_path: Path, restore_root_logging) -> None:
    logging_utils.setup_logging(log_dir=tmp_path, console=True, force=True)

    streams = [
        handler.stream
        for handler in logging.getLogger().handlers
        if type(handler) is logging.StreamHandler
    ]

    assert streams == [sys.stderr]
