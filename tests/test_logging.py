"""Tests for the logging setup helpers."""

from __future__ import annotations

import logging

import pytest

from wordwise.utils import logging as logging_utils


@pytest.fixture
def restore_root_logging(monkeypatch: pytest.MonkeyPatch):
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    monkeypatch.setattr(logging_utils, "_CONFIGURED", False)
    monkeypatch.setattr(logging_utils, "_LOG_PATH", None)
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.parametrize(
    "level,debug,expected",
    [
        (None, False, logging.INFO),
        ("warning", False, logging.WARNING),
        (logging.ERROR, False, logging.ERROR),
        ("nonsense", False, logging.INFO),
        ("error", True, logging.DEBUG),
    ],
)
def test_resolve_level(level, debug, expected) -> None:
    assert logging_utils.resolve_level(level, debug=debug) == expected


def test_setup_logging_writes_rotating_file(tmp_path, restore_root_logging) -> None:
    path = logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False)

    logging.getLogger("wordwise.test").info("hello log")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert path == tmp_path / "wordwise.log"
    assert logging_utils.get_log_path() == path
    assert "hello log" in path.read_text(encoding="utf-8")
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_is_idempotent_unless_forced(tmp_path, restore_root_logging) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False)
    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False)
    forced = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False, force=True)

    assert first == second
    assert forced == tmp_path / "b" / "wordwise.log"


def test_log_dir_defaults_to_environment(tmp_path, monkeypatch, restore_root_logging) -> None:
    monkeypatch.setenv("WORDWISE_LOG_DIR", str(tmp_path / "env-logs"))

    path = logging_utils.setup_logging(console=False)

    assert path.parent == tmp_path / "env-logs"
