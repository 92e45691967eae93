"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from wordwise.services.persistence import InMemorySuggestionStore  # noqa: E402
from wordwise.ui.events import EventBus  # noqa: E402


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def memory_store() -> InMemorySuggestionStore:
    return InMemorySuggestionStore()


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep settings, logs, and stores out of the real home directory."""

    monkeypatch.setenv("WORDWISE_LOG_DIR", str(tmp_path / "logs"))
    for name in list(os.environ):
        if name.startswith("WORDWISE_") and name != "WORDWISE_LOG_DIR":
            monkeypatch.delenv(name, raising=False)
