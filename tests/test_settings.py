"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

from wordwise.services.settings import (
    ReconcilerSettings,
    SecretVault,
    Settings,
    SettingsStore,
    redact_secret,
)


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    assert _store(tmp_path).load() == Settings()


def test_save_and_load_roundtrip_encrypts_api_key(tmp_path: Path) -> None:
    store = _store(tmp_path)
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="gpt-4.1-mini",
        persona="sales",
        default_headers={"X-Test": "1"},
        reconciler=ReconcilerSettings(analysis_debounce_seconds=2.5, min_analysis_chars=20),
    )

    path = store.save(original)
    raw = json.loads(path.read_text(encoding="utf-8"))

    assert "api_key" not in raw
    assert raw["api_key_ciphertext"].startswith("fernet:")
    assert "super-secret" not in path.read_text(encoding="utf-8")
    assert _store(tmp_path).load() == original


def test_load_migrates_legacy_plaintext_api_key(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(json.dumps({"api_key": "legacy-key", "model": "gpt-4o"}), encoding="utf-8")

    settings = _store(tmp_path).load()

    assert settings.api_key == "legacy-key"
    migrated = json.loads(target.read_text(encoding="utf-8"))
    assert "api_key" not in migrated
    assert migrated["version"] == 1
    assert migrated["api_key_ciphertext"].startswith("fernet:")


def test_invalid_reconciler_block_falls_back_to_defaults(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(
        json.dumps({"version": 1, "reconciler": {"analysis_debounce_seconds": 3, "bogus": 1}}),
        encoding="utf-8",
    )

    assert _store(tmp_path).load().reconciler == ReconcilerSettings()


def test_corrupt_file_yields_defaults(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text("{broken", encoding="utf-8")

    assert _store(tmp_path).load() == Settings()


def test_cli_overrides_support_reconciler_fields(tmp_path: Path) -> None:
    settings = _store(tmp_path).load(
        overrides={"model": "gpt-4o", "reconciler.min_analysis_chars": 3, "reconciler.nope": 1, "x": 2}
    )

    assert settings.model == "gpt-4o"
    assert settings.reconciler.min_analysis_chars == 3


def test_environment_overrides_win(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORDWISE_MODEL", "env-model")
    monkeypatch.setenv("WORDWISE_DEBUG_LOGGING", "yes")
    monkeypatch.setenv("WORDWISE_REQUEST_TIMEOUT", "12.5")
    monkeypatch.setenv("WORDWISE_ANALYSIS_DEBOUNCE", "0.75")
    monkeypatch.setenv("WORDWISE_TEMPERATURE", "not-a-number")

    settings = _store(tmp_path).load(overrides={"model": "cli-model"})

    assert settings.model == "env-model"
    assert settings.debug_logging is True
    assert settings.request_timeout == 12.5
    assert settings.temperature == Settings().temperature
    assert settings.reconciler.analysis_debounce_seconds == 0.75


def test_unknown_persona_falls_back_to_general(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(replace(Settings(), persona="pirate"))

    assert store.load().persona == "general"
    assert store.load(overrides={"persona": " Sales "}).persona == "sales"


def test_vault_rejects_tampered_tokens(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "key")
    token = vault.encrypt("secret")

    assert vault.decrypt(token) == "secret"
    assert vault.encrypt("") == ""
    with pytest.raises(ValueError):
        vault.decrypt(token[:-4] + "AAAA")


@pytest.mark.parametrize(
    "value,expected",
    [(None, ""), ("", ""), ("abc", "***"), ("sk-123456", "sk*****56")],
)
def test_redact_secret(value, expected) -> None:
    assert redact_secret(value) == expected


def test_load_drops_fields_this_editor_does_not_use(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(
        json.dumps(
            {"model": "gpt-4o", "theme": "dark", "recent_files": ["a.md"], "metadata": {"x": 1}}
        ),
        encoding="utf-8",
    )
    store = _store(tmp_path)

    settings = store.load()

    assert settings.model == "gpt-4o"
    rewritten = json.loads(target.read_text(encoding="utf-8"))
    assert rewritten["model"] == "gpt-4o"
    assert {"theme", "recent_files", "metadata"}.isdisjoint(rewritten)
