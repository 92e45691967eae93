"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "ReconcilerSettings",
    "Settings",
    "SettingsStore",
    "SecretVault",
    "PERSONA_CHOICES",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".wordwise"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "WORDWISE_API_KEY": "api_key",
    "WORDWISE_BASE_URL": "base_url",
    "WORDWISE_MODEL": "model",
    "WORDWISE_PERSONA": "persona",
    "WORDWISE_ORGANIZATION": "organization",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "WORDWISE_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "WORDWISE_REQUEST_TIMEOUT": "request_timeout",
    "WORDWISE_TEMPERATURE": "temperature",
}
_RECONCILER_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "WORDWISE_ANALYSIS_DEBOUNCE": "analysis_debounce_seconds",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"
PERSONA_CHOICES: tuple[str, ...] = ("general", "sales")


@dataclass(slots=True)
class ReconcilerSettings:
    """Timing and matching knobs for the reconciliation engine."""

    analysis_debounce_seconds: float = 1.5
    min_analysis_chars: int = 10
    accept_suppression_seconds: float = 0.5
    decoration_idle_seconds: float = 0.1
    decoration_typing_seconds: float = 1.0
    typing_timeout_seconds: float = 2.0
    short_text_max_len: int = 2
    case_insensitive_min_len: int = 4


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.3
    organization: str | None = None
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    persona: str = "general"
    debug_logging: bool = False
    default_headers: dict[str, str] = field(default_factory=dict)
    reconciler: ReconcilerSettings = field(default_factory=ReconcilerSettings)


class SecretVault:
    """Encrypts secrets with a Fernet key stored beside the settings file."""

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def strategy(self) -> str:
        return self.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.name}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            prefix, payload = self.name, token
        if prefix != self.name:
            LOGGER.warning("Unknown secret token prefix %s; returning ciphertext.", prefix)
            return token
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, then apply CLI and environment overrides."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            plaintext_key, migrated = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            needs_migration = migrated
            data = _filter_fields(payload)
            reconciler_payload = data.get("reconciler")
            if isinstance(reconciler_payload, Mapping):
                try:
                    data["reconciler"] = ReconcilerSettings(**reconciler_payload)
                except TypeError as exc:
                    LOGGER.warning("Ignoring invalid reconciler settings: %s", exc)
                    data["reconciler"] = ReconcilerSettings()
            elif "reconciler" in data:
                data["reconciler"] = ReconcilerSettings()
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        settings = self._apply_env_overrides(settings)
        return _normalize_persona(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        body = json.dumps(self._serialize(settings), indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return dict(data) if isinstance(data, Mapping) else {}

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        reconciler_allowed = {item.name for item in fields(ReconcilerSettings)}
        filtered: Dict[str, Any] = {}
        reconciler_updates: Dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key.startswith("reconciler."):
                name = key.split(".", 1)[1]
                if name in reconciler_allowed:
                    reconciler_updates[name] = value
                continue
            if key in allowed:
                filtered[key] = value
        if reconciler_updates:
            filtered["reconciler"] = replace(settings.reconciler, **reconciler_updates)
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            number = _float_from_env(env_name)
            if number is not None:
                overrides[field_name] = number
        for env_name, field_name in _RECONCILER_FLOAT_ENV_OVERRIDES.items():
            number = _float_from_env(env_name)
            if number is not None:
                overrides[f"reconciler.{field_name}"] = number
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _decrypt_api_key(
        self, ciphertext: str | None, legacy_plaintext: str | None
    ) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected legacy plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


def _float_from_env(env_name: str) -> float | None:
    value = os.environ.get(env_name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        return None


def _normalize_persona(settings: Settings) -> Settings:
    persona = (settings.persona or "").strip().lower()
    if persona not in PERSONA_CHOICES:
        LOGGER.warning("Unknown persona %r; using 'general'", settings.persona)
        persona = "general"
    if persona != settings.persona:
        settings = replace(settings, persona=persona)
    return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str | None) -> str:
    """Mask all but the first and last two characters of ``value``."""

    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
