"""Settings dataclass and its JSON store with a Fernet-encrypted API key."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
    "default_settings_path",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".ghosttext"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_API_KEY_FIELD = "api_key_ciphertext"
_FALLBACK_API_KEY_ENV = "ANTHROPIC_API_KEY"
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


def _as_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


# environment variable -> (field, converter)
_ENV_OVERRIDES: Mapping[str, tuple[str, Callable[[str], Any]]] = {
    "GHOSTTEXT_API_KEY": ("api_key", str),
    "GHOSTTEXT_BASE_URL": ("base_url", str),
    "GHOSTTEXT_MODEL": ("model", str),
    "GHOSTTEXT_ANTHROPIC_VERSION": ("anthropic_version", str),
    "GHOSTTEXT_DEBUG_LOGGING": ("debug_logging", _as_bool),
    "GHOSTTEXT_REQUEST_TIMEOUT": ("request_timeout", float),
    "GHOSTTEXT_CACHE_TTL": ("cache_ttl_seconds", float),
    "GHOSTTEXT_MAX_TOKENS": ("max_tokens", int),
    "GHOSTTEXT_CACHE_SIZE": ("cache_max_size", int),
    "GHOSTTEXT_EDIT_SEARCH_RADIUS": ("edit_search_radius", int),
}


def default_settings_path() -> Path:
    return _DEFAULT_SETTINGS_PATH


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://api.anthropic.com/v1"
    api_key: str = ""
    model: str = "claude-haiku-4-5"
    max_tokens: int = 512
    anthropic_version: str = "2023-06-01"
    request_timeout: float = 30.0
    max_response_bytes: int = 1_048_576
    cache_max_size: int = 50
    cache_ttl_seconds: float = 300.0
    edit_search_radius: int = 20
    lines_before: int = 100
    lines_after: int = 50
    max_history_edits: int = 50
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    debug_logging: bool = False


class SecretVault:
    """Fernet encryption keyed by a file created on first use."""

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``; raises ``ValueError`` when it is not ours."""

        if not token:
            return ""
        try:
            return self._get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        if path.exists():
            return path.read_bytes().strip()
        path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        LOGGER.debug("Created settings key at %s", path)
        return key


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON next to its key file.

    Precedence on load is file, then CLI overrides, then environment.
    """

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        settings = self._from_payload(self._read_payload())
        if overrides:
            settings = _apply_overrides(settings, overrides, source="CLI")
        return _apply_overrides(settings, _env_overrides(settings), source="environment")

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically; the API key is stored encrypted."""

        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _from_payload(self, payload: Mapping[str, Any]) -> Settings:
        if not payload:
            return Settings()
        if payload.get("version") != _SETTINGS_VERSION:
            LOGGER.info("Settings file %s has version %r", self._path, payload.get("version"))
        known = {item.name for item in fields(Settings)} - {"api_key"}
        data = {key: value for key, value in payload.items() if key in known}
        for mapping_field in ("default_headers", "metadata"):
            if mapping_field in data and not isinstance(data[mapping_field], Mapping):
                LOGGER.debug("Ignoring non-mapping %s payload", mapping_field)
                data.pop(mapping_field)
        try:
            settings = Settings(**data)
        except TypeError as exc:
            LOGGER.warning("Settings payload contained unexpected data: %s", exc)
            settings = Settings()
        try:
            api_key = self._vault.decrypt(payload.get(_API_KEY_FIELD))
        except ValueError as exc:
            LOGGER.warning("Unable to decrypt API key: %s", exc)
            api_key = ""
        LOGGER.debug("Settings loaded from %s", self._path)
        return replace(settings, api_key=api_key) if api_key else settings


def _env_overrides(settings: Settings) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, (field_name, convert) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = convert(value)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid %s", env_name, value, convert.__name__)
    if "api_key" not in overrides and not settings.api_key:
        fallback = os.environ.get(_FALLBACK_API_KEY_ENV)
        if fallback:
            overrides["api_key"] = fallback
    return overrides


def _apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    allowed = {item.name for item in fields(Settings)}
    filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
    for mapping_field in ("metadata", "default_headers"):
        override = filtered.get(mapping_field)
        if isinstance(override, Mapping):
            filtered[mapping_field] = {**getattr(settings, mapping_field), **override}
    if not filtered:
        return settings
    LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
    return replace(settings, **filtered)


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
