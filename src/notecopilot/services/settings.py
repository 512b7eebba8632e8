"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.ai_types import ModelConfig
from ..utils.file_io import write_text

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "FernetSecretProvider",
    "default_data_dir",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_DATA_DIR_ENV = "NOTECOPILOT_HOME"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "NOTECOPILOT_API_KEY": "api_key",
    "NOTECOPILOT_BASE_URL": "base_url",
    "NOTECOPILOT_MODEL": "model",
    "NOTECOPILOT_EMBEDDING_MODEL": "embedding_model",
    "NOTECOPILOT_ORGANIZATION": "organization",
    "NOTECOPILOT_SAVE_FOLDER": "default_save_folder",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "NOTECOPILOT_DEBUG": "debug",
    "NOTECOPILOT_STREAM": "stream",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "NOTECOPILOT_REQUEST_TIMEOUT": "request_timeout",
    "NOTECOPILOT_TEMPERATURE": "temperature",
    "NOTECOPILOT_TTL_DAYS": "ttl_days",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "NOTECOPILOT_MAX_TOKENS": "max_tokens",
    "NOTECOPILOT_CONTEXT_TURNS": "context_turns",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"


def default_data_dir() -> Path:
    """Return the directory holding settings, logs and the record store."""

    override = os.environ.get(_DATA_DIR_ENV)
    return Path(override).expanduser() if override else Path.home() / ".notecopilot"


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    organization: str | None = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1_000
    context_turns: int = 3
    system_prompt: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_requests_per_minute: int = 0
    ttl_days: float = 30.0
    stream: bool = True
    default_save_folder: str = "copilot-conversations"
    debug: bool = False
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    chunk_chars: int = 1_000
    chunk_overlap: int = 100
    retrieval_top_k: int = 4
    default_headers: dict[str, str] = field(default_factory=dict)

    def model_config(self) -> ModelConfig:
        """Project the generation-related fields onto an immutable config."""

        return ModelConfig(
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            system_prompt=self.system_prompt,
            context_turns=self.context_turns,
        ).clamp()

    @property
    def ttl_ms(self) -> int:
        return int(self.ttl_days * 24 * 60 * 60 * 1000)


class SecretProvider(ABC):
    """Interface for encrypting and decrypting sensitive strings."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        """Return an encoded representation of ``secret`` suitable for storage."""

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Return the plaintext representation of ``token``."""


class FernetSecretProvider(SecretProvider):
    """Secret provider that uses a symmetric Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (default_data_dir() / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        return self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        return self._get_fernet().decrypt(token.encode("ascii")).decode("utf-8")

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


class SecretVault:
    """Encrypts and decrypts the API key for settings persistence."""

    def __init__(self, *, key_path: Path | None = None, provider: SecretProvider | None = None) -> None:
        self._provider = provider or FernetSecretProvider(key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self._provider.name}:{self._provider.encrypt(secret)}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            prefix, payload = self._provider.name, token
        if prefix != self._provider.name:
            raise ValueError(f"Unknown secret backend '{prefix}'")
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or (default_data_dir() / "settings.json")
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            api_key = self._decrypt_api_key(payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None))
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if api_key:
                settings = replace(settings, api_key=api_key)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        settings = self._apply_env_overrides(settings)
        return _sanitize(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        api_key = payload.pop("api_key", "") or ""
        if api_key:
            payload[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        payload["version"] = _SETTINGS_VERSION
        payload["secret_backend"] = self._vault.strategy
        write_text(self._path, json.dumps(payload, indent=2, sort_keys=True))
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(self, settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
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
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> str:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return ""
        if legacy_plaintext:
            LOGGER.info("Found a plaintext API key; it will be encrypted on next save.")
            return str(legacy_plaintext)
        return ""


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def _coerce(value: Any, kind: type, default: Any) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid settings value %r; using %r", value, default)
        return default


def _sanitize(settings: Settings) -> Settings:
    """Pull numeric fields back into their operating ranges."""

    defaults = Settings()
    temperature = min(2.0, max(0.0, _coerce(settings.temperature, float, defaults.temperature)))
    max_tokens = max(1, _coerce(settings.max_tokens, int, defaults.max_tokens))
    context_turns = max(0, _coerce(settings.context_turns, int, defaults.context_turns))
    ttl_days = max(0.0, _coerce(settings.ttl_days, float, defaults.ttl_days))
    timeout = max(1.0, _coerce(settings.request_timeout, float, defaults.request_timeout))
    retries = max(0, _coerce(settings.max_retries, int, defaults.max_retries))
    chunk_chars = max(100, _coerce(settings.chunk_chars, int, defaults.chunk_chars))
    chunk_overlap = min(chunk_chars // 2, max(0, _coerce(settings.chunk_overlap, int, defaults.chunk_overlap)))
    top_k = max(1, _coerce(settings.retrieval_top_k, int, defaults.retrieval_top_k))
    return replace(
        settings,
        temperature=temperature,
        max_tokens=max_tokens,
        context_turns=context_turns,
        ttl_days=ttl_days,
        request_timeout=timeout,
        max_retries=retries,
        chunk_chars=chunk_chars,
        chunk_overlap=chunk_overlap,
        retrieval_top_k=top_k,
    )


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
