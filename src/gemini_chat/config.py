"""Configuration store with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Optional, Protocol

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from gemini_chat.errors import ConfigError, StorageError
from gemini_chat.log import get_logger
from gemini_chat.storage.files import atomic_write_text

logger = get_logger(__name__)

API_KEY_PLACEHOLDER = "api-key-value"

DEFAULTS: dict[str, dict[str, str]] = {
    "app": {
        "LOG_LEVEL": "INFO",
        "WORKSPACE_DIR": "~/.gemini-chat/workspace",
    },
    "gemini": {
        "MODEL": "gemini-2.0-flash",
        "API_KEY": API_KEY_PLACEHOLDER,
        "MAX_TOKENS": "4096",
        "TEMPERATURE": "0.7",
        "TOP_P": "0.9",
        "TOP_K": "40",
        "CONVERSATION_HISTORY_MAX": "50",
        "HISTORY_RETENTION_DAYS": "30",
        "ENDPOINT": "https://generativelanguage.googleapis.com/v1beta",
        "TIMEOUT": "120",
        "CONNECT_TIMEOUT": "10",
    },
}


class ConfigReader(Protocol):
    """Read-only typed accessor over an external key/value store."""

    def get(self, section: str, key: str) -> tuple[Optional[str], bool]:
        ...


class GeminiSettings(BaseModel):
    model: str = "gemini-2.0-flash"
    api_key: str = ""
    max_tokens: int = Field(default=4096, gt=0)
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    conversation_history_max: int = Field(default=50, gt=0)
    history_retention_days: int = Field(default=30, ge=0)
    endpoint: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout: float = 120
    connect_timeout: float = 10

    def require_api_key(self) -> str:
        """Return the API key or raise ConfigError if it is missing or a placeholder."""
        key = self.api_key.strip()
        if not key or key == API_KEY_PLACEHOLDER or _ENV_VAR_PATTERN.fullmatch(key):
            raise ConfigError(
                "API_KEY is not configured in the [gemini] section "
                "(run 'gemini-chat config init' and set a real key)"
            )
        return key

    def model_url(self, method: str) -> str:
        return f"{self.endpoint.rstrip('/')}/models/{self.model}:{method}"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    workspace_dir: str = "~/.gemini-chat/workspace"
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)

    @property
    def workspace_path(self) -> Path:
        return Path(self.workspace_dir).expanduser()


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        value = os.environ.get(match.group(1))
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


class YamlConfigStore:
    """Sectioned key/value store persisted as a YAML mapping of mappings.

    Raw values are kept as written (``${VAR}`` references included) so that
    ``save()`` never bakes secrets from the environment into the file;
    interpolation happens on ``get()``.
    """

    def __init__(self, path: str | Path, env_path: str | Path | None = ".env"):
        self.path = Path(path).expanduser()
        if env_path is not None and Path(env_path).exists():
            load_dotenv(env_path)
        self._data: dict[str, dict[str, Any]] = self._read()

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            raw = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ConfigError(f"{self.path} must contain a mapping of sections")
        return {str(k): dict(v or {}) for k, v in raw.items()}

    def get(self, section: str, key: str) -> tuple[Optional[str], bool]:
        values = self._data.get(section, {})
        if key not in values or values[key] is None:
            return None, False
        return _interpolate_env_vars(str(values[key])), True

    def set(self, section: str, key: str, value: Any) -> None:
        self._data.setdefault(section, {})[key] = str(value)

    def sections(self) -> dict[str, dict[str, Any]]:
        return {name: dict(values) for name, values in self._data.items()}

    def populate_defaults(self) -> list[str]:
        """Write every missing default key without touching existing values."""
        added: list[str] = []
        for section, defaults in DEFAULTS.items():
            values = self._data.setdefault(section, {})
            for key, value in defaults.items():
                if key not in values:
                    values[key] = value
                    added.append(f"{section}.{key}")
        if added:
            logger.info("config_defaults_added", keys=added)
        return added

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_text(self.path, yaml.safe_dump(self._data, sort_keys=False))
        logger.info("config_saved", path=str(self.path))


def _section_values(reader: ConfigReader, section: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for key in DEFAULTS[section]:
        value, found = reader.get(section, key)
        if found and value is not None and value != "":
            values[key.lower()] = value
    return values


def settings_from_reader(reader: ConfigReader) -> AppConfig:
    """Build the typed configuration; absent keys fall back to documented defaults."""
    app_values = _section_values(reader, "app")
    gemini_values = _section_values(reader, "gemini")
    try:
        gemini = GeminiSettings(**gemini_values)
        return AppConfig(
            log_level=app_values.get("log_level", "INFO"),
            workspace_dir=app_values.get("workspace_dir", DEFAULTS["app"]["WORKSPACE_DIR"]),
            gemini=gemini,
        )
    except ValidationError as e:
        bad = ", ".join(
            str(err["loc"][0]).upper() + f" ({err['msg']})" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration value: {bad}") from e


def load_config(
    config_path: str | Path = "config.yaml", env_path: str | Path | None = ".env"
) -> AppConfig:
    """Load and validate configuration from a YAML file with env-var interpolation."""
    return settings_from_reader(YamlConfigStore(config_path, env_path))
