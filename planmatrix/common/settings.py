"""
Runtime Settings

Loaded from a local YAML file, with environment variable overrides.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from .exceptions import ConfigError
from .logging_setup import get_service_logger

logger = get_service_logger("settings")

DEFAULT_BASE_URL = "https://o-tomin.github.io/verizon-role-based-access-config"
CONFIG_FILENAME = "plans_matrix.yml"
CACHE_FILENAME = "plans_config.json"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Environment variable -> settings field
ENV_OVERRIDES: dict[str, str] = {
    "PLANMATRIX_BASE_URL": "base_url",
    "PLANMATRIX_DATA_DIR": "data_dir",
    "PLANMATRIX_TIMEOUT_S": "request_timeout_s",
    "PLANMATRIX_SYNC_INTERVAL_S": "sync_interval_s",
    "PLANMATRIX_HEALTH_HOST": "health_host",
    "PLANMATRIX_HEALTH_PORT": "health_port",
    "PLANMATRIX_LOG_LEVEL": "log_level",
}


def _default_data_dir() -> Path:
    if os.name == "nt":
        return Path(os.environ.get("LOCALAPPDATA", Path.home())) / "planmatrix"
    return Path.home() / ".local" / "share" / "planmatrix"


@dataclass
class Settings:
    """Service runtime configuration"""
    base_url: str = DEFAULT_BASE_URL
    data_dir: Path = field(default_factory=_default_data_dir)
    request_timeout_s: float = 10.0
    sync_interval_s: int = 3600
    health_host: str = "127.0.0.1"
    health_port: int = 8082
    log_level: str = "INFO"

    @property
    def config_url(self) -> str:
        """Full URL of the remote plans matrix"""
        return f"{self.base_url.rstrip('/')}/{CONFIG_FILENAME}"

    @property
    def cache_path(self) -> Path:
        """Path of the persisted config document"""
        return Path(self.data_dir) / CACHE_FILENAME


def find_settings_path() -> Path | None:
    """Find the first existing settings file"""
    possible_paths = [
        Path("/etc/planmatrix/config.yaml"),
        Path.home() / ".config" / "planmatrix" / "config.yaml",
        Path.cwd() / "config.yaml",
    ]

    for path in possible_paths:
        if path.exists():
            return path

    return None


def _coerce(name: str, value):
    """Convert a raw YAML/env value to the type of the settings field"""
    try:
        if name in ("request_timeout_s",):
            value = float(value)
            if value <= 0:
                raise ValueError("must be positive")
            return value
        if name in ("sync_interval_s", "health_port"):
            value = int(value)
            if value <= 0:
                raise ValueError("must be positive")
            return value
        if name == "log_level":
            value = str(value).upper()
            if value not in LOG_LEVELS:
                raise ValueError(f"expected one of {', '.join(LOG_LEVELS)}")
            return value
        if name == "data_dir":
            return Path(value).expanduser()
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for '{name}': {value!r} ({e})")


def load_settings(path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML, then apply environment overrides.

    Args:
        path: Explicit settings file. If omitted, the standard locations
            are searched and a missing file means defaults.

    Returns:
        Settings instance

    Raises:
        ConfigError: file is unreadable/invalid or a value has the wrong type
    """
    values: dict = {}
    settings_path = Path(path) if path else find_settings_path()

    if settings_path is not None:
        try:
            with open(settings_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigError(f"Settings file not found: {settings_path}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Error parsing settings {settings_path}: {e}")

        if not isinstance(raw, dict):
            raise ConfigError(f"Settings file must contain a mapping: {settings_path}")

        known = {f.name for f in fields(Settings)}
        for key, value in raw.items():
            if key in known:
                values[key] = _coerce(key, value)
            else:
                logger.warning(f"Ignoring unknown setting: {key}")

        logger.debug(f"Loaded settings from {settings_path}")

    for env_name, field_name in ENV_OVERRIDES.items():
        env_value = os.environ.get(env_name)
        if env_value:
            values[field_name] = _coerce(field_name, env_value)

    return Settings(**values)
