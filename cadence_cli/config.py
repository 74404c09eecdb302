"""
Cadence configuration.

Process-level settings come from, lowest to highest priority:
- Defaults on the dataclasses below
- ``config.toml`` in the config directory
- ``CADENCE_*`` environment variables

Runtime knobs that operators flip while the daemon is running
(auto-send, intervals, bot token) are not here: they live in the
record store's settings table and are read fresh on every use.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, List, Optional

import yaml

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_DIR = Path.home() / ".config" / "cadence"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "cadence"

STORAGE_BACKENDS = ("sqlite", "memory")


@dataclass
class ValidationError:
    """One problem found by ``validate_config``."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class SchedulerConfig:
    """Dispatch timer and housekeeping."""

    # Timer cadence, independent of the jittered delivery interval
    tick_interval: int = 60  # seconds
    misfire_grace_time: int = 30  # seconds

    log_retention_days: int = 30


@dataclass
class TelegramConfig:
    """Telegram Bot API transport."""

    # Fallback when the bot_token setting is empty; never saved to disk
    bot_token: Optional[str] = None
    api_base: str = "https://api.telegram.org"
    timeout: float = 30.0
    parse_mode: str = "HTML"


@dataclass
class StorageConfig:
    backend: str = "sqlite"


@dataclass
class LoggingConfig:
    """Daemon logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class CadenceConfig:
    """Main configuration container for Cadence."""

    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Empty means the SQLite file in data_dir
    database_url: str = ""

    def __post_init__(self):
        if not self.database_url:
            self.database_url = _default_database_url(self.data_dir)

    @property
    def pid_file(self) -> Path:
        return self.data_dir / "cadence.pid"

    @property
    def daemon_log_file(self) -> Path:
        return self.data_dir / "daemon.log"


_SECTIONS = ("scheduler", "telegram", "storage", "logging")

# Never written to config.toml
_SECRETS = {("telegram", "bot_token")}

# (variable suffix, section, attribute, parser)
_ENV_OVERRIDES: tuple[tuple[str, str, str, Callable[[str], Any]], ...] = (
    ("TELEGRAM_API_BASE", "telegram", "api_base", str),
    ("TELEGRAM_TIMEOUT", "telegram", "timeout", float),
    ("TICK_INTERVAL", "scheduler", "tick_interval", int),
    ("MISFIRE_GRACE_TIME", "scheduler", "misfire_grace_time", int),
    ("LOG_RETENTION_DAYS", "scheduler", "log_retention_days", int),
    ("STORAGE_BACKEND", "storage", "backend", str.lower),
    ("LOG_LEVEL", "logging", "level", str.upper),
)


def _default_database_url(data_dir: Path) -> str:
    return f"sqlite:///{data_dir}/cadence.db"


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "CADENCE_"
) -> CadenceConfig:
    """
    Build the configuration from defaults, the TOML file and the environment.

    Args:
        config_path: Config file (default: ``$CADENCE_CONFIG_DIR/config.toml``,
            then ``~/.config/cadence/config.toml``)
        env_prefix: Prefix for environment variables

    Raises:
        ValueError: If a numeric environment variable does not parse
    """
    config = CadenceConfig()

    if config_path is None:
        config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        config_path = (Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR) / DEFAULT_CONFIG_FILE

    if config_path.exists():
        _load_from_file(config_path, config)

    return _load_from_env(config, env_prefix)


def _load_from_file(path: Path, config: CadenceConfig) -> CadenceConfig:
    """Apply a TOML file; an unreadable file is logged and ignored."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return config

    for section in _SECTIONS:
        target = getattr(config, section)
        for key, value in data.get(section, {}).items():
            if hasattr(target, key):
                setattr(target, key, value)
            else:
                logger.warning(f"Ignoring unknown config key {section}.{key} in {path}")

    if config.logging.file is not None:
        config.logging.file = Path(config.logging.file)

    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"])
        config.database_url = _default_database_url(config.data_dir)
    if "database_url" in data:
        config.database_url = data["database_url"]

    return config


def _load_from_env(config: CadenceConfig, prefix: str) -> CadenceConfig:
    """Apply ``{prefix}*`` environment variables on top of ``config``."""
    # The unprefixed name is what most bot tooling uses; the prefixed one wins
    for name in ("TELEGRAM_BOT_TOKEN", f"{prefix}BOT_TOKEN"):
        if env_val := os.environ.get(name):
            config.telegram.bot_token = env_val

    for suffix, section, attr, parse in _ENV_OVERRIDES:
        name = f"{prefix}{suffix}"
        if env_val := os.environ.get(name):
            try:
                setattr(getattr(config, section), attr, parse(env_val))
            except ValueError:
                raise ValueError(f"{name} must be a {parse.__name__}, got {env_val!r}") from None

    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        config.data_dir = Path(env_val)
        config.database_url = _default_database_url(config.data_dir)
    if env_val := os.environ.get(f"{prefix}DATABASE_URL"):
        config.database_url = env_val

    return config


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    # JSON string escapes are valid TOML basic strings
    return json.dumps(str(value))


def save_config(config: CadenceConfig, path: Optional[Path] = None) -> None:
    """
    Write ``config`` as TOML.

    Secrets (the bot token) are left out; keep them in the environment
    or in the ``bot_token`` setting.

    Args:
        config: Configuration to save
        path: Destination (default: ``config.config_dir / config.toml``)
    """
    if path is None:
        path = config.config_dir / DEFAULT_CONFIG_FILE

    path.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        "# Cadence configuration",
        "# Environment variables (CADENCE_*) override these values",
        "",
        f"config_dir = {_toml_value(config.config_dir)}",
        f"data_dir = {_toml_value(config.data_dir)}",
        f"database_url = {_toml_value(config.database_url)}",
    ]
    for section in _SECTIONS:
        lines += ["", f"[{section}]"]
        values = getattr(config, section)
        for f in fields(values):
            value = getattr(values, f.name)
            if value is None or (section, f.name) in _SECRETS:
                continue
            lines.append(f"{f.name} = {_toml_value(value)}")

    path.write_text("\n".join(lines) + "\n")


def ensure_directories(config: CadenceConfig) -> None:
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)


# Lazily loaded process-wide configuration
_global_config: Optional[CadenceConfig] = None


def get_config() -> CadenceConfig:
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: CadenceConfig) -> None:
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    global _global_config
    _global_config = None


def _validate_url(url: str) -> bool:
    return bool(re.match(r"^https?://[^\s/$.?#].[^\s]*$", url))


def validate_config(config: Optional[CadenceConfig] = None) -> List[ValidationError]:
    """
    Check ``config`` for values the daemon cannot run with.

    Args:
        config: Configuration to validate (default: freshly loaded)

    Returns:
        Problems found, errors and warnings alike (empty if none)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    def error(name: str, message: str) -> None:
        errors.append(ValidationError(field=name, message=message, severity="error"))

    def warning(name: str, message: str) -> None:
        errors.append(ValidationError(field=name, message=message, severity="warning"))

    if config.scheduler.tick_interval <= 0:
        error(
            "scheduler.tick_interval",
            f"Tick interval must be positive, got {config.scheduler.tick_interval}",
        )
    if config.scheduler.log_retention_days <= 0:
        error("scheduler.log_retention_days", "Log retention must be at least one day.")

    if not _validate_url(config.telegram.api_base):
        error("telegram.api_base", f"Invalid URL format: {config.telegram.api_base}")
    if config.telegram.timeout <= 0:
        error("telegram.timeout", f"Timeout must be positive, got {config.telegram.timeout}")
    if not config.telegram.bot_token:
        warning(
            "telegram.bot_token",
            "Bot token not set. Set CADENCE_BOT_TOKEN or the bot_token setting.",
        )

    if config.storage.backend not in STORAGE_BACKENDS:
        error(
            "storage.backend",
            f"Unknown backend '{config.storage.backend}'. Choose from: {', '.join(STORAGE_BACKENDS)}",
        )
    elif config.storage.backend == "memory":
        warning(
            "storage.backend",
            "In-memory storage is lost on restart and not shared with CLI commands.",
        )

    if not config.data_dir.exists():
        warning("data_dir", f"Data directory does not exist: {config.data_dir}")
    else:
        marker = config.data_dir / ".write_test"
        try:
            marker.touch()
            marker.unlink()
        except OSError:
            error("data_dir", f"Data directory is not writable: {config.data_dir}")

    return errors


def _config_to_dict(config: CadenceConfig, mask_secrets: bool = True) -> dict[str, Any]:
    """
    Plain-data view of ``config`` for display and export.

    Args:
        config: Configuration to convert
        mask_secrets: Show only the first four characters of secrets
    """
    def render(section: str, name: str, value: Any) -> Any:
        if isinstance(value, Path):
            return str(value)
        if mask_secrets and value and (section, name) in _SECRETS:
            return value[:4] + "****" if len(value) > 4 else "****"
        return value

    data: dict[str, Any] = {
        "config_dir": str(config.config_dir),
        "data_dir": str(config.data_dir),
        "database_url": config.database_url,
    }
    for section in _SECTIONS:
        values = getattr(config, section)
        data[section] = {
            f.name: render(section, f.name, getattr(values, f.name)) for f in fields(values)
        }
    return data


def export_config_yaml(config: CadenceConfig, mask_secrets: bool = True) -> str:
    config_dict = _config_to_dict(config, mask_secrets)
    return yaml.dump(config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True)


def export_config_json(config: CadenceConfig, mask_secrets: bool = True) -> str:
    return json.dumps(_config_to_dict(config, mask_secrets), indent=2)
