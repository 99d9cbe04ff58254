"""
Configuration file parsing and management.

Supports YAML configuration files (JSON when the file ends in .json).
Merges configurations from multiple sources (custom path -> project -> user ->
defaults), then applies SPARK_* environment overrides.

Example .spark.yml::

    version: 1
    preferences:
      probe_timeout_seconds: 5
      update_timeout_seconds: 600
      max_workers: 16
    ui:
      splash_seconds: 2
    protected_categories: [RUNTIME]
    catalog: ~/.config/spark/tools.yml
    logging:
      file: ~/.cache/spark/spark_debug.log
      level: DEBUG
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from .catalog import DEFAULT_PROTECTED_CATEGORIES
from .common import SparkError
from .logging_config import DEFAULT_LOG_FILE

logger = logging.getLogger(__name__)


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".spark.yml",                                        # Project root (highest priority)
    ".spark.yaml",
    os.path.expanduser("~/.config/spark/config.yml"),    # User global
    os.path.expanduser("~/.config/spark/config.yaml"),
]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(SparkError, ValueError):
    """Configuration is unreadable or contains invalid values."""


def _check_range(name: str, value: float, low: float, high: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Invalid {name}: {value!r}. Must be a number")
    if value < low or value > high:
        raise ConfigError(f"Invalid {name}: {value}. Must be between {low} and {high}")


@dataclass(frozen=True)
class Preferences:
    """
    Timeouts and concurrency.

    Attributes:
        probe_timeout_seconds: Bound on each version probe command
        update_timeout_seconds: Bound on one tool's whole update
        warmup_timeout_seconds: Bound on each outdated listing
        max_workers: Thread pool size for probes and updates
    """
    probe_timeout_seconds: float = 5
    update_timeout_seconds: float = 600
    warmup_timeout_seconds: float = 60
    max_workers: int = 16

    def __post_init__(self):
        _check_range("probe_timeout_seconds", self.probe_timeout_seconds, 1, 60)
        _check_range("update_timeout_seconds", self.update_timeout_seconds, 10, 3600)
        _check_range("warmup_timeout_seconds", self.warmup_timeout_seconds, 5, 600)
        if isinstance(self.max_workers, bool) or not isinstance(self.max_workers, int):
            raise ConfigError(f"Invalid max_workers: {self.max_workers!r}. Must be an integer")
        _check_range("max_workers", self.max_workers, 1, 64)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        return Preferences(
            probe_timeout_seconds=data.get("probe_timeout_seconds", 5),
            update_timeout_seconds=data.get("update_timeout_seconds", 600),
            warmup_timeout_seconds=data.get("warmup_timeout_seconds", 60),
            max_workers=data.get("max_workers", 16),
        )

    def merge_with(self, other: Preferences) -> Preferences:
        """Merge, preferring this object's non-default values."""
        return _merge_dataclass(self, other, Preferences())


@dataclass(frozen=True)
class UIPreferences:
    """
    Dashboard timing.

    Attributes:
        splash_seconds: How long the splash screen stays up (0 skips it)
        tick_seconds: Animation frame interval
    """
    splash_seconds: float = 2.0
    tick_seconds: float = 0.15

    def __post_init__(self):
        _check_range("splash_seconds", self.splash_seconds, 0, 10)
        _check_range("tick_seconds", self.tick_seconds, 0.05, 2)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> UIPreferences:
        """Create UIPreferences from dictionary."""
        return UIPreferences(
            splash_seconds=data.get("splash_seconds", 2.0),
            tick_seconds=data.get("tick_seconds", 0.15),
        )

    def merge_with(self, other: UIPreferences) -> UIPreferences:
        """Merge, preferring this object's non-default values."""
        return _merge_dataclass(self, other, UIPreferences())


def _merge_dataclass(primary, secondary, defaults):
    values = {
        name: getattr(primary, name)
        if getattr(primary, name) != getattr(defaults, name)
        else getattr(secondary, name)
        for name in primary.__dataclass_fields__
    }
    return type(primary)(**values)


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for spark.

    Attributes:
        version: Config schema version
        preferences: Timeouts and concurrency
        ui: Dashboard timing
        protected_categories: Categories whose updates need confirmation
        catalog_path: Tool catalog file (None uses the built-in inventory)
        log_file: Debug log file for the interactive session
        log_level: Log level name
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    preferences: Preferences = field(default_factory=Preferences)
    ui: UIPreferences = field(default_factory=UIPreferences)
    protected_categories: tuple[str, ...] = DEFAULT_PROTECTED_CATEGORIES
    catalog_path: str | None = None
    log_file: str = DEFAULT_LOG_FILE
    log_level: str = "INFO"
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if self.version != 1:
            raise ConfigError(f"Unsupported config version: {self.version}. Expected version 1")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(
                f"Invalid log level: {self.log_level}. "
                f"Must be one of: {', '.join(LOG_LEVELS)}"
            )

        if not all(isinstance(c, str) and c for c in self.protected_categories):
            raise ConfigError(f"Invalid protected_categories: {self.protected_categories!r}")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """
        Create Config from dictionary.

        Raises:
            ConfigError: If a value has the wrong type or is out of range
        """
        preferences = Preferences.from_dict(data.get("preferences") or {})
        ui = UIPreferences.from_dict(data.get("ui") or {})

        protected = data.get("protected_categories", DEFAULT_PROTECTED_CATEGORIES)
        if isinstance(protected, str) or not isinstance(protected, (list, tuple)):
            raise ConfigError(f"protected_categories must be a list, got {protected!r}")

        logging_data = data.get("logging") or {}

        return Config(
            version=data.get("version", 1),
            preferences=preferences,
            ui=ui,
            protected_categories=tuple(str(c).upper() for c in protected),
            catalog_path=data.get("catalog"),
            log_file=logging_data.get("file", DEFAULT_LOG_FILE),
            log_level=str(logging_data.get("level", "INFO")).upper(),
            source=source,
        )

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        defaults = Config()
        return Config(
            version=self.version,
            preferences=self.preferences.merge_with(other.preferences),
            ui=self.ui.merge_with(other.ui),
            protected_categories=(
                self.protected_categories
                if self.protected_categories != defaults.protected_categories
                else other.protected_categories
            ),
            catalog_path=self.catalog_path or other.catalog_path,
            log_file=self.log_file if self.log_file != defaults.log_file else other.log_file,
            log_level=self.log_level if self.log_level != defaults.log_level else other.log_level,
            source=self.source or other.source,
        )


def _read_file(file_path: str) -> dict[str, Any]:
    """
    Parse a YAML or JSON configuration file.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            if file_path.endswith(".json"):
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {file_path}: {e}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(
            f"Invalid config file {file_path}: {e}",
            remediation="Check the file's YAML/JSON syntax",
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {file_path} must contain a mapping")
    return data


def load_config_file(file_path: str) -> Config | None:
    """
    Load configuration from a single file.

    Args:
        file_path: Path to configuration file

    Returns:
        Config object, or None if the file does not exist

    Raises:
        ConfigError: If the file exists but is invalid
    """
    if not os.path.exists(file_path):
        return None

    logger.debug(f"Loading config from: {file_path}")
    config = Config.from_dict(_read_file(file_path), source=file_path)
    logger.debug(f"Loaded config successfully: {file_path}")
    return config


def _env_number(environ: Mapping[str, str], name: str, cast):
    raw = environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}: {raw!r}") from e


def apply_env_overrides(config: Config, environ: Mapping[str, str] | None = None) -> Config:
    """
    Apply SPARK_* environment variables on top of file configuration.

    Args:
        config: Merged file configuration
        environ: Environment mapping (defaults to os.environ)

    Returns:
        New Config object
    """
    environ = os.environ if environ is None else environ

    prefs = config.preferences
    probe = _env_number(environ, "SPARK_PROBE_TIMEOUT", float)
    update = _env_number(environ, "SPARK_UPDATE_TIMEOUT", float)
    workers = _env_number(environ, "SPARK_MAX_WORKERS", int)
    if probe is not None:
        prefs = replace(prefs, probe_timeout_seconds=probe)
    if update is not None:
        prefs = replace(prefs, update_timeout_seconds=update)
    if workers is not None:
        prefs = replace(prefs, max_workers=workers)

    changes: dict[str, Any] = {"preferences": prefs}
    if environ.get("SPARK_CATALOG"):
        changes["catalog_path"] = environ["SPARK_CATALOG"]
    if environ.get("SPARK_LOG_FILE"):
        changes["log_file"] = environ["SPARK_LOG_FILE"]
    return replace(config, **changes)


def load_config(custom_path: str | None = None, environ: Mapping[str, str] | None = None) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Environment variables (SPARK_*)
    2. Custom path (if provided)
    3. Project .spark.yml
    4. User ~/.config/spark/config.yml
    5. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Merged Config object (defaults if no config found)

    Raises:
        ConfigError: If custom_path is missing, or any config file is invalid
    """
    configs: list[Config] = []

    if custom_path:
        path = str(Path(custom_path).expanduser())
        config = load_config_file(path)
        if config is None:
            raise ConfigError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location)
        if config is not None:
            configs.append(config)
            logger.debug(f"Found config at: {location}")

    if not configs:
        logger.debug("No config files found, using defaults")
        merged = Config()
    else:
        # First config has highest priority
        merged = configs[0]
        for config in configs[1:]:
            merged = merged.merge_with(config)
        logger.debug(f"Merged {len(configs)} config files")

    return apply_env_overrides(merged, environ)
