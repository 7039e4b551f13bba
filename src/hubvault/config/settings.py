"""
Configuration settings management for hubvault.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.hubvault/config.yaml by default, with the
path overridable via the HUBVAULT_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".hubvault"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# PBKDF2 iteration count for backup encryption (OWASP 2023 for SHA-256)
DEFAULT_KDF_ITERATIONS = 600_000
MIN_KDF_ITERATIONS = 100_000
MAX_KDF_ITERATIONS = 10_000_000


@dataclass
class ExportDefaults:
    """Which categories an export includes when no switches are given."""

    settings: bool = True
    service_configs: bool = True
    service_credentials: bool = True
    widgets_config: bool = True
    widget_config_credentials: bool = True
    widget_profiles: bool = True
    widget_profile_credentials: bool = True
    widget_secure_credentials: bool = False


@dataclass
class BackupConfig:
    """Backup file settings."""

    output_dir: str = str(DEFAULT_CONFIG_DIR / "backups")
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    default_export: ExportDefaults = field(default_factory=ExportDefaults)


@dataclass
class Settings:
    """
    Complete hubvault configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with HUBVAULT_.

    Attributes:
        data_dir: Directory holding the application state database.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        backup: Backup file and encryption settings.
    """

    data_dir: str = str(DEFAULT_CONFIG_DIR / "data")
    log_level: str = "INFO"

    backup: BackupConfig = field(default_factory=BackupConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from HUBVAULT_CONFIG environment variable if set,
    otherwise returns the default path (~/.hubvault/config.yaml).
    """
    env_path = os.environ.get("HUBVAULT_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses HUBVAULT_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    hubvault_data = data.get("hubvault", {}) or {}

    if "data_dir" in hubvault_data:
        settings.data_dir = str(hubvault_data["data_dir"])
    if "log_level" in hubvault_data:
        settings.log_level = str(hubvault_data["log_level"]).upper()

    backup = data.get("backup", {}) or {}
    if "output_dir" in backup:
        settings.backup.output_dir = str(backup["output_dir"])
    if "kdf_iterations" in backup:
        try:
            settings.backup.kdf_iterations = int(backup["kdf_iterations"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid kdf_iterations: {backup['kdf_iterations']!r}"
            ) from e

    default_export = backup.get("default_export", {}) or {}
    known = {f.name for f in fields(ExportDefaults)}
    for key, value in default_export.items():
        if key not in known:
            raise ConfigurationError(f"Unknown export category in default_export: {key}")
        if not isinstance(value, bool):
            raise ConfigurationError(f"default_export.{key} must be true or false")
        setattr(settings.backup.default_export, key, value)

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "HUBVAULT_DATA_DIR": ("data_dir", str),
        "HUBVAULT_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "HUBVAULT_BACKUP_DIR": ("backup.output_dir", str),
        "HUBVAULT_KDF_ITERATIONS": ("backup.kdf_iterations", int),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                converted = converter(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value!r}") from e
            _set_nested_attr(settings, attr_path, converted)

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if not MIN_KDF_ITERATIONS <= settings.backup.kdf_iterations <= MAX_KDF_ITERATIONS:
        raise ConfigurationError(
            f"kdf_iterations must be between {MIN_KDF_ITERATIONS:,} and {MAX_KDF_ITERATIONS:,}"
        )

    defaults = settings.backup.default_export
    for credential_flag, parent_flag in (
        ("service_credentials", "service_configs"),
        ("widget_config_credentials", "widgets_config"),
        ("widget_profile_credentials", "widget_profiles"),
    ):
        if getattr(defaults, credential_flag) and not getattr(defaults, parent_flag):
            raise ConfigurationError(
                f"default_export.{credential_flag} requires {parent_flag} to be enabled"
            )


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    defaults = settings.backup.default_export
    return {
        "hubvault": {
            "data_dir": settings.data_dir,
            "log_level": settings.log_level,
        },
        "backup": {
            "output_dir": settings.backup.output_dir,
            "kdf_iterations": settings.backup.kdf_iterations,
            "default_export": {
                f.name: getattr(defaults, f.name) for f in fields(ExportDefaults)
            },
        },
    }
