"""Configuration management for the echoguard server.

This module provides TOML-based configuration support with CLI override capability.

Configuration priority: CLI args > user config > default config
"""

from __future__ import annotations

import argparse
import importlib.resources
import sys
import tomllib
from dataclasses import dataclass, fields
from dataclasses import replace as dataclass_replace
from pathlib import Path
from typing import Any, NamedTuple


class ConfigurationError(Exception):
    """Raised when configuration validation fails.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class DefaultConfigError(Exception):
    """Raised when default configuration cannot be loaded.

    This is a fatal error that prevents server startup.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to load default configuration: {message}")


class ConfigOverride(NamedTuple):
    """Represents a configuration value override.

    Attributes:
        key: The configuration field name.
        default_value: The default value from default.toml.
        new_value: The new value from user config or CLI.
    """

    key: str
    default_value: Any
    new_value: Any


@dataclass
class ServerConfig:
    """Server configuration with all settings.

    All fields are required. Default values are loaded from default.toml.
    """

    # Network settings
    host: str
    base_port: int
    max_attempts: int
    server_tag: str

    # Single-instance lock
    lock_file: str

    # Logging settings
    log_dir: str | None
    log_max_bytes: int
    log_level_console: str
    log_json_console: bool

    @property
    def last_port(self) -> int:
        return self.base_port + self.max_attempts - 1


_VALID_KEYS: set[str] = {f.name for f in fields(ServerConfig)}

# Keys where an empty string in TOML means "not set"
_OPTIONAL_KEYS = ("log_dir",)


def load_default_toml_data() -> dict[str, Any]:
    """Load the default.toml data from the bundled package resource.

    Raises:
        DefaultConfigError: If default.toml cannot be found or parsed.
    """
    try:
        files = importlib.resources.files("echoguard")
        content = files.joinpath("default.toml").read_bytes()
        return tomllib.loads(content.decode("utf-8"))
    except FileNotFoundError as e:
        raise DefaultConfigError(f"default.toml not found in package: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise DefaultConfigError(f"Invalid TOML syntax in default.toml: {e}") from e


def load_config_from_toml(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        tomllib.TOMLDecodeError: If the TOML syntax is invalid.
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


def process_toml_config(toml_data: dict[str, Any]) -> dict[str, Any]:
    """Keep known keys and normalise empty optional values to None."""
    result: dict[str, Any] = {}

    for key, value in toml_data.items():
        if key in _VALID_KEYS:
            if key in _OPTIONAL_KEYS and value == "":
                value = None
            result[key] = value

    return result


def get_unknown_keys(toml_data: dict[str, Any]) -> list[str]:
    """Detect unknown keys in TOML configuration."""
    return [key for key in toml_data if key not in _VALID_KEYS]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_config(config: ServerConfig) -> list[str]:
    """Validate configuration values.

    Returns:
        List of error messages. Empty list if configuration is valid.
    """
    errors: list[str] = []

    if not _is_int(config.base_port) or not 1 <= config.base_port <= 65535:
        errors.append(f"base_port must be between 1 and 65535, got {config.base_port}")
    if not _is_int(config.max_attempts) or config.max_attempts <= 0:
        errors.append(f"max_attempts must be a positive integer, got {config.max_attempts}")
    if not errors and config.last_port > 65535:
        errors.append(
            f"base_port + max_attempts - 1 must not exceed 65535, got {config.last_port}"
        )

    if not config.host:
        errors.append("host must not be empty")
    if not config.server_tag:
        errors.append("server_tag must not be empty")
    if not config.lock_file:
        errors.append("lock_file must not be empty")

    if not _is_int(config.log_max_bytes) or config.log_max_bytes <= 0:
        errors.append(f"log_max_bytes must be positive, got {config.log_max_bytes}")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if str(config.log_level_console).upper() not in valid_log_levels:
        errors.append(
            f"log_level_console must be one of {valid_log_levels}, "
            f"got {config.log_level_console}"
        )

    return errors


def load_default_config() -> ServerConfig:
    """Load the default configuration from the bundled default.toml.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded or is incomplete.
    """
    toml_data = load_default_toml_data()
    config_data = process_toml_config(toml_data)

    missing = _VALID_KEYS - set(config_data.keys())
    if missing:
        raise DefaultConfigError(
            f"Missing required fields in default.toml: {', '.join(sorted(missing))}"
        )

    return ServerConfig(**config_data)


def merge_cli_args(config: ServerConfig, args: argparse.Namespace) -> ServerConfig:
    """Merge CLI arguments into config (CLI takes precedence).

    Only overrides config values when CLI args are explicitly provided.
    """
    updates: dict[str, Any] = {}

    for key in (
        "host",
        "base_port",
        "max_attempts",
        "server_tag",
        "lock_file",
        "log_level_console",
        "log_max_bytes",
    ):
        value = getattr(args, key, None)
        if value is not None:
            updates[key] = value

    if getattr(args, "log_dir", None) is not None:
        updates["log_dir"] = str(args.log_dir)
    if getattr(args, "no_log_file", False):
        updates["log_dir"] = None
    if getattr(args, "log_json_console", False):
        updates["log_json_console"] = True

    if not updates:
        return config

    return dataclass_replace(config, **updates)


def create_config_from_args(
    args: argparse.Namespace,
) -> tuple[ServerConfig, list[ConfigOverride]]:
    """Create ServerConfig from CLI arguments with layered config loading.

    Returns:
        Tuple of (ServerConfig instance, list of ConfigOverride).
        The overrides list contains all values from user config that differ from defaults.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded (fatal).
        FileNotFoundError: If specified user config file does not exist.
        tomllib.TOMLDecodeError: If config file has invalid TOML syntax.
        ConfigurationError: If configuration validation fails.
    """
    config = load_default_config()
    overrides: list[ConfigOverride] = []

    if getattr(args, "config", None) is not None:
        user_config_path = Path(args.config)
        toml_data = load_config_from_toml(user_config_path)

        # Using stderr since logging is not configured yet
        unknown = get_unknown_keys(toml_data)
        if unknown:
            print(f"WARNING: Unknown keys in {user_config_path}:", file=sys.stderr)
            for key in unknown:
                print(f"  - {key}", file=sys.stderr)

        config_data = process_toml_config(toml_data)
        if config_data:
            for key, new_value in config_data.items():
                default_value = getattr(config, key)
                if default_value != new_value:
                    overrides.append(ConfigOverride(key, default_value, new_value))

            config = dataclass_replace(config, **config_data)

    config = merge_cli_args(config, args)

    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    return config, overrides
