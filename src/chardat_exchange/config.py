"""Configuration management for chardat-exchange.

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

from .material_codec import ChannelTable
from .resolver import PartSchema
from .types import PartRole


class ConfigurationError(Exception):
    """Raised when configuration validation fails.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class DefaultConfigError(Exception):
    """Raised when default configuration cannot be loaded."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to load default configuration: {message}")


class ConfigOverride(NamedTuple):
    """A configuration value that differs from default.toml."""

    key: str
    default_value: Any
    new_value: Any


@dataclass
class ExchangeConfig:
    """Exchange configuration with all settings.

    All fields are required. Default values are loaded from default.toml.
    """

    # Transfer settings
    chunk_size: int
    session_timeout: float
    session_cleanup_interval: float
    poll_timeout: int
    transfer_host: str
    transfer_port: int

    # Processing settings
    worker_threads: int
    graphics_queue_maxsize: int
    compression_level: int

    # Storage settings
    storage_dir: str
    storage_extension: str

    # REST bridge settings
    rest_host: str
    rest_port: int

    # Character schema settings
    skeleton_root_pattern: str
    part_patterns: dict[str, str]
    texture_resolution: dict[str, int]
    shader_channels: list[dict[str, Any]]

    # Logging settings
    log_dir: str | None
    log_level_console: str
    log_json_console: bool
    log_rotation: str | None
    log_retention: str | None

    def part_schema(self) -> PartSchema:
        return PartSchema.from_patterns(self.skeleton_root_pattern, self.part_patterns)

    def channel_table(self) -> ChannelTable:
        return ChannelTable.from_config(self.shader_channels)

    def resolution_policy(self) -> dict[PartRole, int]:
        return {PartRole(role): size for role, size in self.texture_resolution.items()}


# Valid config keys (for unknown key detection)
_VALID_KEYS: set[str] = {f.name for f in fields(ExchangeConfig)}

_OPTIONAL_STRING_KEYS = ("log_dir", "log_rotation", "log_retention")


def load_default_toml_data() -> dict[str, Any]:
    """Load the default.toml data from the bundled package resource.

    Raises:
        DefaultConfigError: If default.toml cannot be found or parsed.
    """
    try:
        files = importlib.resources.files("chardat_exchange")
        content = files.joinpath("default.toml").read_bytes()
        return tomllib.loads(content.decode("utf-8"))
    except FileNotFoundError as e:
        raise DefaultConfigError(f"default.toml not found in package: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise DefaultConfigError(f"Invalid TOML syntax in default.toml: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise DefaultConfigError(f"Failed to read default.toml: {e}") from e


def load_config_from_toml(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        tomllib.TOMLDecodeError: If the TOML syntax is invalid.
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


def process_toml_config(toml_data: dict[str, Any]) -> dict[str, Any]:
    """Keep known keys, converting empty strings to None for optional fields."""
    result: dict[str, Any] = {}

    for key, value in toml_data.items():
        if key in _VALID_KEYS:
            if key in _OPTIONAL_STRING_KEYS and value == "":
                value = None
            result[key] = value

    return result


def get_unknown_keys(toml_data: dict[str, Any]) -> list[str]:
    return [key for key in toml_data if key not in _VALID_KEYS]


def validate_config(config: ExchangeConfig) -> list[str]:
    """Validate configuration values.

    Returns:
        List of error messages. Empty list if configuration is valid.
    """
    errors: list[str] = []

    for field_name in ("transfer_port", "rest_port"):
        port = getattr(config, field_name)
        if not 1 <= port <= 65535:
            errors.append(f"{field_name} must be between 1 and 65535, got {port}")

    positive_fields = [
        "chunk_size",
        "session_timeout",
        "session_cleanup_interval",
        "poll_timeout",
        "worker_threads",
        "graphics_queue_maxsize",
    ]
    for field_name in positive_fields:
        value = getattr(config, field_name)
        if value <= 0:
            errors.append(f"{field_name} must be positive, got {value}")

    if not 0 <= config.compression_level <= 9:
        errors.append(
            f"compression_level must be between 0 and 9, got {config.compression_level}"
        )

    if not config.storage_extension:
        errors.append("storage_extension must not be empty")
    if not config.skeleton_root_pattern:
        errors.append("skeleton_root_pattern must not be empty")

    valid_roles = {role.value for role in PartRole}
    for key, pattern in config.part_patterns.items():
        if key not in valid_roles:
            errors.append(f"part_patterns has unknown role {key!r}")
        elif not pattern:
            errors.append(f"part_patterns.{key} must not be empty")
    for key, size in config.texture_resolution.items():
        if key not in valid_roles:
            errors.append(f"texture_resolution has unknown role {key!r}")
        elif not isinstance(size, int) or size < 0:
            errors.append(f"texture_resolution.{key} must be a non-negative integer, got {size}")

    for index, rule in enumerate(config.shader_channels):
        if not rule.get("match"):
            errors.append(f"shader_channels[{index}] needs a non-empty 'match'")
        channels = rule.get("channels")
        if not isinstance(channels, list) or not 1 <= len(channels) <= 3:
            errors.append(f"shader_channels[{index}].channels must list 1 to 3 names")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level_console.upper() not in valid_log_levels:
        errors.append(
            f"log_level_console must be one of {valid_log_levels}, "
            f"got {config.log_level_console}"
        )

    return errors


def load_default_config() -> ExchangeConfig:
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
    return ExchangeConfig(**config_data)


def merge_cli_args(config: ExchangeConfig, args: argparse.Namespace) -> ExchangeConfig:
    """Merge explicitly provided CLI arguments into config."""
    updates: dict[str, Any] = {}

    for key in ("transfer_host", "transfer_port", "rest_port", "chunk_size"):
        value = getattr(args, key, None)
        if value is not None:
            updates[key] = value
    if getattr(args, "storage_dir", None) is not None:
        updates["storage_dir"] = str(args.storage_dir)

    # Logging settings from CLI
    if getattr(args, "log_dir", None) is not None:
        updates["log_dir"] = str(args.log_dir)
    if getattr(args, "log_level_console", None) is not None:
        updates["log_level_console"] = args.log_level_console
    if getattr(args, "log_json_console", False):
        updates["log_json_console"] = True
    if getattr(args, "log_rotation", None) is not None:
        updates["log_rotation"] = args.log_rotation
    if getattr(args, "log_retention", None) is not None:
        updates["log_retention"] = args.log_retention

    if not updates:
        return config

    return dataclass_replace(config, **updates)


def create_config_from_args(
    args: argparse.Namespace,
) -> tuple[ExchangeConfig, list[ConfigOverride]]:
    """Create ExchangeConfig from CLI arguments with layered config loading.

    Returns:
        Tuple of (ExchangeConfig, overrides from the user config file).

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

        # Logging is not configured yet
        unknown = get_unknown_keys(toml_data)
        if unknown:
            print(f"WARNING: Unknown keys in {user_config_path}:", file=sys.stderr)
            for key in unknown:
                print(f"  - {key}", file=sys.stderr)

        config_data = process_toml_config(toml_data)
        # Tables are merged over the defaults rather than replacing them
        for key in ("part_patterns", "texture_resolution"):
            if key in config_data:
                config_data[key] = {**getattr(config, key), **config_data[key]}

        for key, new_value in config_data.items():
            default_value = getattr(config, key)
            if default_value != new_value:
                overrides.append(ConfigOverride(key, default_value, new_value))
        if config_data:
            config = dataclass_replace(config, **config_data)

    config = merge_cli_args(config, args)

    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    return config, overrides
