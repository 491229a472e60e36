"""Configuration loading with YAML and environment override support."""

from __future__ import annotations

import os
import threading
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from delivery_telemetry.config.settings import TelemetrySettings


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


_config: Optional[TelemetrySettings] = None
_config_lock = threading.Lock()


def load_yaml_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file if specified.

    Args:
        config_path: Path to YAML config file. If None, checks CONFIG_PATH env var.

    Returns:
        Dict of configuration values from YAML, or empty dict if no file.
    """
    path = config_path or os.environ.get("CONFIG_PATH")

    if not path:
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except FileNotFoundError:
        raise ConfigurationError(
            f"Configuration file not found: {path}\n"
            "Ensure CONFIG_PATH points to a valid YAML file, or remove it to use defaults."
        )
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file {path}: {e}")
    except PermissionError:
        raise ConfigurationError(f"Cannot read configuration file {path}: permission denied")


def format_validation_errors(errors: List[Dict[str, Any]]) -> List[str]:
    """Format Pydantic validation errors into user-friendly messages."""
    messages: List[str] = []
    for error in errors:
        loc = ".".join(str(part) for part in error.get("loc", []))
        msg = error.get("msg", "Invalid value")
        input_val = error.get("input")

        if not loc:
            messages.append(f"Configuration error: {msg}")
        elif input_val is not None and not isinstance(input_val, dict):
            messages.append(f"Configuration error: '{loc}' {msg}, got: {input_val}")
        else:
            messages.append(f"Configuration error: '{loc}' {msg}")

    return messages


def load_config(config_path: Optional[str] = None, **overrides: Any) -> TelemetrySettings:
    """Load and validate configuration.

    Args:
        config_path: Optional path to YAML config file (sets CONFIG_PATH env).
        **overrides: Values that take precedence over every other source.

    Returns:
        Validated TelemetrySettings instance.

    Raises:
        ConfigurationError: If the file cannot be read or validation fails.
    """
    global _config

    if config_path:
        os.environ["CONFIG_PATH"] = config_path

    # Fail early with a readable message; pydantic's YAML source stays silent
    _ = load_yaml_config()

    try:
        settings = TelemetrySettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError("\n".join(format_validation_errors(e.errors())))

    with _config_lock:
        _config = settings
    return settings


def get_config() -> TelemetrySettings:
    """Get the current configuration.

    Returns:
        Current TelemetrySettings instance.

    Raises:
        ConfigurationError: If configuration has not been loaded.
    """
    with _config_lock:
        if _config is None:
            raise ConfigurationError("Configuration not loaded. Call load_config() first.")
        return _config


def reload_config() -> TelemetrySettings:
    """Reload configuration from disk and environment.

    Returns:
        New TelemetrySettings instance.
    """
    global _config
    with _config_lock:
        _config = None
    return load_config()
