"""Configuration management for Delivery Telemetry."""

from delivery_telemetry.config.loader import (
    ConfigurationError,
    get_config,
    load_config,
    reload_config,
)
from delivery_telemetry.config.settings import TelemetrySettings

__all__ = [
    "ConfigurationError",
    "TelemetrySettings",
    "get_config",
    "load_config",
    "reload_config",
]
