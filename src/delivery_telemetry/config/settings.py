"""Pydantic settings models for Delivery Telemetry configuration."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Literal, Tuple, Type

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from delivery_telemetry.models.enums import EventCategory
from delivery_telemetry.monitoring.thresholds import (
    DEFAULT_BATTERY_DESCENDING,
    DEFAULT_BATTERY_MAX_DELTA,
    DEFAULT_COLD_ASCENDING,
    DEFAULT_COLD_DESCENDING,
    DEFAULT_HOT_ASCENDING,
    DEFAULT_HOT_DESCENDING,
    DEFAULT_TEMPERATURE_MAX_DELTA,
    ThresholdRule,
)
from delivery_telemetry.simulation.scenarios import SCENARIO_DURATIONS


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source that loads values from a YAML file.

    The YAML file path is determined by the CONFIG_PATH environment variable.
    """

    def get_field_value(
        self, field: Any, field_name: str
    ) -> Tuple[Any, str, bool]:
        """Get field value from YAML config."""
        yaml_config = self._load_yaml_config()
        field_value = yaml_config.get(field_name)
        return field_value, field_name, False

    def _load_yaml_config(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        config_path = os.environ.get("CONFIG_PATH")
        if not config_path:
            return {}

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)
                return data if isinstance(data, dict) else {}
        except (FileNotFoundError, yaml.YAMLError, PermissionError):
            # Reported with a proper message by loader.py
            return {}

    def __call__(self) -> Dict[str, Any]:
        """Return the YAML config values."""
        return self._load_yaml_config()


class TelemetrySettings(BaseSettings):
    """Delivery Telemetry configuration settings.

    Configuration is loaded in the following precedence (highest to lowest):
    1. Constructor arguments
    2. Environment variables (TELEMETRY_ prefix)
    3. .env file
    4. YAML configuration file (via CONFIG_PATH)
    5. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format: json (production) or text (development)",
    )

    # Plausible-value ranges
    temperature_min: float = Field(
        default=-50.0,
        description="Lowest temperature accepted from either compartment",
    )
    temperature_max: float = Field(
        default=100.0,
        description="Highest temperature accepted from either compartment",
    )
    shake_max: float = Field(
        default=20.0,
        description="Largest shake magnitude accepted",
        gt=0,
    )

    # Threshold tables
    hot_ascending: List[ThresholdRule] = Field(
        default_factory=lambda: list(DEFAULT_HOT_ASCENDING),
        description="Hot compartment heating thresholds",
    )
    hot_descending: List[ThresholdRule] = Field(
        default_factory=lambda: list(DEFAULT_HOT_DESCENDING),
        description="Hot compartment cooling thresholds",
    )
    cold_ascending: List[ThresholdRule] = Field(
        default_factory=lambda: list(DEFAULT_COLD_ASCENDING),
        description="Cold compartment warming thresholds",
    )
    cold_descending: List[ThresholdRule] = Field(
        default_factory=lambda: list(DEFAULT_COLD_DESCENDING),
        description="Cold compartment cooling thresholds",
    )
    battery_descending: List[ThresholdRule] = Field(
        default_factory=lambda: list(DEFAULT_BATTERY_DESCENDING),
        description="Battery discharge thresholds",
    )

    # Anomaly detection
    temperature_max_delta: int = Field(
        default=DEFAULT_TEMPERATURE_MAX_DELTA,
        description="Largest plausible temperature change between samples (Celsius)",
        gt=0,
    )
    battery_max_delta: int = Field(
        default=DEFAULT_BATTERY_MAX_DELTA,
        description="Largest plausible battery change between samples (percent)",
        gt=0,
    )

    # Rate limiting
    cooldowns: Dict[str, float] = Field(
        default_factory=dict,
        description="Cooldown overrides in seconds, keyed by event category",
    )
    sampling_factor: int = Field(
        default=10,
        description="Emit every Nth occurrence of a persistent condition",
        ge=1,
    )
    invalid_report_every: int = Field(
        default=10,
        description="Raise one data-quality event per this many invalid frames",
        ge=1,
    )

    # Shake classification (g)
    shake_strong: float = Field(
        default=1.0,
        description="Shake magnitude above which shaking is reported as strong",
        ge=0,
    )
    shake_extreme: float = Field(
        default=2.5,
        description="Shake magnitude above which shaking is reported as extreme",
        ge=0,
    )

    # Scenario generator
    scenario_durations: Dict[str, int] = Field(
        default_factory=dict,
        description="Step-count overrides keyed by scenario name",
    )
    scenario_cadence_seconds: float = Field(
        default=0.3,
        description="Delay between generated frames when streaming",
        ge=0,
    )
    simulator_seed: int = Field(
        default=0,
        description="Seed for the generator's deterministic noise",
    )

    # Event sink
    sink_background: bool = Field(
        default=True,
        description="Deliver events to the sink on a background worker",
    )
    sink_fail_max: int = Field(
        default=3,
        description="Consecutive sink failures before the circuit opens",
        ge=1,
    )
    sink_reset_timeout: int = Field(
        default=60,
        description="Seconds before a tripped sink circuit is retried",
        ge=1,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources to set precedence.

        Order (first = highest priority):
        1. init_settings (constructor arguments)
        2. env_settings (environment variables with TELEMETRY_ prefix)
        3. dotenv_settings (.env file)
        4. yaml_settings (CONFIG_PATH YAML file)
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL"}
        normalized = v.upper()
        if normalized == "WARN":
            normalized = "WARNING"
        if normalized not in valid_levels:
            raise ValueError(
                f"Invalid log level '{v}'. Must be one of: DEBUG, INFO, WARNING, ERROR"
            )
        return normalized

    @field_validator(
        "hot_ascending",
        "hot_descending",
        "cold_ascending",
        "cold_descending",
        "battery_descending",
    )
    @classmethod
    def validate_unique_thresholds(cls, v: List[ThresholdRule]) -> List[ThresholdRule]:
        """Reject tables that list the same boundary twice."""
        values = [rule.value for rule in v]
        if len(values) != len(set(values)):
            raise ValueError(f"Threshold values must be unique, got {values}")
        return v

    @field_validator("cooldowns")
    @classmethod
    def validate_cooldowns(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Validate cooldown keys are known categories and values non-negative."""
        known = {category.value for category in EventCategory}
        for name, seconds in v.items():
            if name not in known:
                raise ValueError(
                    f"Unknown event category '{name}'. Must be one of: {', '.join(sorted(known))}"
                )
            if seconds < 0:
                raise ValueError(f"Cooldown for '{name}' cannot be negative")
        return v

    @field_validator("scenario_durations")
    @classmethod
    def validate_scenario_durations(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Validate duration keys name scripted scenarios and counts are positive."""
        known = {scenario.value for scenario in SCENARIO_DURATIONS}
        for name, steps in v.items():
            if name not in known:
                raise ValueError(
                    f"Unknown scenario '{name}'. Must be one of: {', '.join(sorted(known))}"
                )
            if steps < 1:
                raise ValueError(f"Duration for '{name}' must be at least 1 step")
        return v

    @model_validator(mode="after")
    def validate_temperature_range(self) -> "TelemetrySettings":
        """Validate temperature_min is below temperature_max."""
        if self.temperature_min >= self.temperature_max:
            raise ValueError("temperature_min must be lower than temperature_max")
        return self

    @model_validator(mode="after")
    def validate_shake_levels(self) -> "TelemetrySettings":
        """Validate strong shaking is reported below extreme shaking."""
        if self.shake_strong > self.shake_extreme:
            raise ValueError("shake_strong cannot be greater than shake_extreme")
        return self
