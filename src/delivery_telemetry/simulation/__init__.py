"""Synthetic frame generator used in place of a real container."""

from delivery_telemetry.simulation.generator import (
    DEFAULT_CADENCE_SECONDS,
    GeneratedFrame,
    ScenarioGenerator,
)
from delivery_telemetry.simulation.scenarios import (
    SCENARIO_DURATIONS,
    Jitter,
    Scenario,
    ScenarioState,
    format_frame,
)

__all__ = [
    "DEFAULT_CADENCE_SECONDS",
    "GeneratedFrame",
    "Jitter",
    "SCENARIO_DURATIONS",
    "Scenario",
    "ScenarioGenerator",
    "ScenarioState",
    "format_frame",
]
