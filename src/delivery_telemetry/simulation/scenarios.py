"""Scripted scenarios for the synthetic frame generator.

Every scenario is a pure transition function taking the state of the step
being computed and a Jitter source and returning the new state. Nothing
here keeps state or reads the clock, so a run is fully reproducible from
its seed.
"""

import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict

SENSOR_ERROR_TEXT = "er"

BATTERY_MIN = 0
BATTERY_MAX = 100
FRAME_TEMP_MIN = -10.0
FRAME_TEMP_MAX = 70.0
FRAME_SHAKE_MIN = 0.0
FRAME_SHAKE_MAX = 5.0

# Error windows: the first 3 steps of every 10 (hot) and every 7 (cold)
HOT_ERROR_PERIOD = 10
COLD_ERROR_PERIOD = 7
ERROR_WINDOW = 3


class Scenario(str, Enum):
    """Scripted behaviours of the synthetic container."""

    NORMAL = "normal"
    BATTERY_DRAIN = "battery_drain"
    HEATING_CYCLE = "heating_cycle"
    COOLING_CYCLE = "cooling_cycle"
    BAG_CYCLE = "bag_cycle"
    SHAKE_CYCLE = "shake_cycle"
    SENSOR_ERROR_INJECTION = "sensor_error_injection"


# Steps before returning to NORMAL, about 30-50 s at the 300 ms cadence
SCENARIO_DURATIONS: Dict[Scenario, int] = {
    Scenario.BATTERY_DRAIN: 100,
    Scenario.HEATING_CYCLE: 150,
    Scenario.COOLING_CYCLE: 100,
    Scenario.BAG_CYCLE: 133,
    Scenario.SHAKE_CYCLE: 117,
    Scenario.SENSOR_ERROR_INJECTION: 167,
}


@dataclass(frozen=True)
class ScenarioState:
    """Physical quantities of the simulated container at one step."""

    scenario: Scenario = Scenario.NORMAL
    step_index: int = 0
    battery_percent: int = 85
    hot_temp: float = 25.0
    cold_temp: float = 15.0
    closed: bool = False
    heat_active: bool = False
    cool_active: bool = False
    light_active: bool = False
    shake: float = 0.1
    hot_sensor_error: bool = False
    cold_sensor_error: bool = False
    phase: str = "steady"

    @property
    def active_function_count(self) -> int:
        return sum((self.heat_active, self.cool_active, self.light_active))


class Jitter:
    """Deterministic noise for one step of one scenario.

    Each channel gets its own generator seeded from (seed, scenario, step,
    channel), so adding a draw on one channel never shifts another.
    """

    def __init__(self, seed: int, scenario: Scenario, step: int) -> None:
        self.seed = seed
        self.scenario = scenario
        self.step = step

    def _rng(self, channel: str) -> random.Random:
        return random.Random(f"{self.seed}:{self.scenario.value}:{self.step}:{channel}")

    def uniform(self, channel: str, low: float, high: float) -> float:
        return self._rng(channel).uniform(low, high)

    def chance(self, channel: str, probability: float) -> bool:
        return self._rng(channel).random() < probability


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _drain(battery: int, step: int, every: int) -> int:
    if step % every == 0:
        return max(0, battery - 1)
    return battery


def normal(state: ScenarioState, jitter: Jitter) -> ScenarioState:
    """Slow drift: small temperature wobble, rare bag toggles."""
    step = state.step_index
    closed = not state.closed if jitter.chance("closed", 0.005) else state.closed
    return replace(
        state,
        battery_percent=_drain(state.battery_percent, step, 400),
        hot_temp=clamp(state.hot_temp + jitter.uniform("hot", -0.2, 0.2), 20.0, 30.0),
        cold_temp=clamp(state.cold_temp + jitter.uniform("cold", -0.15, 0.15), 10.0, 20.0),
        shake=jitter.uniform("shake", 0.0, 0.3),
        closed=closed,
        phase="steady",
    )


def battery_drain(state: ScenarioState, jitter: Jitter) -> ScenarioState:
    """Fast discharge from 50% down through every battery threshold to 0%."""
    step = state.step_index
    if step < 33:
        battery, phase = max(0, 50 - step), "draining"
    elif step < 66:
        battery, phase = max(0, 17 - (step - 33)), "critical"
    else:
        battery, phase = 0, "empty"
    return replace(
        state,
        battery_percent=battery,
        hot_temp=state.hot_temp + jitter.uniform("hot", -0.1, 0.1),
        cold_temp=state.cold_temp + jitter.uniform("cold", -0.1, 0.1),
        shake=jitter.uniform("shake", 0.0, 0.2),
        phase=phase,
    )


def heating_cycle(state: ScenarioState, jitter: Jitter) -> ScenarioState:
    """Warm up to 35°C, heat to 55°C, hold around 55°C, then cool down."""
    step = state.step_index
    battery = state.battery_percent
    if step < 33:
        heat, hot, phase = False, min(35.0, 25.0 + step * 0.3), "warming"
    elif step < 83:
        heat, hot, phase = True, min(55.0, 35.0 + (step - 33) * 0.4), "heating"
        battery = _drain(battery, step, 10)
    elif step < 117:
        heat, hot, phase = True, clamp(55.0 + jitter.uniform("hot", -2.0, 2.0), 53.0, 57.0), "holding"
    else:
        heat, hot, phase = False, max(25.0, state.hot_temp - 0.8), "cooling"
    return replace(
        state,
        heat_active=heat,
        hot_temp=hot,
        battery_percent=battery,
        shake=jitter.uniform("shake", 0.0, 0.3),
        phase=phase,
    )


def cooling_cycle(state: ScenarioState, jitter: Jitter) -> ScenarioState:
    """Chill to 5°C, freeze to -2°C, hold around -2°C, then warm up."""
    step = state.step_index
    battery = state.battery_percent
    if step < 20:
        cool, cold, phase = False, max(5.0, 15.0 - step * 0.5), "chilling"
    elif step < 50:
        cool, cold, phase = True, max(-2.0, 5.0 - (step - 20) * 0.23), "cooling"
        battery = _drain(battery, step, 6)
    elif step < 70:
        cool, cold, phase = True, clamp(-2.0 + jitter.uniform("cold", -1.0, 1.0), -3.0, -1.0), "holding"
    else:
        cool, cold, phase = False, min(20.0, state.cold_temp + 0.8), "warming"
    return replace(
        state,
        cool_active=cool,
        cold_temp=cold,
        battery_percent=battery,
        shake=jitter.uniform("shake", 0.0, 0.3),
        phase=phase,
    )


def bag_cycle(state: ScenarioState, jitter: Jitter) -> ScenarioState:
    """Open and close the bag every 25 steps."""
    step = state.step_index
    return replace(
        state,
        closed=not state.closed if step % 25 == 0 else state.closed,
        hot_temp=state.hot_temp + jitter.uniform("hot", -0.15, 0.15),
        cold_temp=state.cold_temp + jitter.uniform("cold", -0.15, 0.15),
        shake=jitter.uniform("shake", 0.0, 0.5),
        battery_percent=_drain(state.battery_percent, step, 200),
        phase="cycling",
    )


def shake_cycle(state: ScenarioState, jitter: Jitter) -> ScenarioState:
    """Extreme, then strong, then moderate shaking that fades out."""
    step = state.step_index
    if step < 33:
        shake, phase = jitter.uniform("shake", 2.0, 3.5), "extreme"
    elif step < 66:
        shake, phase = jitter.uniform("shake", 1.0, 2.0), "strong"
    elif step < 100:
        shake, phase = jitter.uniform("shake", 0.3, 1.1), "moderate"
    else:
        shake, phase = jitter.uniform("shake", 0.0, 0.2), "fading"
    return replace(
        state,
        shake=shake,
        hot_temp=state.hot_temp + jitter.uniform("hot", -0.2, 0.2),
        cold_temp=state.cold_temp + jitter.uniform("cold", -0.2, 0.2),
        battery_percent=_drain(state.battery_percent, step, 67),
        phase=phase,
    )


def sensor_error_injection(state: ScenarioState, jitter: Jitter) -> ScenarioState:
    """Report "er" for the hot and cold sensors on staggered schedules."""
    step = state.step_index
    hot_error = step % HOT_ERROR_PERIOD < ERROR_WINDOW
    cold_error = step % COLD_ERROR_PERIOD < ERROR_WINDOW
    hot = state.hot_temp if hot_error else state.hot_temp + jitter.uniform("hot", -0.25, 0.25)
    cold = state.cold_temp if cold_error else state.cold_temp + jitter.uniform("cold", -0.25, 0.25)
    if hot_error and cold_error:
        phase = "both_failed"
    elif hot_error or cold_error:
        phase = "one_failed"
    else:
        phase = "healthy"
    return replace(
        state,
        hot_temp=hot,
        cold_temp=cold,
        hot_sensor_error=hot_error,
        cold_sensor_error=cold_error,
        shake=jitter.uniform("shake", 0.0, 0.4),
        battery_percent=_drain(state.battery_percent, step, 100),
        phase=phase,
    )


TRANSITIONS: Dict[Scenario, Callable[[ScenarioState, Jitter], ScenarioState]] = {
    Scenario.NORMAL: normal,
    Scenario.BATTERY_DRAIN: battery_drain,
    Scenario.HEATING_CYCLE: heating_cycle,
    Scenario.COOLING_CYCLE: cooling_cycle,
    Scenario.BAG_CYCLE: bag_cycle,
    Scenario.SHAKE_CYCLE: shake_cycle,
    Scenario.SENSOR_ERROR_INJECTION: sensor_error_injection,
}


def format_frame(state: ScenarioState) -> str:
    """Serialize a state in the device's wire format.

    Format: battery,hotTemp,coldTemp,closed,activeFunctionCount,shakeMagnitude
    """
    battery = int(clamp(state.battery_percent, BATTERY_MIN, BATTERY_MAX))
    if state.hot_sensor_error:
        hot = SENSOR_ERROR_TEXT
    else:
        hot = f"{clamp(state.hot_temp, FRAME_TEMP_MIN, FRAME_TEMP_MAX):.2f}"
    if state.cold_sensor_error:
        cold = SENSOR_ERROR_TEXT
    else:
        cold = f"{clamp(state.cold_temp, FRAME_TEMP_MIN, FRAME_TEMP_MAX):.2f}"
    shake = clamp(state.shake, FRAME_SHAKE_MIN, FRAME_SHAKE_MAX)
    closed = 1 if state.closed else 0
    return f"{battery},{hot},{cold},{closed},{state.active_function_count},{shake:.2f}"
