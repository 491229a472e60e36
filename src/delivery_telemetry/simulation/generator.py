"""Synthetic telemetry source.

ScenarioGenerator stands in for the real transport: it evolves a
ScenarioState one step per call, serializes it in the device's wire format
and parses it back with the same FrameParser the pipeline uses.
"""

import time
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterator, Mapping, Optional, Set

import structlog

from delivery_telemetry.frames import FrameParser
from delivery_telemetry.models import TelemetrySample
from delivery_telemetry.simulation.scenarios import (
    BATTERY_MAX,
    BATTERY_MIN,
    FRAME_SHAKE_MAX,
    FRAME_SHAKE_MIN,
    FRAME_TEMP_MAX,
    FRAME_TEMP_MIN,
    SCENARIO_DURATIONS,
    TRANSITIONS,
    Jitter,
    Scenario,
    ScenarioState,
    clamp,
    format_frame,
)

log = structlog.get_logger()

DEFAULT_CADENCE_SECONDS = 0.3

# command -> (actuator flag, target value)
COMMANDS: Dict[str, tuple] = {
    "H": ("heat_active", True),
    "h": ("heat_active", False),
    "C": ("cool_active", True),
    "c": ("cool_active", False),
    "L": ("light_active", True),
    "l": ("light_active", False),
}


@dataclass(frozen=True)
class GeneratedFrame:
    """One generated step: the state, its wire frame and the parsed sample."""

    state: ScenarioState
    frame: str
    sample: TelemetrySample


class ScenarioGenerator:
    """Deterministic, step-indexed generator of container telemetry.

    Scenarios other than NORMAL run for a fixed number of steps and then
    hand back to NORMAL on their own. The same seed always produces the
    same frames.

    Example:
        >>> generator = ScenarioGenerator(seed=7)
        >>> generator.set_scenario(Scenario.HEATING_CYCLE)
        >>> generator.step().state.phase
        'warming'
    """

    def __init__(
        self,
        seed: int = 0,
        durations: Optional[Mapping[Scenario, int]] = None,
        cadence: float = DEFAULT_CADENCE_SECONDS,
        parser: Optional[FrameParser] = None,
        initial_state: Optional[ScenarioState] = None,
    ) -> None:
        """Initialize the generator.

        Args:
            seed: Seed of the deterministic noise
            durations: Step-count overrides per scenario
            cadence: Seconds between frames when streaming in real time
            parser: Parser used to turn frames back into samples
            initial_state: Starting state; defaults to a NORMAL container at 85%
        """
        self.seed = seed
        self.durations: Dict[Scenario, int] = dict(SCENARIO_DURATIONS)
        self.durations.update(durations or {})
        self.cadence = cadence
        self.parser = parser or FrameParser()

        self._initial_state = initial_state or ScenarioState()
        self._state = self._initial_state
        self._milestones: Set[str] = set()
        self._pending_shake: Optional[float] = None

    @classmethod
    def from_settings(cls, settings, parser: Optional[FrameParser] = None) -> "ScenarioGenerator":
        """Create a generator from a TelemetrySettings instance."""
        durations = {Scenario(name): steps for name, steps in settings.scenario_durations.items()}
        return cls(
            seed=settings.simulator_seed,
            durations=durations,
            cadence=settings.scenario_cadence_seconds,
            parser=parser or FrameParser.from_settings(settings),
        )

    @property
    def state(self) -> ScenarioState:
        return self._state

    @property
    def scenario(self) -> Scenario:
        return self._state.scenario

    @property
    def milestones(self) -> FrozenSet[str]:
        """Phases reached in the current scenario run."""
        return frozenset(self._milestones)

    def step(self) -> GeneratedFrame:
        """Advance one time unit and return the generated frame."""
        current = self._state
        jitter = Jitter(self.seed, current.scenario, current.step_index)
        base = replace(current, hot_sensor_error=False, cold_sensor_error=False)
        produced = TRANSITIONS[current.scenario](base, jitter)

        if self._pending_shake is not None:
            produced = replace(produced, shake=self._pending_shake)
            self._pending_shake = None

        if produced.phase not in self._milestones:
            self._milestones.add(produced.phase)
            log.debug(
                "scenario_phase",
                scenario=produced.scenario.value,
                phase=produced.phase,
                step=produced.step_index,
            )

        frame = format_frame(produced)
        sample = self.parser.parse(frame)

        next_index = produced.step_index + 1
        duration = self.durations.get(produced.scenario)
        if duration is not None and next_index >= duration:
            log.info("scenario_completed", scenario=produced.scenario.value, steps=next_index)
            self._state = replace(produced, scenario=Scenario.NORMAL, step_index=0)
            self._milestones.clear()
        else:
            self._state = replace(produced, step_index=next_index)

        return GeneratedFrame(state=produced, frame=frame, sample=sample)

    def set_scenario(self, scenario: Scenario) -> None:
        """Switch scenario and restart it from step 0.

        Only the generator's own phase bookkeeping is cleared; monitors fed
        by the generated frames keep their state.
        """
        previous = self._state.scenario
        self._state = replace(self._state, scenario=scenario, step_index=0)
        self._milestones.clear()
        log.info("scenario_switched", previous=previous.value, scenario=scenario.value)

    def handle_command(self, command: str) -> bool:
        """Apply an actuator command (H/h heat, C/c cool, L/l light).

        Args:
            command: Single-character command, case-sensitive

        Returns:
            True if an actuator changed, False for repeats and unknown commands
        """
        text = command.strip()
        if text not in COMMANDS:
            log.warning("unknown_command", command=text[:10])
            return False

        flag, target = COMMANDS[text]
        if getattr(self._state, flag) == target:
            log.info("command_ignored", command=text, actuator=flag, active=target)
            return False

        self._state = replace(self._state, **{flag: target})
        log.info("actuator_switched", command=text, actuator=flag, active=target)
        return True

    def set_battery_level(self, level: int) -> None:
        self._state = replace(
            self._state, battery_percent=int(clamp(level, BATTERY_MIN, BATTERY_MAX))
        )

    def set_temperatures(self, hot: float, cold: float) -> None:
        self._state = replace(
            self._state,
            hot_temp=clamp(hot, FRAME_TEMP_MIN, FRAME_TEMP_MAX),
            cold_temp=clamp(cold, FRAME_TEMP_MIN, FRAME_TEMP_MAX),
        )

    def trigger_shake(self, intensity: float) -> None:
        """Report the given shake magnitude in the next generated frame."""
        self._pending_shake = clamp(intensity, FRAME_SHAKE_MIN, FRAME_SHAKE_MAX)

    def reset(self) -> None:
        """Return to the initial state."""
        self._state = self._initial_state
        self._milestones.clear()
        self._pending_shake = None

    def iter_lines(self, limit: Optional[int] = None, cadence: Optional[float] = None) -> Iterator[str]:
        """Yield generated frames as a line source.

        Args:
            limit: Number of frames to produce; None streams forever
            cadence: Seconds to sleep between frames; None uses the generator's
                cadence, 0 streams without sleeping

        Yields:
            Raw frames in the wire format
        """
        if cadence is None:
            cadence = self.cadence
        produced = 0
        while limit is None or produced < limit:
            if produced and cadence > 0:
                time.sleep(cadence)
            yield self.step().frame
            produced += 1
