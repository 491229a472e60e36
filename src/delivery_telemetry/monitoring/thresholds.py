"""Threshold tables for the monitored channels.

Defines the ascending and descending boundaries of each channel together
with the human-readable message shown when a boundary is crossed. The
defaults match what the container firmware reports as meaningful for hot
food, cold food and the battery.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from delivery_telemetry.models.enums import Channel, Direction, Severity


class ThresholdRule(BaseModel):
    """One boundary of a channel's lookup table."""

    model_config = ConfigDict(frozen=True)

    value: int = Field(..., description="Integer boundary, in the channel's unit")
    message: str = Field(..., description="Text shown when the boundary is crossed")
    severity: Severity = Field(default=Severity.INFO, description="Severity of the event")


@dataclass(frozen=True)
class ThresholdKey:
    """A threshold value tagged with its direction.

    Ascending-40 and descending-40 are different keys and never collide.
    """

    value: int
    direction: Direction

    def __str__(self) -> str:
        return f"{self.direction.value}:{self.value}"


@dataclass(frozen=True)
class ChannelThresholds:
    """Ascending and descending tables for a single channel.

    Attributes:
        channel: Channel the tables apply to
        label: Display name used in event messages
        unit: Unit suffix used in event messages
        ascending: Boundaries checked when the value rises, sorted low to high
        descending: Boundaries checked when the value falls, sorted high to low
        max_delta: Largest plausible change between two samples (None = unchecked)
        initial_previous: Value assumed before the first reading (None = first
            reading only establishes a baseline)
    """

    channel: Channel
    label: str
    unit: str
    ascending: Tuple[ThresholdRule, ...] = ()
    descending: Tuple[ThresholdRule, ...] = ()
    max_delta: Optional[int] = None
    initial_previous: Optional[int] = None
    _lookup: Dict[ThresholdKey, ThresholdRule] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        ascending = tuple(sorted(self.ascending, key=lambda r: r.value))
        descending = tuple(sorted(self.descending, key=lambda r: r.value, reverse=True))
        object.__setattr__(self, "ascending", ascending)
        object.__setattr__(self, "descending", descending)
        for rule in ascending:
            self._lookup[ThresholdKey(rule.value, Direction.ASCENDING)] = rule
        for rule in descending:
            self._lookup[ThresholdKey(rule.value, Direction.DESCENDING)] = rule

    def rules(self, direction: Direction) -> Tuple[ThresholdRule, ...]:
        if direction is Direction.ASCENDING:
            return self.ascending
        return self.descending

    def rule_for(self, key: ThresholdKey) -> Optional[ThresholdRule]:
        return self._lookup.get(key)


def _rules(entries: Iterable[Tuple[int, str, Severity]]) -> Tuple[ThresholdRule, ...]:
    return tuple(ThresholdRule(value=v, message=m, severity=s) for v, m, s in entries)


DEFAULT_HOT_ASCENDING = _rules([
    (40, "Food warmed to 40°C - comfortable temperature", Severity.INFO),
    (50, "Food is hot at 50°C - optimal serving temperature", Severity.SUCCESS),
    (60, "Food is very hot at 60°C - take care when serving", Severity.WARNING),
])

DEFAULT_HOT_DESCENDING = _rules([
    (45, "Food cooled to 45°C - still warm", Severity.INFO),
    (35, "Food cooled to 35°C - moderate temperature", Severity.WARNING),
    (25, "Food cooled to 25°C - room temperature", Severity.WARNING),
])

DEFAULT_COLD_DESCENDING = _rules([
    (15, "Food chilled to 15°C - cool", Severity.INFO),
    (10, "Food is cold at 10°C - optimal temperature", Severity.SUCCESS),
    (5, "Food is very cold at 5°C - well chilled", Severity.SUCCESS),
])

DEFAULT_COLD_ASCENDING = _rules([
    (10, "Food warmed to 10°C - no longer cold", Severity.WARNING),
    (15, "Food warmed to 15°C - cool", Severity.WARNING),
    (20, "Food warmed to 20°C - room temperature", Severity.WARNING),
])

DEFAULT_BATTERY_DESCENDING = _rules([
    (50, "Battery below half (≤50%)", Severity.INFO),
    (30, "Low battery (≤30%)", Severity.WARNING),
    (15, "Very low battery (≤15%)", Severity.WARNING),
    (5, "Critically low battery (≤5%)", Severity.CRITICAL),
])

DEFAULT_TEMPERATURE_MAX_DELTA = 15
DEFAULT_BATTERY_MAX_DELTA = 25

# Battery readings are compared against "more than full" so that a device
# that connects already drained still reports the thresholds it is below.
BATTERY_INITIAL_PREVIOUS = 101


def build_channel_thresholds(settings=None) -> Dict[Channel, ChannelThresholds]:
    """Build the per-channel tables, applying configuration overrides.

    Args:
        settings: Optional TelemetrySettings; defaults are used when None

    Returns:
        Dict mapping each Channel to its ChannelThresholds
    """
    if settings is None:
        hot_asc, hot_desc = DEFAULT_HOT_ASCENDING, DEFAULT_HOT_DESCENDING
        cold_asc, cold_desc = DEFAULT_COLD_ASCENDING, DEFAULT_COLD_DESCENDING
        battery_desc = DEFAULT_BATTERY_DESCENDING
        temp_delta = DEFAULT_TEMPERATURE_MAX_DELTA
        battery_delta = DEFAULT_BATTERY_MAX_DELTA
    else:
        hot_asc, hot_desc = tuple(settings.hot_ascending), tuple(settings.hot_descending)
        cold_asc, cold_desc = tuple(settings.cold_ascending), tuple(settings.cold_descending)
        battery_desc = tuple(settings.battery_descending)
        temp_delta = settings.temperature_max_delta
        battery_delta = settings.battery_max_delta

    return {
        Channel.HOT: ChannelThresholds(
            channel=Channel.HOT,
            label="Hot compartment",
            unit="°C",
            ascending=hot_asc,
            descending=hot_desc,
            max_delta=temp_delta,
        ),
        Channel.COLD: ChannelThresholds(
            channel=Channel.COLD,
            label="Cold compartment",
            unit="°C",
            ascending=cold_asc,
            descending=cold_desc,
            max_delta=temp_delta,
        ),
        Channel.BATTERY: ChannelThresholds(
            channel=Channel.BATTERY,
            label="Battery",
            unit="%",
            descending=battery_desc,
            max_delta=battery_delta,
            initial_previous=BATTERY_INITIAL_PREVIOUS,
        ),
    }
