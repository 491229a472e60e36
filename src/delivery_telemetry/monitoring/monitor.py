"""Hysteresis-based threshold monitor for numeric telemetry channels.

Each channel keeps its last rounded value and the set of thresholds that
have fired since they were last armed. A threshold fires once when the
value crosses it and stays latched until the value crosses back past a
threshold of the opposite direction, so a reading wobbling around one
boundary produces a single event.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import structlog

from delivery_telemetry.models.enums import Channel, Direction, Severity
from delivery_telemetry.monitoring.thresholds import (
    ChannelThresholds,
    ThresholdKey,
    build_channel_thresholds,
)

log = structlog.get_logger()


@dataclass
class ChannelThresholdState:
    """Session state of one channel."""

    last_rounded_value: Optional[int] = None
    armed: Set[ThresholdKey] = field(default_factory=set)


@dataclass(frozen=True)
class ThresholdEvent:
    """Candidate event produced by the monitor.

    Attributes:
        channel: Channel the reading belongs to
        key: Threshold that was crossed (None for anomalies)
        previous: Previous rounded value
        current: Current rounded value
        message: Human-readable message including the previous value
        severity: Severity taken from the threshold table
        is_anomaly: True for implausibly large jumps between samples
    """

    channel: Channel
    key: Optional[ThresholdKey]
    previous: int
    current: int
    message: str
    severity: Severity
    is_anomaly: bool = False

    @property
    def event_key(self) -> str:
        """Stable rate-limiter key for this event."""
        if self.is_anomaly:
            return f"{self.channel.value}:anomaly"
        return f"{self.channel.value}:{self.key}"


def round_reading(value: float) -> int:
    """Round a reading the way the device display does (toward zero)."""
    return int(value)


class ThresholdMonitor:
    """Detects threshold crossings on the HOT, COLD and BATTERY channels.

    One monitor belongs to one session. Call reset() when a new connection
    starts so latches from the previous session do not hide new events.

    Example:
        >>> monitor = ThresholdMonitor()
        >>> monitor.update(Channel.HOT, 38.0)
        []
        >>> [e.key.value for e in monitor.update(Channel.HOT, 41.2)]
        [40]
    """

    def __init__(self, thresholds: Optional[Dict[Channel, ChannelThresholds]] = None) -> None:
        """Initialize the monitor with optional custom tables.

        Args:
            thresholds: Per-channel tables. Defaults to build_channel_thresholds().
        """
        self._thresholds = thresholds or build_channel_thresholds()
        self._states: Dict[Channel, ChannelThresholdState] = {
            channel: ChannelThresholdState() for channel in self._thresholds
        }
        self._lock = threading.Lock()

    @property
    def channels(self) -> List[Channel]:
        return list(self._thresholds)

    def thresholds_for(self, channel: Channel) -> ChannelThresholds:
        return self._thresholds[channel]

    def state(self, channel: Channel) -> ChannelThresholdState:
        """Return a copy of a channel's current state."""
        with self._lock:
            current = self._states[channel]
            return ChannelThresholdState(
                last_rounded_value=current.last_rounded_value,
                armed=set(current.armed),
            )

    def update(self, channel: Channel, value: Optional[float]) -> List[ThresholdEvent]:
        """Feed a new reading and return the events it triggers.

        A None reading (missing or sensor error) is ignored: it neither fires
        nor suppresses a transition, and the last value is kept.

        Args:
            channel: Channel the reading belongs to
            value: Reading in the channel's unit, or None

        Returns:
            List of ThresholdEvent, possibly empty
        """
        if value is None:
            return []

        current = round_reading(value)
        with self._lock:
            state = self._states[channel]
            previous = state.last_rounded_value
            state.last_rounded_value = current

        log.debug("channel_reading", channel=channel.value, previous=previous, current=current)

        if previous is None:
            baseline = self._thresholds[channel].initial_previous
            if baseline is None:
                return []
            return self._observe(channel, baseline, current, check_delta=False)

        return self._observe(channel, previous, current, check_delta=True)

    def observe(
        self,
        channel: Channel,
        previous_rounded: Optional[int],
        current_rounded: int,
    ) -> List[ThresholdEvent]:
        """Evaluate a transition between two rounded values.

        Uses and updates only the channel's armed set; the stored last value
        is left to update().

        Args:
            channel: Channel to evaluate
            previous_rounded: Previous value, or None when there is none
            current_rounded: New value

        Returns:
            List of ThresholdEvent, possibly empty
        """
        if previous_rounded is None:
            return []
        return self._observe(channel, previous_rounded, current_rounded, check_delta=True)

    def _observe(
        self,
        channel: Channel,
        previous: int,
        current: int,
        check_delta: bool,
    ) -> List[ThresholdEvent]:
        tables = self._thresholds[channel]
        events: List[ThresholdEvent] = []

        if check_delta and tables.max_delta is not None:
            delta = current - previous
            if abs(delta) > tables.max_delta:
                events.append(self._anomaly(tables, previous, current))

        if current > previous:
            direction = Direction.ASCENDING
        elif current < previous:
            direction = Direction.DESCENDING
        else:
            return events

        with self._lock:
            armed = self._states[channel].armed
            for rule in tables.rules(direction):
                if direction is Direction.ASCENDING:
                    crossed = previous < rule.value <= current
                else:
                    crossed = current <= rule.value < previous
                key = ThresholdKey(rule.value, direction)
                if not crossed or key in armed:
                    continue

                armed.add(key)
                released = self._release_opposite(armed, key)
                events.append(
                    ThresholdEvent(
                        channel=channel,
                        key=key,
                        previous=previous,
                        current=current,
                        message=f"{tables.label}: {rule.message} (was {previous}{tables.unit})",
                        severity=rule.severity,
                    )
                )
                log.info(
                    "threshold_crossed",
                    channel=channel.value,
                    threshold=str(key),
                    previous=previous,
                    current=current,
                    rearmed=[str(k) for k in released],
                )

        return events

    @staticmethod
    def _release_opposite(armed: Set[ThresholdKey], fired: ThresholdKey) -> List[ThresholdKey]:
        """Re-arm the opposite-direction thresholds the value has moved back past."""
        if fired.direction is Direction.DESCENDING:
            released = [
                k for k in armed
                if k.direction is Direction.ASCENDING and k.value > fired.value
            ]
        else:
            released = [
                k for k in armed
                if k.direction is Direction.DESCENDING and k.value < fired.value
            ]
        for key in released:
            armed.discard(key)
        return released

    @staticmethod
    def _anomaly(tables: ChannelThresholds, previous: int, current: int) -> ThresholdEvent:
        log.warning(
            "reading_jump_detected",
            channel=tables.channel.value,
            previous=previous,
            current=current,
            max_delta=tables.max_delta,
        )
        return ThresholdEvent(
            channel=tables.channel,
            key=None,
            previous=previous,
            current=current,
            message=(
                f"{tables.label}: implausible jump from {previous}{tables.unit} "
                f"to {current}{tables.unit}"
            ),
            severity=Severity.WARNING,
            is_anomaly=True,
        )

    def reset(self) -> None:
        """Clear every latch and last value, for a new session."""
        with self._lock:
            for state in self._states.values():
                state.last_rounded_value = None
                state.armed.clear()
        log.debug("threshold_monitor_reset")

    def statistics(self) -> Dict[str, Dict[str, Optional[int]]]:
        """Get last values and latched-threshold counts per channel."""
        with self._lock:
            return {
                channel.value: {
                    "last_value": state.last_rounded_value,
                    "armed_count": len(state.armed),
                }
                for channel, state in self._states.items()
            }
