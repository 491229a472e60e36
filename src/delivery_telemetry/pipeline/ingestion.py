"""Ingestion pipeline: raw frames in, rate-limited events out.

One pipeline instance is one monitoring session. It owns the parser, the
threshold monitor, the rate limiter and the event dispatcher, keeps the
session counters, and remembers the last good value of every field for
display. Call reset() when a new connection starts.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field

from delivery_telemetry.config.settings import TelemetrySettings
from delivery_telemetry.frames import FrameParser
from delivery_telemetry.models import (
    Channel,
    Event,
    EventCategory,
    FrameDiagnostic,
    Severity,
    TelemetrySample,
)
from delivery_telemetry.monitoring import (
    ThresholdEvent,
    ThresholdMonitor,
    build_channel_thresholds,
)
from delivery_telemetry.pipeline.sink import (
    EventDispatcher,
    EventSink,
    LoggingSink,
    create_sink_breaker,
)
from delivery_telemetry.ratelimit import (
    CategoryPolicy,
    EventRateLimiter,
    build_category_policies,
)
from delivery_telemetry.utils.timestamps import utc_now

log = structlog.get_logger()

SENSOR_ERROR_STATE = "error"
SENSOR_OK_STATE = "ok"

_COMPARTMENT_LABELS = {
    Channel.HOT: "Hot compartment",
    Channel.COLD: "Cold compartment",
}


class LastKnownValues(BaseModel):
    """Last good value of every field, for display.

    A missing or invalid field keeps the previous value. Sensor errors are
    flagged separately so a display can show "error" next to the last
    reading.
    """

    model_config = ConfigDict(frozen=True)

    battery_percent: Optional[int] = None
    hot_temp: Optional[float] = None
    cold_temp: Optional[float] = None
    closed: Optional[bool] = None
    active_function_count: Optional[int] = None
    shake_magnitude: Optional[float] = None
    hot_sensor_error: bool = False
    cold_sensor_error: bool = False

    def apply(self, sample: TelemetrySample) -> "LastKnownValues":
        """Return a copy updated with the good fields of a sample."""
        update: dict = {}
        for name in ("battery_percent", "closed", "active_function_count", "shake_magnitude"):
            value = getattr(sample, name)
            if value is not None:
                update[name] = value

        if sample.hot_temp_value is not None:
            update["hot_temp"] = sample.hot_temp_value
            update["hot_sensor_error"] = False
        elif sample.hot_sensor_error:
            update["hot_sensor_error"] = True

        if sample.cold_temp_value is not None:
            update["cold_temp"] = sample.cold_temp_value
            update["cold_sensor_error"] = False
        elif sample.cold_sensor_error:
            update["cold_sensor_error"] = True

        return self.model_copy(update=update) if update else self


class PipelineStatistics(BaseModel):
    """Processing counters for diagnostics; never used to make decisions."""

    model_config = ConfigDict(frozen=True)

    total_processed: int = 0
    invalid_count: int = 0
    success_rate: int = Field(default=100, description="Percent of frames with usable data")
    events_emitted: int = 0
    events_suppressed: int = 0
    sink_failures: int = 0

    @property
    def has_issues(self) -> bool:
        """Check if the stream quality looks degraded."""
        return self.success_rate < 80 or self.invalid_count > 50

    def recommendations(self) -> List[str]:
        """Suggestions for improving data quality."""
        recommendations: List[str] = []
        if self.total_processed == 0:
            recommendations.append("No frames processed yet - check the connection")
        if self.success_rate < 80:
            recommendations.append("Low share of usable frames - check link stability")
        if self.invalid_count > 50:
            recommendations.append("Many invalid frames - check the device firmware or wiring")
        if self.sink_failures:
            recommendations.append("Event sink is failing - events are not being persisted")
        return recommendations


class IngestResult(BaseModel):
    """Outcome of ingesting one raw line."""

    model_config = ConfigDict(frozen=True)

    sample: TelemetrySample
    events: Tuple[Event, ...] = ()
    diagnostics: Tuple[FrameDiagnostic, ...] = ()
    statistics: PipelineStatistics
    display: LastKnownValues


# A candidate event with the state passed to the rate limiter
_Candidate = Tuple[Event, Any]


class IngestionPipeline:
    """Parser, monitors, rate limiter and sink for one telemetry session.

    Lines must be ingested in arrival order from a single producer; the
    order of threshold detection depends on it.

    Example:
        >>> pipeline = IngestionPipeline(settings=TelemetrySettings(sink_background=False))
        >>> result = pipeline.ingest("85,25.50,15.20,1,2,0.15")
        >>> result.sample.battery_percent
        85
    """

    def __init__(
        self,
        sink: Optional[EventSink] = None,
        settings: Optional[TelemetrySettings] = None,
        parser: Optional[FrameParser] = None,
        monitor: Optional[ThresholdMonitor] = None,
        limiter: Optional[EventRateLimiter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            sink: Destination for admitted events. Defaults to LoggingSink.
            settings: Configuration; defaults to TelemetrySettings()
            parser: Frame parser; built from settings when None
            monitor: Threshold monitor; built from settings when None
            limiter: Rate limiter; built from settings when None
            clock: Source of "now" for event timestamps and cooldowns
        """
        self.settings = settings or TelemetrySettings()
        self.parser = parser or FrameParser.from_settings(self.settings)
        self.monitor = monitor or ThresholdMonitor(build_channel_thresholds(self.settings))
        self.limiter = limiter or EventRateLimiter(sampling_factor=self.settings.sampling_factor)
        self.policies = build_category_policies(self.settings.cooldowns)
        self._clock = clock or utc_now

        sink = sink or LoggingSink()
        self.dispatcher = EventDispatcher(
            sink,
            background=self.settings.sink_background,
            breaker=create_sink_breaker(
                type(sink).__name__,
                fail_max=self.settings.sink_fail_max,
                reset_timeout=self.settings.sink_reset_timeout,
            ),
            on_failure=self._on_sink_failure,
        )

        self._lock = threading.Lock()
        self._total_processed = 0
        self._invalid_count = 0
        self._events_emitted = 0
        self._events_suppressed = 0
        self._sink_failures = 0
        self._display = LastKnownValues()

    @property
    def display(self) -> LastKnownValues:
        return self._display

    def ingest(self, raw_line: Union[str, bytes]) -> IngestResult:
        """Process one raw frame.

        Never raises for malformed input: problems show up as diagnostics,
        counters and data-quality events.

        Args:
            raw_line: One frame as received from the line source

        Returns:
            IngestResult with the sample, admitted events and counters
        """
        if isinstance(raw_line, bytes):
            raw_line = raw_line.decode("ascii", errors="replace")

        now = self._clock()
        sample = self.parser.parse(raw_line)

        with self._lock:
            self._total_processed += 1
            packet = self._total_processed

        log.debug("frame_received", packet=packet, summary=sample.summary())

        candidates: List[_Candidate] = []
        if sample.is_empty:
            candidates.extend(self._record_invalid(sample, now))

        self._display = self._display.apply(sample)

        candidates.extend(self._temperature_candidates(sample, now))
        candidates.extend(self._battery_candidates(sample, now))
        candidates.extend(self._closure_candidates(sample, now))
        candidates.extend(self._shake_candidates(sample, now))
        candidates.extend(self._sensor_error_candidates(sample, now))

        events = [event for event, state in candidates if self._admit(event, state, now)]
        for event in events:
            self.dispatcher.dispatch(event)

        return IngestResult(
            sample=sample,
            events=tuple(events),
            diagnostics=sample.diagnostics,
            statistics=self.statistics(),
            display=self._display,
        )

    def consume(self, lines: Iterable[Union[str, bytes]]) -> PipelineStatistics:
        """Ingest every line of a source, in order.

        Args:
            lines: Line source (live transport or ScenarioGenerator.iter_lines())

        Returns:
            Statistics after the last line
        """
        for line in lines:
            self.ingest(line)
        return self.statistics()

    def _admit(self, event: Event, state: Any, now: datetime) -> bool:
        rule: CategoryPolicy = self.policies[event.category]
        admitted = self.limiter.admit(
            event.key,
            critical=event.is_critical,
            now=now,
            policy=rule.policy,
            cooldown=rule.cooldown,
            state=state,
        )
        with self._lock:
            if admitted:
                self._events_emitted += 1
            else:
                self._events_suppressed += 1
        return admitted

    def _record_invalid(self, sample: TelemetrySample, now: datetime) -> List[_Candidate]:
        with self._lock:
            self._invalid_count += 1
            invalid = self._invalid_count

        reason = sample.diagnostics[0].detail if sample.diagnostics else "no usable fields"
        log.warning("frame_invalid", invalid_count=invalid, reason=reason)

        if invalid % self.settings.invalid_report_every != 0:
            return []
        event = Event(
            category=EventCategory.DATA_QUALITY,
            key="data_quality:invalid_frames",
            message=f"Accumulated {invalid} invalid frames. Last error: {reason}",
            severity=Severity.WARNING,
            timestamp=now,
            metadata={"invalid_count": invalid},
        )
        return [(event, None)]

    def _temperature_candidates(self, sample: TelemetrySample, now: datetime) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        # Sensor errors and invalid readings arrive here as None and are ignored
        for channel, value in (
            (Channel.HOT, sample.hot_temp_value),
            (Channel.COLD, sample.cold_temp_value),
        ):
            for crossing in self.monitor.update(channel, value):
                candidates.append((self._threshold_event(crossing, EventCategory.TEMPERATURE, now), None))
        return candidates

    def _battery_candidates(self, sample: TelemetrySample, now: datetime) -> List[_Candidate]:
        if sample.battery_percent is None:
            return []
        return [
            (self._threshold_event(crossing, EventCategory.BATTERY, now), None)
            for crossing in self.monitor.update(Channel.BATTERY, sample.battery_percent)
        ]

    @staticmethod
    def _threshold_event(crossing: ThresholdEvent, category: EventCategory, now: datetime) -> Event:
        return Event(
            category=EventCategory.ANOMALY if crossing.is_anomaly else category,
            key=crossing.event_key,
            message=crossing.message,
            severity=crossing.severity,
            timestamp=now,
            metadata={
                "channel": crossing.channel.value,
                "previous": crossing.previous,
                "current": crossing.current,
                "threshold": str(crossing.key) if crossing.key else None,
            },
        )

    def _closure_candidates(self, sample: TelemetrySample, now: datetime) -> List[_Candidate]:
        if sample.closed is None:
            return []
        event = Event(
            category=EventCategory.CLOSURE,
            key="closure",
            message="Container closed" if sample.closed else "Container opened",
            severity=Severity.INFO,
            timestamp=now,
        )
        return [(event, sample.closed)]

    def _shake_candidates(self, sample: TelemetrySample, now: datetime) -> List[_Candidate]:
        magnitude = sample.shake_magnitude
        if magnitude is None:
            return []
        if magnitude > self.settings.shake_extreme:
            label, severity = "Extreme shaking", Severity.WARNING
        elif magnitude > self.settings.shake_strong:
            label, severity = "Strong shaking", Severity.INFO
        else:
            return []
        event = Event(
            category=EventCategory.SHAKE,
            key="shake",
            message=f"{label} ({magnitude:.2f} g)",
            severity=severity,
            timestamp=now,
            metadata={"magnitude": magnitude},
        )
        return [(event, None)]

    def _sensor_error_candidates(self, sample: TelemetrySample, now: datetime) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        for channel, is_error, value in (
            (Channel.HOT, sample.hot_sensor_error, sample.hot_temp_value),
            (Channel.COLD, sample.cold_sensor_error, sample.cold_temp_value),
        ):
            key = f"sensor:{channel.value}"
            label = _COMPARTMENT_LABELS[channel]
            if is_error:
                event = Event(
                    category=EventCategory.SENSOR_ERROR,
                    key=key,
                    message=f"{label}: temperature sensor error",
                    severity=Severity.WARNING,
                    timestamp=now,
                )
                candidates.append((event, SENSOR_ERROR_STATE))
            elif value is not None and self.limiter.current_state(key) == SENSOR_ERROR_STATE:
                event = Event(
                    category=EventCategory.SENSOR_ERROR,
                    key=key,
                    message=f"{label}: temperature sensor recovered ({value:.1f}°C)",
                    severity=Severity.SUCCESS,
                    timestamp=now,
                )
                candidates.append((event, SENSOR_OK_STATE))
        return candidates

    def _on_sink_failure(self, event: Event, error: BaseException) -> None:
        with self._lock:
            self._sink_failures += 1
            failures = self._sink_failures

        rule = self.policies[EventCategory.SINK]
        if self.limiter.admit(
            "sink:failure",
            now=self._clock(),
            policy=rule.policy,
            cooldown=rule.cooldown,
        ):
            log.warning(
                "sink_failure",
                failures=failures,
                error=str(error),
                event_key=event.key,
            )

    def statistics(self) -> PipelineStatistics:
        """Get processed and invalid counts with the derived success rate."""
        with self._lock:
            total = self._total_processed
            invalid = self._invalid_count
            success_rate = int((total - invalid) / total * 100) if total > 0 else 100
            return PipelineStatistics(
                total_processed=total,
                invalid_count=invalid,
                success_rate=success_rate,
                events_emitted=self._events_emitted,
                events_suppressed=self._events_suppressed,
                sink_failures=self._sink_failures,
            )

    def status_report(self) -> str:
        """One-line summary of the session for diagnostics."""
        stats = self.statistics()
        display = self._display
        battery = "n/a" if display.battery_percent is None else f"{display.battery_percent}%"
        if display.closed is None:
            closure = "unknown"
        else:
            closure = "closed" if display.closed else "open"
        return (
            f"Pipeline: {stats.success_rate}% usable | "
            f"processed: {stats.total_processed} | "
            f"invalid: {stats.invalid_count} | "
            f"events: {stats.events_emitted} | "
            f"battery: {battery} | "
            f"container: {closure}"
        )

    def reset(self) -> None:
        """Start a new session: zero counters, clear caches, monitors and limiter."""
        with self._lock:
            self._total_processed = 0
            self._invalid_count = 0
            self._events_emitted = 0
            self._events_suppressed = 0
            self._sink_failures = 0
            self._display = LastKnownValues()
        self.monitor.reset()
        self.limiter.reset()
        log.info("pipeline_reset")

    def close(self) -> None:
        """Deliver pending events and stop the sink worker."""
        self.dispatcher.close()

    def __enter__(self) -> "IngestionPipeline":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
