"""Tests for the ingestion pipeline."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from delivery_telemetry.config import TelemetrySettings
from delivery_telemetry.models import DiagnosticCode, EventCategory, Severity
from delivery_telemetry.pipeline import IngestionPipeline, PipelineStatistics
from delivery_telemetry.simulation import Scenario, ScenarioGenerator

T0 = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)

VALID = "85,25.50,15.20,1,2,0.15"


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)

    def of(self, category):
        return [e for e in self.events if e.category == category]


class FakeClock:
    """Clock that moves only when told to, or by a fixed tick per call."""

    def __init__(self, tick: float = 0.0):
        self.now = T0
        self.tick = timedelta(seconds=tick)

    def __call__(self):
        current = self.now
        self.now += self.tick
        return current

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def frame(battery=85, hot="25.50", cold="15.20", closed=1, functions=0, shake="0.10"):
    return f"{battery},{hot},{cold},{closed},{functions},{shake}"


def make_pipeline(sink=None, clock=None, **overrides):
    overrides.setdefault("sink_background", False)
    return IngestionPipeline(
        sink=sink if sink is not None else RecordingSink(),
        settings=TelemetrySettings(**overrides),
        clock=clock or FakeClock(),
    )


class TestIngestBasics:
    """Tests for ingesting single frames."""

    def test_valid_frame(self):
        """Test a valid frame updates the counters."""
        pipeline = make_pipeline()
        result = pipeline.ingest(VALID)

        assert result.sample.battery_percent == 85
        assert result.sample.hot_temp == 25.5
        assert result.diagnostics == ()
        assert result.statistics.total_processed == 1
        assert result.statistics.invalid_count == 0
        assert result.statistics.success_rate == 100

    def test_first_closure_state_is_reported(self):
        """Test the first closure state produces an event."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        result = pipeline.ingest(VALID)

        assert [e.message for e in result.events] == ["Container closed"]
        assert sink.events == list(result.events)

    def test_bytes_input(self):
        """Test raw bytes are accepted."""
        result = make_pipeline().ingest(VALID.encode("ascii"))
        assert result.sample.battery_percent == 85

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "garbage",
            "1,2,3",
            b"\xff\xfe\x00",
            ",,,,,,,,",
            "85,25.5,15.2,1," + "1" * 5000 + ",0.1",
        ],
    )
    def test_never_raises(self, line):
        """Test ingest never raises for hostile input."""
        result = make_pipeline().ingest(line)
        assert result.statistics.total_processed == 1

    def test_event_timestamp_comes_from_clock(self):
        """Test events are stamped with the pipeline clock."""
        result = make_pipeline().ingest(VALID)
        assert result.events[0].timestamp == T0


class TestInvalidFrames:
    """Tests for invalid frame accounting."""

    def test_malformed_frame_counted(self):
        """Test malformed frames count as invalid."""
        pipeline = make_pipeline()
        result = pipeline.ingest("85,25.50")

        assert result.statistics.invalid_count == 1
        assert result.diagnostics[0].code == DiagnosticCode.MALFORMED_FRAME
        assert result.statistics.success_rate == 0

    def test_partially_valid_frame_is_not_invalid(self):
        """Test a frame with some good fields is not invalid."""
        pipeline = make_pipeline()
        result = pipeline.ingest("abc,25.50,15.20,1,2,0.15")
        assert result.statistics.invalid_count == 0
        assert len(result.diagnostics) == 1

    def test_success_rate(self):
        """Test success rate reflects invalid frames."""
        pipeline = make_pipeline()
        pipeline.ingest(VALID)
        pipeline.ingest("nonsense")
        assert pipeline.statistics().success_rate == 50

    def test_data_quality_event_every_tenth_invalid(self):
        """Test every tenth invalid frame raises a data quality event."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        for _ in range(9):
            pipeline.ingest("x")
        assert sink.of(EventCategory.DATA_QUALITY) == []

        pipeline.ingest("x")
        events = sink.of(EventCategory.DATA_QUALITY)
        assert len(events) == 1
        assert "Accumulated 10 invalid frames" in events[0].message
        assert events[0].severity == Severity.WARNING

    def test_data_quality_event_is_rate_limited(self):
        """Test data quality events respect their cooldown."""
        sink = RecordingSink()
        clock = FakeClock()
        pipeline = make_pipeline(sink, clock)
        for _ in range(20):
            pipeline.ingest("x")
        assert len(sink.of(EventCategory.DATA_QUALITY)) == 1

        clock.advance(301)
        for _ in range(10):
            pipeline.ingest("x")
        assert len(sink.of(EventCategory.DATA_QUALITY)) == 2

    def test_report_interval_configurable(self):
        """Test the invalid report interval comes from settings."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink, invalid_report_every=3)
        for _ in range(3):
            pipeline.ingest("x")
        assert len(sink.of(EventCategory.DATA_QUALITY)) == 1


class TestTemperatureEvents:
    """Tests for temperature threshold events."""

    def test_crossing_produces_event(self):
        """Test a threshold crossing produces a temperature event."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(hot="38.00"))
        result = pipeline.ingest(frame(hot="41.20"))

        events = [e for e in result.events if e.category == EventCategory.TEMPERATURE]
        assert len(events) == 1
        assert events[0].key == "hot:ascending:40"
        assert events[0].metadata["previous"] == 38
        assert events[0].metadata["current"] == 41

    def test_oscillation_produces_one_event(self):
        """Test oscillating around a threshold reports once."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        for hot in ["39.00", "41.00", "39.00", "41.00", "39.00", "41.00"]:
            pipeline.ingest(frame(hot=hot))
        assert [e.key for e in sink.of(EventCategory.TEMPERATURE)] == ["hot:ascending:40"]

    def test_refire_within_cooldown_is_suppressed(self):
        """A re-armed threshold crossing again within 60 s is not emitted."""
        sink = RecordingSink()
        clock = FakeClock()
        pipeline = make_pipeline(sink, clock)
        for hot in ["38.00", "41.00", "34.00"]:
            pipeline.ingest(frame(hot=hot))

        pipeline.ingest(frame(hot="41.00"))
        keys = [e.key for e in sink.of(EventCategory.TEMPERATURE)]
        assert keys == ["hot:ascending:40", "hot:descending:35"]
        assert pipeline.limiter.entry("hot:ascending:40").suppressed_count == 1

        pipeline.ingest(frame(hot="34.00"))
        clock.advance(61)
        pipeline.ingest(frame(hot="41.00"))
        keys = [e.key for e in sink.of(EventCategory.TEMPERATURE)]
        assert keys[-1] == "hot:ascending:40"

    def test_anomaly_category(self):
        """Test large jumps are reported as anomalies."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(cold="15.00"))
        pipeline.ingest(frame(cold="-5.00"))
        anomalies = sink.of(EventCategory.ANOMALY)
        assert [e.key for e in anomalies] == ["cold:anomaly"]

    def test_missing_temperature_does_not_use_stale_value(self):
        """Test missing readings are not replaced by the last good value."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(hot="38.00"))
        pipeline.ingest(frame(hot="bad"))
        pipeline.ingest(frame(hot="41.00"))
        assert [e.key for e in sink.of(EventCategory.TEMPERATURE)] == ["hot:ascending:40"]


class TestBatteryEvents:
    """Tests for battery threshold events."""

    def test_critical_battery_bypasses_rate_limit(self):
        """Test critical battery events are never suppressed."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(battery=6))
        pipeline.ingest(frame(battery=5))

        battery = sink.of(EventCategory.BATTERY)
        assert [e.key for e in battery] == [
            "battery:descending:50",
            "battery:descending:30",
            "battery:descending:15",
            "battery:descending:5",
        ]
        assert battery[-1].severity == Severity.CRITICAL


class TestClosureEvents:
    """Tests for closure state changes."""

    def test_only_changes_are_reported(self):
        """Test repeated closure states are suppressed."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        for closed in [1, 1, 0, 0, 0, 1]:
            pipeline.ingest(frame(closed=closed))
        messages = [e.message for e in sink.of(EventCategory.CLOSURE)]
        assert messages == ["Container closed", "Container opened", "Container closed"]


class TestShakeEvents:
    """Tests for shake classification."""

    def test_extreme_shaking(self):
        """Test extreme shaking is a warning."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(shake="3.00"))
        shakes = sink.of(EventCategory.SHAKE)
        assert len(shakes) == 1
        assert shakes[0].message == "Extreme shaking (3.00 g)"
        assert shakes[0].severity == Severity.WARNING

    def test_strong_shaking(self):
        """Test strong shaking is informational."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(shake="1.50"))
        shakes = sink.of(EventCategory.SHAKE)
        assert shakes[0].message.startswith("Strong shaking")
        assert shakes[0].severity == Severity.INFO

    def test_light_shaking_ignored(self):
        """Test light shaking produces no event."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(shake="1.00"))
        assert sink.of(EventCategory.SHAKE) == []

    def test_shake_cooldown(self):
        """Test shake events respect their cooldown."""
        sink = RecordingSink()
        clock = FakeClock()
        pipeline = make_pipeline(sink, clock)
        pipeline.ingest(frame(shake="3.00"))
        clock.advance(1)
        pipeline.ingest(frame(shake="3.00"))
        clock.advance(2)
        pipeline.ingest(frame(shake="3.00"))
        assert len(sink.of(EventCategory.SHAKE)) == 2


class TestSensorErrors:
    """Tests for sensor error sampling and recovery."""

    def test_error_sampling_and_recovery(self):
        """Test sensor errors are sampled and recovery is reported."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        for _ in range(11):
            pipeline.ingest(frame(hot="er"))

        errors = sink.of(EventCategory.SENSOR_ERROR)
        assert len(errors) == 2
        assert all(e.key == "sensor:hot" for e in errors)
        assert errors[0].severity == Severity.WARNING

        pipeline.ingest(frame(hot="25.00"))
        recovered = sink.of(EventCategory.SENSOR_ERROR)[-1]
        assert recovered.severity == Severity.SUCCESS
        assert "recovered" in recovered.message

    def test_no_recovery_event_without_prior_error(self):
        """Test healthy readings alone produce no recovery."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(hot="25.00"))
        pipeline.ingest(frame(hot="26.00"))
        assert sink.of(EventCategory.SENSOR_ERROR) == []

    def test_sensor_errors_are_independent(self):
        """Test hot and cold sensor errors are tracked separately."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(hot="er", cold="er"))
        assert sorted(e.key for e in sink.of(EventCategory.SENSOR_ERROR)) == [
            "sensor:cold",
            "sensor:hot",
        ]

    def test_error_frames_are_not_invalid(self):
        """Test sensor error frames are not counted invalid."""
        pipeline = make_pipeline()
        result = pipeline.ingest(frame(hot="er", cold="er"))
        assert result.statistics.invalid_count == 0


class TestLastKnownValues:
    """Tests for the display carry-forward cache."""

    def test_keeps_last_good_values(self):
        """Test display keeps the last good value of each field."""
        pipeline = make_pipeline()
        pipeline.ingest(frame(battery=80, hot="25.50"))
        result = pipeline.ingest("abc,er,bad,1,2,0.15")

        assert result.display.battery_percent == 80
        assert result.display.hot_temp == 25.5
        assert result.display.hot_sensor_error is True
        assert result.display.cold_temp == 15.2
        assert result.display.cold_sensor_error is False

    def test_error_flag_cleared_on_reading(self):
        """Test a numeric reading clears the error flag."""
        pipeline = make_pipeline()
        pipeline.ingest(frame(hot="er"))
        result = pipeline.ingest(frame(hot="30.00"))
        assert result.display.hot_sensor_error is False
        assert result.display.hot_temp == 30.0


class TestSinkIsolation:
    """Tests for sink failures."""

    def test_failing_sink_never_raises(self):
        """Test a failing sink never breaks ingestion."""
        sink = MagicMock()
        sink.emit.side_effect = RuntimeError("disk full")
        pipeline = make_pipeline(sink)

        for closed in [1, 0, 1, 0, 1, 0]:
            pipeline.ingest(frame(closed=closed))

        stats = pipeline.statistics()
        assert stats.sink_failures == 6
        assert stats.events_emitted == 6

    def test_sink_failure_log_is_rate_limited(self):
        """Test repeated sink failures are logged once per cooldown."""
        sink = MagicMock()
        sink.emit.side_effect = RuntimeError("disk full")
        pipeline = make_pipeline(sink)

        with capture_logs() as logs:
            for closed in [1, 0, 1, 0]:
                pipeline.ingest(frame(closed=closed))

        failures = [entry for entry in logs if entry["event"] == "sink_failure"]
        assert len(failures) == 1
        assert failures[0]["error"] == "disk full"

    def test_circuit_opens_after_repeated_failures(self):
        """Test the sink breaker opens after repeated failures."""
        sink = MagicMock()
        sink.emit.side_effect = RuntimeError("disk full")
        pipeline = make_pipeline(sink, sink_fail_max=2)

        for closed in [1, 0, 1, 0]:
            pipeline.ingest(frame(closed=closed))

        assert sink.emit.call_count == 2
        assert pipeline.dispatcher.stats == {"delivered": 0, "failed": 4}

    def test_background_delivery_preserves_order(self):
        """Test background delivery keeps event order."""
        sink = RecordingSink()
        with make_pipeline(sink, sink_background=True) as pipeline:
            for closed in [1, 0, 1, 0]:
                pipeline.ingest(frame(closed=closed))
        messages = [e.message for e in sink.events]
        assert messages == [
            "Container closed",
            "Container opened",
            "Container closed",
            "Container opened",
        ]


class TestSessionLifecycle:
    """Tests for reset, statistics and status reporting."""

    def test_reset(self):
        """Test reset clears counters and state."""
        sink = RecordingSink()
        pipeline = make_pipeline(sink)
        pipeline.ingest(frame(hot="38.00"))
        pipeline.ingest(frame(hot="41.00"))
        pipeline.ingest("x")

        pipeline.reset()

        stats = pipeline.statistics()
        assert stats.total_processed == 0
        assert stats.invalid_count == 0
        assert stats.events_emitted == 0
        assert pipeline.display.hot_temp is None

        pipeline.ingest(frame(hot="38.00"))
        pipeline.ingest(frame(hot="41.00"))
        assert [e.key for e in sink.of(EventCategory.TEMPERATURE)] == [
            "hot:ascending:40",
            "hot:ascending:40",
        ]

    def test_status_report(self):
        """Test the one-line status report."""
        pipeline = make_pipeline()
        pipeline.ingest(VALID)
        pipeline.ingest("x")
        report = pipeline.status_report()
        assert "50% usable" in report
        assert "processed: 2" in report
        assert "invalid: 1" in report
        assert "battery: 85%" in report
        assert "container: closed" in report

    def test_status_report_before_any_frame(self):
        """Test the status report of an idle pipeline."""
        report = make_pipeline().status_report()
        assert "battery: n/a" in report
        assert "container: unknown" in report

    def test_consume(self):
        """Test consume ingests every line in order."""
        pipeline = make_pipeline()
        stats = pipeline.consume([VALID, "x", VALID])
        assert stats.total_processed == 3
        assert stats.invalid_count == 1


class TestPipelineStatistics:
    """Tests for PipelineStatistics helpers."""

    def test_healthy_stream(self):
        """Test a healthy stream has no issues."""
        stats = PipelineStatistics(total_processed=100, invalid_count=2, success_rate=98)
        assert stats.has_issues is False
        assert stats.recommendations() == []

    def test_degraded_stream(self):
        """Test a degraded stream gets recommendations."""
        stats = PipelineStatistics(
            total_processed=100, invalid_count=60, success_rate=40, sink_failures=3
        )
        assert stats.has_issues is True
        assert len(stats.recommendations()) == 3

    def test_no_frames(self):
        """Test statistics before any frame."""
        assert PipelineStatistics().recommendations() == [
            "No frames processed yet - check the connection"
        ]


class TestGeneratedStreams:
    """End-to-end runs fed by the scenario generator."""

    def run(self, scenario, steps, tick=0.3):
        sink = RecordingSink()
        pipeline = make_pipeline(sink, FakeClock(tick=tick))
        generator = ScenarioGenerator(seed=3)
        generator.set_scenario(scenario)
        stats = pipeline.consume(generator.iter_lines(limit=steps, cadence=0))
        return sink, stats

    def test_heating_cycle(self):
        """Test a heating cycle crosses every hot threshold."""
        sink, stats = self.run(Scenario.HEATING_CYCLE, 150)
        keys = {e.key for e in sink.of(EventCategory.TEMPERATURE)}
        assert {
            "hot:ascending:40",
            "hot:ascending:50",
            "hot:descending:45",
            "hot:descending:35",
        } <= keys
        assert "hot:ascending:60" not in keys
        assert stats.invalid_count == 0

    def test_bag_cycle(self):
        """Test a bag cycle reports open and close events."""
        sink, _ = self.run(Scenario.BAG_CYCLE, 133)
        assert len(sink.of(EventCategory.CLOSURE)) == 6

    def test_sensor_error_injection(self):
        """Test injected sensor errors are reported."""
        sink, stats = self.run(Scenario.SENSOR_ERROR_INJECTION, 30)
        events = sink.of(EventCategory.SENSOR_ERROR)
        assert any(e.key == "sensor:hot" and e.severity == Severity.SUCCESS for e in events)
        assert any(e.key == "sensor:cold" and e.severity == Severity.WARNING for e in events)
        assert stats.invalid_count == 0

    def test_shake_cycle(self):
        """Test a shake cycle reports shaking."""
        sink, _ = self.run(Scenario.SHAKE_CYCLE, 117, tick=2.0)
        messages = [e.message for e in sink.of(EventCategory.SHAKE)]
        assert any(m.startswith("Extreme") for m in messages)
        assert any(m.startswith("Strong") for m in messages)

    def test_battery_drain(self):
        """Test a battery drain reaches the low battery alerts."""
        sink, _ = self.run(Scenario.BATTERY_DRAIN, 100)
        keys = [e.key for e in sink.of(EventCategory.BATTERY)]
        assert keys == [
            "battery:descending:50",
            "battery:descending:30",
            "battery:descending:15",
            "battery:descending:5",
        ]
