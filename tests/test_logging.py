"""Tests for structured logging configuration."""

import json

import structlog

from delivery_telemetry.config import TelemetrySettings
from delivery_telemetry.logging import configure_from_settings, configure_logging, get_logger


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_output(self, capsys):
        """Test JSON renderer output fields."""
        configure_logging(log_format="json", log_level="INFO")
        structlog.get_logger().info("frame_received", packet=1)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "frame_received"
        assert record["packet"] == 1
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_filtering(self, capsys):
        """Test events below the level are dropped."""
        configure_logging(log_format="json", log_level="WARNING")
        log = structlog.get_logger()
        log.info("quiet_event")
        log.warning("loud_event")

        out = capsys.readouterr().out
        assert "quiet_event" not in out
        assert "loud_event" in out

    def test_text_output(self, capsys):
        """Test console renderer output."""
        configure_logging(log_format="text", log_level="DEBUG")
        structlog.get_logger().debug("scenario_phase", phase="heating")
        out = capsys.readouterr().out
        assert "scenario_phase" in out
        assert "heating" in out

    def test_from_settings(self, capsys):
        """Test configuration from TelemetrySettings."""
        configure_from_settings(TelemetrySettings(log_format="json", log_level="ERROR"))
        structlog.get_logger().warning("ignored_event")
        assert "ignored_event" not in capsys.readouterr().out


class TestGetLogger:
    """Tests for get_logger."""

    def test_binds_context(self, capsys):
        """Test get_logger binds keyword context."""
        configure_logging(log_format="json", log_level="INFO")
        get_logger(session="container-7").info("pipeline_reset")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["session"] == "container-7"
