"""Threshold monitoring for temperature and battery channels."""

from delivery_telemetry.monitoring.monitor import (
    ChannelThresholdState,
    ThresholdEvent,
    ThresholdMonitor,
    round_reading,
)
from delivery_telemetry.monitoring.thresholds import (
    DEFAULT_BATTERY_DESCENDING,
    DEFAULT_COLD_ASCENDING,
    DEFAULT_COLD_DESCENDING,
    DEFAULT_HOT_ASCENDING,
    DEFAULT_HOT_DESCENDING,
    ChannelThresholds,
    ThresholdKey,
    ThresholdRule,
    build_channel_thresholds,
)

__all__ = [
    "ChannelThresholdState",
    "ChannelThresholds",
    "DEFAULT_BATTERY_DESCENDING",
    "DEFAULT_COLD_ASCENDING",
    "DEFAULT_COLD_DESCENDING",
    "DEFAULT_HOT_ASCENDING",
    "DEFAULT_HOT_DESCENDING",
    "ThresholdEvent",
    "ThresholdKey",
    "ThresholdMonitor",
    "ThresholdRule",
    "build_channel_thresholds",
    "round_reading",
]
