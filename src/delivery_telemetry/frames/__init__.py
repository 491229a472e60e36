"""Telemetry frame parsing for Delivery Telemetry."""

from .parser import EXPECTED_FIELD_COUNT, SENSOR_ERROR_SENTINEL, FrameParser

__all__ = [
    "EXPECTED_FIELD_COUNT",
    "FrameParser",
    "SENSOR_ERROR_SENTINEL",
]
