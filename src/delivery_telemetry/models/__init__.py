"""Data models for Delivery Telemetry."""

from .enums import Channel, DiagnosticCode, Direction, EventCategory, SensorError, Severity
from .event import Event
from .sample import FIELD_NAMES, FrameDiagnostic, TelemetrySample

__all__ = [
    "Channel",
    "DiagnosticCode",
    "Direction",
    "Event",
    "EventCategory",
    "FIELD_NAMES",
    "FrameDiagnostic",
    "SensorError",
    "Severity",
    "TelemetrySample",
]
