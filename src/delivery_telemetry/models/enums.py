"""Shared enumerations for the Delivery Telemetry models."""

from enum import Enum


class Severity(str, Enum):
    """Severity level for emitted events."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    CRITICAL = "critical"


class EventCategory(str, Enum):
    """Category of an emitted event.

    The category decides which rate-limit policy applies to the event.
    """

    TEMPERATURE = "temperature"
    BATTERY = "battery"
    ANOMALY = "anomaly"
    CLOSURE = "closure"
    SHAKE = "shake"
    SENSOR_ERROR = "sensor_error"
    DATA_QUALITY = "data_quality"
    SINK = "sink"


class Channel(str, Enum):
    """Monitored numeric channel."""

    HOT = "hot"
    COLD = "cold"
    BATTERY = "battery"


class Direction(str, Enum):
    """Direction of a threshold crossing."""

    ASCENDING = "ascending"
    DESCENDING = "descending"

    @property
    def opposite(self) -> "Direction":
        if self is Direction.ASCENDING:
            return Direction.DESCENDING
        return Direction.ASCENDING


class DiagnosticCode(str, Enum):
    """Kind of problem found while parsing a frame."""

    MALFORMED_FRAME = "malformed_frame"
    INVALID_FIELD = "invalid_field"
    EXTRA_FIELDS = "extra_fields"


class SensorError(str, Enum):
    """Explicit sensor fault reported by the device in place of a reading.

    Kept distinct from None (field missing or invalid) and from any number.
    """

    SENSOR_ERROR = "er"
