"""TelemetrySample model for one parsed telemetry frame."""

from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .enums import DiagnosticCode, SensorError

TemperatureReading = Union[float, SensorError, None]

FIELD_NAMES: Tuple[str, ...] = (
    "battery_percent",
    "hot_temp",
    "cold_temp",
    "closed",
    "active_function_count",
    "shake_magnitude",
)


class FrameDiagnostic(BaseModel):
    """A non-fatal problem noticed while parsing a frame."""

    model_config = ConfigDict(frozen=True)

    code: DiagnosticCode = Field(..., description="Kind of problem")
    field: Optional[str] = Field(default=None, description="Affected field, if any")
    detail: str = Field(default="", description="Human-readable explanation")


class TelemetrySample(BaseModel):
    """Validated values from a single telemetry frame.

    Every field is independently optional: a frame with one bad field keeps
    the others. Temperatures may additionally hold SensorError when the
    device reported a failed sensor.
    """

    model_config = ConfigDict(frozen=True)

    battery_percent: Optional[int] = Field(default=None, description="Battery level 0-100")
    hot_temp: TemperatureReading = Field(default=None, description="Hot compartment, Celsius")
    cold_temp: TemperatureReading = Field(default=None, description="Cold compartment, Celsius")
    closed: Optional[bool] = Field(default=None, description="Closure sensor state")
    active_function_count: Optional[int] = Field(
        default=None, description="Number of active actuators"
    )
    shake_magnitude: Optional[float] = Field(default=None, description="Overload in g")
    raw: str = Field(default="", description="Original line for debugging")
    diagnostics: Tuple[FrameDiagnostic, ...] = Field(
        default=(), description="Problems found while parsing"
    )

    @property
    def is_empty(self) -> bool:
        """True when no field could be parsed at all."""
        return all(getattr(self, name) is None for name in FIELD_NAMES)

    @property
    def is_malformed(self) -> bool:
        return any(d.code == DiagnosticCode.MALFORMED_FRAME for d in self.diagnostics)

    @property
    def hot_sensor_error(self) -> bool:
        return self.hot_temp is SensorError.SENSOR_ERROR

    @property
    def cold_sensor_error(self) -> bool:
        return self.cold_temp is SensorError.SENSOR_ERROR

    @property
    def has_sensor_errors(self) -> bool:
        return self.hot_sensor_error or self.cold_sensor_error

    @property
    def hot_temp_value(self) -> Optional[float]:
        """Hot temperature as a number, or None for missing and sensor errors."""
        return _numeric(self.hot_temp)

    @property
    def cold_temp_value(self) -> Optional[float]:
        """Cold temperature as a number, or None for missing and sensor errors."""
        return _numeric(self.cold_temp)

    def summary(self) -> str:
        """Short one-line description used in log output."""
        return (
            f"battery={_show(self.battery_percent)}% "
            f"hot={_show(self.hot_temp)} "
            f"cold={_show(self.cold_temp)} "
            f"closed={_show(self.closed)} "
            f"functions={_show(self.active_function_count)} "
            f"shake={_show(self.shake_magnitude)}"
        )


def _numeric(value: TemperatureReading) -> Optional[float]:
    if value is None or isinstance(value, SensorError):
        return None
    return value


def _show(value) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, SensorError):
        return value.value
    return str(value)
