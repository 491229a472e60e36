"""Telemetry frame parser.

Turns one comma-separated line from the container into a TelemetrySample.
Each field is validated on its own: a bad field becomes None and is
reported as a diagnostic, the rest of the frame is kept.
"""

import math
import re
from typing import Iterable, List, Optional, Tuple

import structlog

from delivery_telemetry.models import (
    DiagnosticCode,
    FrameDiagnostic,
    SensorError,
    TelemetrySample,
)

logger = structlog.get_logger(__name__)

EXPECTED_FIELD_COUNT = 6
SENSOR_ERROR_SENTINEL = SensorError.SENSOR_ERROR.value

BATTERY_MIN = 0
BATTERY_MAX = 100
DEFAULT_TEMPERATURE_RANGE: Tuple[float, float] = (-50.0, 100.0)
DEFAULT_MAX_SHAKE = 20.0

# Plain decimal and integer literals only: rejects "nan", "inf", "1e3" and "1_0".
# Integer fields are short counters, so overlong digit runs never reach int().
_INTEGER_PATTERN = re.compile(r"^[+-]?\d{1,9}$", re.ASCII)
_DECIMAL_PATTERN = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$", re.ASCII)


class FrameParser:
    """Parser for the container's telemetry wire format.

    Format: battery,hotTemp,coldTemp,closed,activeFunctionCount,shakeMagnitude

    Never raises on malformed input. Problems are attached to the returned
    sample as FrameDiagnostic entries and logged.

    Example:
        >>> parser = FrameParser()
        >>> sample = parser.parse("85,25.50,15.20,1,2,0.15")
        >>> sample.battery_percent, sample.hot_temp, sample.closed
        (85, 25.5, True)
    """

    def __init__(
        self,
        temperature_range: Tuple[float, float] = DEFAULT_TEMPERATURE_RANGE,
        max_shake: float = DEFAULT_MAX_SHAKE,
    ) -> None:
        """Initialize the parser with plausible-value limits.

        Args:
            temperature_range: Inclusive (min, max) accepted for both compartments
            max_shake: Largest accepted shake magnitude
        """
        low, high = temperature_range
        if low >= high:
            raise ValueError("temperature_range minimum must be below maximum")
        self.temperature_range = (float(low), float(high))
        self.max_shake = float(max_shake)

    @classmethod
    def from_settings(cls, settings) -> "FrameParser":
        """Create a parser using the limits of a TelemetrySettings instance."""
        return cls(
            temperature_range=(settings.temperature_min, settings.temperature_max),
            max_shake=settings.shake_max,
        )

    def parse(self, line: str) -> TelemetrySample:
        """Parse a single raw line.

        Args:
            line: Raw frame, with or without trailing newline

        Returns:
            TelemetrySample; all fields None if the frame had too few fields
        """
        raw = line.strip()
        parts = [part.strip() for part in raw.split(",")]

        if len(parts) < EXPECTED_FIELD_COUNT:
            detail = f"got {len(parts)} fields, expected {EXPECTED_FIELD_COUNT}"
            logger.warning("frame_malformed", fields=len(parts), line_preview=raw[:100])
            return TelemetrySample(
                raw=raw,
                diagnostics=(
                    FrameDiagnostic(code=DiagnosticCode.MALFORMED_FRAME, detail=detail),
                ),
            )

        diagnostics: List[FrameDiagnostic] = []

        battery = self._parse_battery(parts[0], diagnostics)
        hot_temp = self._parse_temperature("hot_temp", parts[1], diagnostics)
        cold_temp = self._parse_temperature("cold_temp", parts[2], diagnostics)
        closed = self._parse_closed(parts[3], diagnostics)
        functions = self._parse_function_count(parts[4], diagnostics)
        shake = self._parse_shake(parts[5], diagnostics)

        if len(parts) > EXPECTED_FIELD_COUNT:
            extra = ",".join(parts[EXPECTED_FIELD_COUNT:])
            diagnostics.append(
                FrameDiagnostic(
                    code=DiagnosticCode.EXTRA_FIELDS,
                    detail=f"ignored trailing fields: {extra[:100]}",
                )
            )
            logger.warning("frame_extra_fields", count=len(parts) - EXPECTED_FIELD_COUNT)

        return TelemetrySample(
            battery_percent=battery,
            hot_temp=hot_temp,
            cold_temp=cold_temp,
            closed=closed,
            active_function_count=functions,
            shake_magnitude=shake,
            raw=raw,
            diagnostics=tuple(diagnostics),
        )

    def parse_many(self, lines: Iterable[str]) -> List[TelemetrySample]:
        """Parse several lines in order, skipping blank ones.

        Args:
            lines: Iterable of raw frames

        Returns:
            List of TelemetrySample, one per non-blank line
        """
        samples = [self.parse(line) for line in lines if line.strip()]
        logger.debug("frames_parsed", total=len(samples))
        return samples

    def _parse_battery(self, text: str, diagnostics: List[FrameDiagnostic]) -> Optional[int]:
        value = _to_int(text)
        if value is None or not BATTERY_MIN <= value <= BATTERY_MAX:
            _invalid(diagnostics, "battery_percent", text, f"{BATTERY_MIN}-{BATTERY_MAX}")
            return None
        return value

    def _parse_temperature(self, name: str, text: str, diagnostics: List[FrameDiagnostic]):
        if text == SENSOR_ERROR_SENTINEL:
            return SensorError.SENSOR_ERROR
        low, high = self.temperature_range
        value = _to_float(text)
        if value is None or not low <= value <= high:
            _invalid(diagnostics, name, text, f"{low:g} to {high:g}")
            return None
        return value

    def _parse_closed(self, text: str, diagnostics: List[FrameDiagnostic]) -> Optional[bool]:
        if text == "1":
            return True
        if text == "0":
            return False
        _invalid(diagnostics, "closed", text, "0 or 1")
        return None

    def _parse_function_count(
        self, text: str, diagnostics: List[FrameDiagnostic]
    ) -> Optional[int]:
        value = _to_int(text)
        if value is None or value < 0:
            _invalid(diagnostics, "active_function_count", text, "a non-negative integer")
            return None
        return value

    def _parse_shake(self, text: str, diagnostics: List[FrameDiagnostic]) -> Optional[float]:
        value = _to_float(text)
        if value is None or not 0.0 <= value <= self.max_shake:
            _invalid(diagnostics, "shake_magnitude", text, f"0 to {self.max_shake:g}")
            return None
        return value


def _to_int(text: str) -> Optional[int]:
    if not _INTEGER_PATTERN.match(text):
        return None
    return int(text)


def _to_float(text: str) -> Optional[float]:
    if not _DECIMAL_PATTERN.match(text):
        return None
    value = float(text)
    return value if math.isfinite(value) else None


def _invalid(diagnostics: List[FrameDiagnostic], name: str, text: str, expected: str) -> None:
    diagnostics.append(
        FrameDiagnostic(
            code=DiagnosticCode.INVALID_FIELD,
            field=name,
            detail=f"{text[:20]!r} is not {expected}",
        )
    )
    logger.debug("frame_field_invalid", field=name, value=text[:20])
