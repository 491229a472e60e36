"""
Delivery Telemetry - Turn a delivery container's sensor stream into events.

This package parses the comma-separated telemetry frames reported by a
delivery container, validates each field, detects threshold crossings with
hysteresis, and rate-limits the resulting events before handing them to a
sink.

Features:
- Field-by-field frame validation that never fails the whole frame
- Hysteresis-based threshold detection for both compartments and battery
- Cooldown, sampling and state-change rate limiting per event key
- Deterministic scenario generator producing frames in the same wire format
- Configuration via YAML with environment variable overrides
- Structured logging (JSON for production, text for development)
"""

__version__ = "0.3.0"
__all__ = ["__version__"]
