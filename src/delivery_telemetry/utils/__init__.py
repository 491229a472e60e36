"""Utility helpers for Delivery Telemetry."""

from delivery_telemetry.utils.timestamps import normalize_timestamp, utc_now

__all__ = ["normalize_timestamp", "utc_now"]
