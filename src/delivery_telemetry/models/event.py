"""Event model for human-readable telemetry notifications."""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from delivery_telemetry.utils.timestamps import normalize_timestamp, utc_now

from .enums import EventCategory, Severity

logger = structlog.get_logger(__name__)


class Event(BaseModel):
    """A notable change in the container's state, ready for a sink.

    Events are produced by the ingestion pipeline after rate limiting.
    The location hint is only ever attached at the sink boundary.
    """

    model_config = ConfigDict(
        frozen=True,
        json_encoders={
            datetime: lambda v: v.isoformat(),
            UUID: str,
        },
    )

    id: UUID = Field(default_factory=uuid4, description="Unique identifier for this event")
    category: EventCategory = Field(..., description="Category, selects the rate-limit policy")
    key: str = Field(..., description="Rate-limiter key, e.g. 'hot:ascending:50'")
    message: str = Field(..., description="Human-readable message")
    severity: Severity = Field(default=Severity.INFO, description="Severity level")
    timestamp: datetime = Field(default_factory=utc_now, description="When the event occurred")
    location_hint: Optional[str] = Field(
        default=None, description="Position description added by the sink"
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Extra values for diagnostics"
    )

    @field_validator("timestamp", mode="before")
    @classmethod
    def normalize_timestamp_field(cls, v: Any) -> datetime:
        """Convert various timestamp formats to UTC datetime."""
        try:
            return normalize_timestamp(v)
        except (ValueError, TypeError, OverflowError) as e:
            logger.warning(
                "event_timestamp_invalid",
                value=repr(v)[:100],
                error=str(e),
            )
            return utc_now()

    @property
    def is_critical(self) -> bool:
        """Critical events bypass every rate-limit policy."""
        return self.severity == Severity.CRITICAL

    def with_location(self, hint: Optional[str]) -> "Event":
        """Return a copy carrying the given location hint."""
        return self.model_copy(update={"location_hint": hint})

    def format_line(self) -> str:
        """Render the event as a single log line."""
        stamp = self.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        line = f"{stamp} - {self.category.value.upper()}: {self.message}"
        if self.location_hint:
            line += f" @ {self.location_hint}"
        return line
