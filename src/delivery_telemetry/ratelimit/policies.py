"""Rate-limit policies attached to event categories.

The policy of an event is data carried by its category, resolved once when
the pipeline is built, never by matching category names at emit time.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Dict, Mapping, Optional

from delivery_telemetry.models.enums import EventCategory


class RateLimitPolicy(str, Enum):
    """How repeated events with the same key are admitted."""

    COOLDOWN = "cooldown"
    SAMPLING = "sampling"
    STATE_CHANGE = "state_change"
    UNLIMITED = "unlimited"


@dataclass(frozen=True)
class CategoryPolicy:
    """Rate-limit policy and cooldown window for one category."""

    policy: RateLimitPolicy
    cooldown: timedelta = timedelta(0)


ROUTINE_COOLDOWN = timedelta(seconds=60)
SYSTEM_COOLDOWN = timedelta(seconds=300)
SHAKE_COOLDOWN = timedelta(seconds=2)
DEFAULT_SAMPLING_FACTOR = 10

DEFAULT_CATEGORY_POLICIES: Dict[EventCategory, CategoryPolicy] = {
    EventCategory.TEMPERATURE: CategoryPolicy(RateLimitPolicy.COOLDOWN, ROUTINE_COOLDOWN),
    EventCategory.BATTERY: CategoryPolicy(RateLimitPolicy.COOLDOWN, ROUTINE_COOLDOWN),
    EventCategory.ANOMALY: CategoryPolicy(RateLimitPolicy.COOLDOWN, ROUTINE_COOLDOWN),
    EventCategory.CLOSURE: CategoryPolicy(RateLimitPolicy.STATE_CHANGE),
    EventCategory.SHAKE: CategoryPolicy(RateLimitPolicy.COOLDOWN, SHAKE_COOLDOWN),
    EventCategory.SENSOR_ERROR: CategoryPolicy(RateLimitPolicy.SAMPLING, SYSTEM_COOLDOWN),
    EventCategory.DATA_QUALITY: CategoryPolicy(RateLimitPolicy.COOLDOWN, SYSTEM_COOLDOWN),
    EventCategory.SINK: CategoryPolicy(RateLimitPolicy.COOLDOWN, SYSTEM_COOLDOWN),
}


def build_category_policies(
    cooldown_overrides: Optional[Mapping[str, float]] = None,
) -> Dict[EventCategory, CategoryPolicy]:
    """Build the category policy table with per-category cooldown overrides.

    Args:
        cooldown_overrides: Seconds keyed by category value (e.g. {"shake": 5})

    Returns:
        Dict mapping every EventCategory to its CategoryPolicy
    """
    policies = dict(DEFAULT_CATEGORY_POLICIES)
    for name, seconds in (cooldown_overrides or {}).items():
        category = EventCategory(name)
        policies[category] = CategoryPolicy(
            policy=policies[category].policy,
            cooldown=timedelta(seconds=seconds),
        )
    return policies
