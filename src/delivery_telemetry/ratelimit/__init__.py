"""Event rate limiting for Delivery Telemetry."""

from delivery_telemetry.ratelimit.limiter import EventRateLimiter, RateLimiterEntry
from delivery_telemetry.ratelimit.policies import (
    DEFAULT_CATEGORY_POLICIES,
    DEFAULT_SAMPLING_FACTOR,
    CategoryPolicy,
    RateLimitPolicy,
    build_category_policies,
)

__all__ = [
    "CategoryPolicy",
    "DEFAULT_CATEGORY_POLICIES",
    "DEFAULT_SAMPLING_FACTOR",
    "EventRateLimiter",
    "RateLimitPolicy",
    "RateLimiterEntry",
    "build_category_policies",
]
