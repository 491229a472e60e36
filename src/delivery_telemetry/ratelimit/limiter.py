"""Per-key event rate limiter with cooldown, sampling and state-change policies."""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog

from delivery_telemetry.ratelimit.policies import DEFAULT_SAMPLING_FACTOR, RateLimitPolicy
from delivery_telemetry.utils.timestamps import normalize_timestamp, utc_now

log = structlog.get_logger()

_UNSET = object()


@dataclass
class RateLimiterEntry:
    """Bookkeeping for a single event key.

    Attributes:
        last_emitted_at: When an event with this key was last admitted
        occurrence_count: Occurrences since the condition last changed
        suppressed_count: Occurrences suppressed since the last admission
        last_state: Last condition or discrete value seen for this key
    """

    last_emitted_at: Optional[datetime] = None
    occurrence_count: int = 0
    suppressed_count: int = 0
    last_state: Any = None


class EventRateLimiter:
    """Decides whether an event should be emitted now or suppressed.

    All policies share one RateLimiterEntry per key; the caller chooses the
    policy through the event's category. Critical events are always admitted
    but still update the bookkeeping.

    Example:
        >>> limiter = EventRateLimiter()
        >>> t0 = datetime(2026, 1, 1)
        >>> limiter.admit("shake", now=t0)
        True
        >>> limiter.admit("shake", now=t0 + timedelta(seconds=5))
        False
    """

    DEFAULT_COOLDOWN = timedelta(seconds=60)

    def __init__(
        self,
        default_cooldown: Optional[timedelta] = None,
        sampling_factor: int = DEFAULT_SAMPLING_FACTOR,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            default_cooldown: Cooldown used when admit() gets none. Defaults to 60s.
            sampling_factor: Admit every Nth occurrence of a persistent condition.
        """
        if sampling_factor < 1:
            raise ValueError("sampling_factor must be at least 1")
        self.default_cooldown = default_cooldown or self.DEFAULT_COOLDOWN
        self.sampling_factor = sampling_factor

        self._entries: Dict[str, RateLimiterEntry] = {}
        self._lock = threading.Lock()

        self._total_admitted = 0
        self._total_suppressed = 0

    @property
    def stats(self) -> Dict[str, int]:
        """Get limiter statistics.

        Returns:
            Dict with tracked_keys, total_admitted and total_suppressed counts
        """
        with self._lock:
            return {
                "tracked_keys": len(self._entries),
                "total_admitted": self._total_admitted,
                "total_suppressed": self._total_suppressed,
            }

    def admit(
        self,
        key: str,
        critical: bool = False,
        now: Optional[Any] = None,
        *,
        policy: RateLimitPolicy = RateLimitPolicy.COOLDOWN,
        cooldown: Optional[timedelta] = None,
        state: Any = _UNSET,
    ) -> bool:
        """Record an occurrence of an event key and decide whether to emit it.

        Args:
            key: Event key, e.g. "hot:ascending:50"
            critical: Critical events bypass all suppression
            now: Time of the occurrence; defaults to the current UTC time
            policy: Admission policy selected by the event category
            cooldown: Window for COOLDOWN and SAMPLING; defaults to default_cooldown
            state: Condition (SAMPLING) or discrete value (STATE_CHANGE)

        Returns:
            True if the event should be emitted now, False to suppress it
        """
        moment = utc_now() if now is None else normalize_timestamp(now)
        window = self.default_cooldown if cooldown is None else cooldown

        with self._lock:
            entry = self._entries.setdefault(key, RateLimiterEntry())

            if critical or policy is RateLimitPolicy.UNLIMITED:
                if state is not _UNSET and state != entry.last_state:
                    entry.occurrence_count = 0
                self._record(entry, moment, state)
                admitted = True
            elif policy is RateLimitPolicy.STATE_CHANGE:
                admitted = self._admit_state_change(entry, moment, state)
            elif policy is RateLimitPolicy.SAMPLING:
                admitted = self._admit_sampling(entry, moment, window, state)
            else:
                admitted = self._admit_cooldown(entry, moment, window, state)

            if admitted:
                self._total_admitted += 1
            else:
                self._total_suppressed += 1

        if not admitted:
            log.debug("event_suppressed", key=key, policy=policy.value)
        return admitted

    def _admit_cooldown(
        self,
        entry: RateLimiterEntry,
        moment: datetime,
        window: timedelta,
        state: Any,
    ) -> bool:
        if entry.last_emitted_at is None or moment - entry.last_emitted_at >= window:
            self._record(entry, moment, state)
            return True
        entry.occurrence_count += 1
        entry.suppressed_count += 1
        return False

    def _admit_sampling(
        self,
        entry: RateLimiterEntry,
        moment: datetime,
        window: timedelta,
        state: Any,
    ) -> bool:
        condition = None if state is _UNSET else state
        if entry.last_emitted_at is None or condition != entry.last_state:
            # A changed condition always goes through, regardless of cooldown
            entry.occurrence_count = 0
            self._record(entry, moment, condition)
            return True

        reached_nth = entry.suppressed_count + 1 >= self.sampling_factor
        cooled_down = moment - entry.last_emitted_at >= window
        if reached_nth or cooled_down:
            self._record(entry, moment, condition)
            return True

        entry.occurrence_count += 1
        entry.suppressed_count += 1
        return False

    def _admit_state_change(self, entry: RateLimiterEntry, moment: datetime, state: Any) -> bool:
        value = None if state is _UNSET else state
        if entry.last_emitted_at is not None and value == entry.last_state:
            entry.suppressed_count += 1
            return False
        entry.occurrence_count = 0
        self._record(entry, moment, value)
        return True

    @staticmethod
    def _record(entry: RateLimiterEntry, moment: datetime, state: Any) -> None:
        """Update an entry for an admitted occurrence."""
        if entry.last_emitted_at is None or moment > entry.last_emitted_at:
            entry.last_emitted_at = moment
        entry.occurrence_count += 1
        entry.suppressed_count = 0
        if state is not _UNSET:
            entry.last_state = state

    def entry(self, key: str) -> Optional[RateLimiterEntry]:
        """Return a copy of the bookkeeping for a key, or None if unseen."""
        with self._lock:
            found = self._entries.get(key)
            if found is None:
                return None
            return RateLimiterEntry(
                last_emitted_at=found.last_emitted_at,
                occurrence_count=found.occurrence_count,
                suppressed_count=found.suppressed_count,
                last_state=found.last_state,
            )

    def current_state(self, key: str) -> Any:
        """Return the last state recorded for a key, or None."""
        with self._lock:
            found = self._entries.get(key)
            return None if found is None else found.last_state

    def forget(self, key: str) -> None:
        """Drop the bookkeeping for one key."""
        with self._lock:
            self._entries.pop(key, None)

    def reset(self) -> None:
        """Clear every entry and reset stats."""
        with self._lock:
            self._entries.clear()
            self._total_admitted = 0
            self._total_suppressed = 0
