"""Event sink boundary: delivery of admitted events to the host application.

Delivery is fire-and-forget. The dispatcher hands events to a single
background worker (so ordering is kept), guards the sink with a circuit
breaker, and logs failures locally without ever raising back into the
ingestion loop.

Example usage::

    from delivery_telemetry.pipeline import EventDispatcher, LoggingSink

    dispatcher = EventDispatcher(LoggingSink())
    dispatcher.dispatch(event)
    dispatcher.close()
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Protocol, runtime_checkable

import pybreaker
import structlog

from delivery_telemetry.models import Event

log = structlog.get_logger()

SINK_FAIL_MAX = 3  # open after 3 consecutive failures
SINK_RESET_TIMEOUT = 60  # try again after 60 seconds


@runtime_checkable
class EventSink(Protocol):
    """Anything that can receive an admitted event (log file, UI, uploader)."""

    def emit(self, event: Event) -> None:
        ...


@runtime_checkable
class LocationProvider(Protocol):
    """Lookup of the container's current position, as display text."""

    def get_location_hint(self) -> Optional[str]:
        ...


class LoggingSink:
    """Sink that writes events to the structured log."""

    def emit(self, event: Event) -> None:
        log.info(
            "telemetry_event",
            category=event.category.value,
            severity=event.severity.value,
            key=event.key,
            message=event.message,
            location=event.location_hint,
        )


class LocationEnrichingSink:
    """Sink decorator that attaches a location hint before delivery.

    A failing or empty location lookup never blocks delivery; the event is
    passed on without a hint.
    """

    def __init__(self, inner: EventSink, provider: LocationProvider) -> None:
        self.inner = inner
        self.provider = provider

    def emit(self, event: Event) -> None:
        try:
            hint = self.provider.get_location_hint()
        except Exception as e:
            log.warning("location_lookup_failed", error=str(e), event_key=event.key)
            hint = None
        self.inner.emit(event.with_location(hint) if hint else event)


class SinkLoggingListener(pybreaker.CircuitBreakerListener):
    """Logs sink circuit breaker state changes.

    WARNING when the circuit opens, INFO when it closes again.
    """

    def state_change(
        self,
        cb: pybreaker.CircuitBreaker,
        old_state: pybreaker.CircuitBreakerState,
        new_state: pybreaker.CircuitBreakerState,
    ) -> None:
        if new_state.name == "open":
            log.warning(
                "sink_circuit_opened",
                sink=cb.name,
                failures=cb.fail_counter,
                reset_timeout=cb.reset_timeout,
            )
        elif new_state.name == "closed":
            log.info("sink_circuit_closed", sink=cb.name)


def create_sink_breaker(
    name: str,
    fail_max: int = SINK_FAIL_MAX,
    reset_timeout: int = SINK_RESET_TIMEOUT,
) -> pybreaker.CircuitBreaker:
    """Create the circuit breaker guarding a sink."""
    return pybreaker.CircuitBreaker(
        name=name,
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        listeners=[SinkLoggingListener()],
    )


class EventDispatcher:
    """Delivers events to a sink without letting the sink slow or break ingestion.

    Each dispatcher:
    - Runs deliveries on one background worker, in submission order
    - Wraps the sink in its own circuit breaker
    - Logs and counts failures, then reports them through on_failure
    """

    def __init__(
        self,
        sink: EventSink,
        background: bool = True,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
        on_failure: Optional[Callable[[Event, BaseException], None]] = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            sink: Destination for admitted events
            background: Deliver on a worker thread (False delivers inline, still isolated)
            breaker: Circuit breaker to use; one is created when None
            on_failure: Called with the event and error after a failed delivery
        """
        self.sink = sink
        self.background = background
        self.breaker = breaker or create_sink_breaker(type(sink).__name__)
        self.on_failure = on_failure

        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: List[Future] = []
        self._lock = threading.Lock()
        self._delivered = 0
        self._failed = 0

    @property
    def stats(self) -> dict:
        with self._lock:
            return {"delivered": self._delivered, "failed": self._failed}

    def dispatch(self, event: Event) -> None:
        """Hand an event to the sink; never raises."""
        if not self.background:
            self._deliver(event)
            return

        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="event-sink"
                )
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(self._executor.submit(self._deliver, event))

    def _deliver(self, event: Event) -> None:
        try:
            self.breaker.call(self.sink.emit, event)
        except pybreaker.CircuitBreakerError as e:
            self._record_failure(event, e, "sink_circuit_open")
        except Exception as e:
            self._record_failure(event, e, "sink_delivery_failed")
        else:
            with self._lock:
                self._delivered += 1

    def _record_failure(self, event: Event, error: BaseException, reason: str) -> None:
        with self._lock:
            self._failed += 1
        log.debug(reason, event_key=event.key, error=str(error))
        if self.on_failure is not None:
            try:
                self.on_failure(event, error)
            except Exception as callback_error:
                log.error("sink_failure_callback_error", error=str(callback_error))

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait until every dispatched event has been handled."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Finish pending deliveries and stop the worker."""
        self.flush()
        with self._lock:
            executor, self._executor = self._executor, None
            self._pending = []
        if executor is not None:
            executor.shutdown(wait=True)
