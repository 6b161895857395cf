"""Circuit breaker guarding calls to the remote store.

Consecutive store failures open the circuit; while open, calls fail fast
with ``CircuitBreakerOpen`` instead of waiting on a dead backend. After
``recovery_timeout`` seconds one probe is let through (half-open): success
closes the circuit, failure re-opens it immediately.

Errors that say something about the request rather than the backend
(a unique-constraint conflict, for instance) must not trip the breaker;
pass an ``is_expected`` predicate to exclude them.
"""

import enum
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """A call was refused because the circuit is open."""

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        super().__init__(f"Circuit breaker is open for {service_name}")


class CircuitBreaker:
    """Tracks consecutive failures of one backend.

    Args:
        service_name: Backend name used in logs and health output.
        failure_threshold: Consecutive failures that open the circuit.
        recovery_timeout: Seconds an open circuit waits before a probe.
        is_expected: Returns True for exceptions that are a normal answer
            from a healthy backend; those count as successes.
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        is_expected: Callable[[BaseException], bool] | None = None,
    ) -> None:
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._is_expected = is_expected or (lambda _exc: False)

        self._failure_count = 0
        self._opened_at = 0.0
        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()

    def _refresh(self) -> None:
        # Caller holds the lock
        if self._state != CircuitState.OPEN:
            return
        if time.monotonic() - self._opened_at >= self.recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            logger.warning("Store circuit %s HALF_OPEN, probing", self.service_name)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    def status(self) -> dict[str, Any]:
        """State summary for health reporting."""
        with self._lock:
            self._refresh()
            retry_in = None
            if self._state == CircuitState.OPEN:
                retry_in = max(0.0, self.recovery_timeout - (time.monotonic() - self._opened_at))
            return {
                "state": self._state.value,
                "consecutive_failures": self._failure_count,
                "retry_in_seconds": None if retry_in is None else round(retry_in, 1),
            }

    def check(self) -> None:
        """Raise ``CircuitBreakerOpen`` unless a call may go through."""
        if self.state == CircuitState.OPEN:
            raise CircuitBreakerOpen(self.service_name)

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.warning("Store circuit %s CLOSED again", self.service_name)
            self._failure_count = 0
            self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        with self._lock:
            self._refresh()
            self._failure_count += 1
            probe_failed = self._state == CircuitState.HALF_OPEN
            if not probe_failed and self._failure_count < self.failure_threshold:
                return
            if self._state != CircuitState.OPEN:
                logger.warning(
                    "Store circuit %s OPEN after %d consecutive failures",
                    self.service_name,
                    self._failure_count,
                )
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()

    @contextmanager
    def guard(self) -> Iterator[None]:
        """Run the enclosed call under the breaker.

        Raises:
            CircuitBreakerOpen: Before the call, if the circuit is open.
        """
        self.check()
        try:
            yield
        except Exception as e:
            if self._is_expected(e):
                self.record_success()
            else:
                self.record_failure()
            raise
        self.record_success()
