"""Circuit breaker implementation for fault tolerance."""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"      # Failing, reject requests
    HALF_OPEN = "half_open"  # Trial requests test whether the dependency recovered


class CircuitOpenError(Exception):
    """Raised when the circuit breaker denies admission."""

    def __init__(self, breaker_name: str = "default", message: Optional[str] = None):
        self.breaker_name = breaker_name
        super().__init__(message or f"Circuit breaker '{breaker_name}' is OPEN")


class CircuitBreaker:
    """Admission-control state machine guarding a single dependency.

    The breaker never calls anything itself. Callers ask ``can_execute()``
    before invoking the dependency and report the outcome through
    ``on_success()`` / ``on_failure()``. Open -> half-open happens lazily on
    the next admission check once ``reset_timeout`` seconds have elapsed.

    One instance is meant to be shared by every caller of a dependency, so
    all state changes are serialized by an internal lock.

    Half-open slots are per attempt, not per retry sequence. A retry loop
    whose half-open attempt fails asks for admission again; with
    ``half_open_max_requests`` below the policy's ``max_attempts`` that
    request is rejected before the sequence is exhausted, no failure is
    reported, and the breaker stays half-open with no free slot until
    ``reset()`` is called. Size ``half_open_max_requests`` to at least
    ``max_attempts`` when a breaker backs a retrying caller.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_max_requests: int = 3,
        name: str = "default",
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening
            reset_timeout: Seconds to stay open before going half-open
            half_open_max_requests: Trial requests admitted while half-open
            name: Name used in logs and errors
            clock: Monotonic time source in seconds
        """
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        if reset_timeout < 0:
            raise ValueError(f"reset_timeout must be >= 0, got {reset_timeout}")
        if half_open_max_requests < 1:
            raise ValueError(
                f"half_open_max_requests must be >= 1, got {half_open_max_requests}"
            )

        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max_requests = half_open_max_requests
        self.name = name
        self._clock = clock or time.monotonic

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_requests = 0
        self._opened_at: Optional[float] = None
        self._lock = threading.RLock()

        logger.debug(
            f"Circuit breaker '{self.name}' initialized: threshold={failure_threshold}, "
            f"reset_timeout={reset_timeout}s, half_open_max_requests={half_open_max_requests}"
        )

    @property
    def state(self) -> CircuitState:
        """Current state as last recorded; does not apply the lazy transition."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def half_open_requests(self) -> int:
        return self._half_open_requests

    @property
    def opened_at(self) -> Optional[float]:
        return self._opened_at

    def can_execute(self) -> bool:
        """Check if a request is allowed through the circuit.

        Consumes a half-open slot when half-open.
        """
        return self.acquire() is not None

    def acquire(self) -> Optional[CircuitState]:
        """Admit a request, returning the state it was admitted under.

        Returns None when the request is rejected. A request admitted under
        ``HALF_OPEN`` holds one of the ``half_open_max_requests`` slots until
        an outcome is reported or the slot is handed back with ``release()``.
        """
        with self._lock:
            self._update_state()

            if self._state == CircuitState.CLOSED:
                return CircuitState.CLOSED
            if self._state == CircuitState.OPEN:
                return None
            if self._half_open_requests < self.half_open_max_requests:
                self._half_open_requests += 1
                logger.debug(
                    f"Circuit breaker '{self.name}' admitted half-open request "
                    f"{self._half_open_requests}/{self.half_open_max_requests}"
                )
                return CircuitState.HALF_OPEN
            return None

    def release(self) -> None:
        """Give back a half-open slot whose request ended without an outcome.

        Used when an admitted request is abandoned, e.g. cancelled, so the
        breaker can admit another trial request. No-op outside ``HALF_OPEN``.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_requests > 0:
                self._half_open_requests -= 1
                logger.debug(
                    f"Circuit breaker '{self.name}' released half-open request, "
                    f"{self._half_open_requests}/{self.half_open_max_requests} in use"
                )

    def on_success(self) -> None:
        """Record a successful execution."""
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
                self._half_open_requests = 0

    def on_failure(self) -> None:
        """Record a failed execution."""
        with self._lock:
            self._failure_count += 1

            if self._state == CircuitState.HALF_OPEN:
                # Single failure while half-open goes straight back to open
                self._open_circuit()
            elif self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        f"Circuit breaker '{self.name}' failure threshold reached: "
                        f"{self._failure_count}/{self.failure_threshold}"
                    )
                self._open_circuit()
            else:
                logger.warning(
                    f"Circuit breaker '{self.name}' failure: "
                    f"{self._failure_count}/{self.failure_threshold}"
                )

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._half_open_requests = 0
            self._opened_at = None
            logger.info(f"Circuit breaker '{self.name}' manually reset")

    def get_status(self) -> Dict[str, Any]:
        """Get current status of circuit breaker."""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "half_open_requests": self._half_open_requests,
                "opened_at": self._opened_at,
                "config": {
                    "failure_threshold": self.failure_threshold,
                    "reset_timeout": self.reset_timeout,
                    "half_open_max_requests": self.half_open_max_requests,
                },
            }

    def _open_circuit(self) -> None:
        self._transition_to(CircuitState.OPEN)
        self._opened_at = self._clock()
        self._half_open_requests = 0

    def _update_state(self) -> None:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.reset_timeout:
                self._transition_to(CircuitState.HALF_OPEN)
                self._half_open_requests = 0

    def _transition_to(self, state: CircuitState) -> None:
        old_state = self._state
        self._state = state
        if old_state != state:
            logger.info(
                f"Circuit breaker '{self.name}' transitioned from {old_state.value} to {state.value}"
            )

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(name={self.name!r}, state={self._state.value}, "
            f"failure_count={self._failure_count})"
        )
