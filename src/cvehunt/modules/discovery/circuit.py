"""Consecutive-failure circuit breaker for one source."""

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


class CircuitBreaker:
    """Opens after ``threshold`` consecutive failures.

    While open, ``allow_request`` refuses everything until ``reset_timeout``
    has elapsed; then exactly one trial call is admitted. The trial's success
    closes the breaker and its failure re-opens it for another cool-down.
    """

    def __init__(
        self,
        name: str,
        threshold: int = 5,
        reset_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._opened_at: float | None = None
        self._last_failure: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            return self._state_locked()

    def _state_locked(self) -> str:
        if self._opened_at is None:
            return CLOSED
        if self._clock() - self._opened_at >= self.reset_timeout:
            return HALF_OPEN
        return OPEN

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def last_failure(self) -> float | None:
        return self._last_failure

    def allow_request(self) -> bool:
        with self._lock:
            state = self._state_locked()
            if state == CLOSED:
                return True
            if state == HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                logger.info("Circuit for %s half-open, admitting trial request", self.name)
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._opened_at is not None:
                logger.info("Circuit for %s closed", self.name)
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._last_failure = now
            if self._trial_in_flight:
                self._trial_in_flight = False
                self._opened_at = now
                logger.warning("Circuit for %s re-opened after failed trial", self.name)
                return
            if self._opened_at is not None:
                # Late failures from calls admitted before opening.
                return
            self._failures += 1
            if self._failures >= self.threshold:
                self._opened_at = now
                logger.warning(
                    "Circuit for %s opened after %d consecutive failures",
                    self.name,
                    self._failures,
                )

    def release_trial(self) -> None:
        """Give back a trial slot whose call ended without an outcome (cancelled)."""
        with self._lock:
            if self._trial_in_flight:
                self._trial_in_flight = False
                logger.debug("Circuit for %s released an abandoned trial", self.name)

    def reset(self) -> None:
        self.record_success()
