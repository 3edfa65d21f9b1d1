"""Per-call discovery context carrying the operation deadline."""

import time
from collections.abc import Callable


class DiscoveryContext:
    """Deadline shared by every adapter taking part in one discovery call.

    ``deadline`` is a number of seconds from now; ``None`` means unbounded.
    """

    def __init__(self, deadline: float | None = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if deadline is None else clock() + deadline

    @property
    def bounded(self) -> bool:
        return self._expires_at is not None

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def bound(self, timeout: float) -> float:
        """Clamp a per-request timeout so it never outlives the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return max(0.001, min(timeout, remaining))
