"""Per-service token bucket rate limiting.

Buckets refill lazily from elapsed monotonic time on each acquire; there is
no background timer. Bucket state lives under a ``threading.Lock`` so the
limiter can be shared between event loops in worker threads, and the lock
is never held while a caller waits for a token.
"""

import asyncio
import logging
import os
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_RPS = 2.0
DEFAULT_BURST = 5
MIN_WAIT = 0.05


@dataclass
class BucketConfig:
    rps: float = DEFAULT_RPS
    burst: int = DEFAULT_BURST


class TokenBucket:
    """A single token bucket.

    ``try_take`` either consumes a token and returns 0.0, or returns the
    number of seconds the caller should wait before trying again.
    """

    def __init__(self, rps: float, burst: int, clock: Callable[[], float] = time.monotonic):
        self.rps = rps
        self.capacity = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rps)
        self._last = now

    def try_take(self) -> float:
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            missing = 1.0 - self._tokens
            return max(MIN_WAIT, missing / self.rps)

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens


def _env_number(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid rate limit setting %s=%r", name, raw)
        return default
    return value if value > 0 else default


def config_for(service: str) -> BucketConfig:
    """Resolve the bucket configuration for a service from the environment.

    ``CVEHUNT_RL_<SERVICE>_RPS``/``_BURST`` win over
    ``CVEHUNT_RATE_LIMIT_DEFAULT_RPS``/``_BURST``, which win over 2 rps, burst 5.
    """
    default_rps = _env_number("CVEHUNT_RATE_LIMIT_DEFAULT_RPS", DEFAULT_RPS)
    default_burst = _env_number("CVEHUNT_RATE_LIMIT_DEFAULT_BURST", DEFAULT_BURST)
    key = service.upper().replace("-", "_")
    rps = _env_number(f"CVEHUNT_RL_{key}_RPS", default_rps)
    burst = _env_number(f"CVEHUNT_RL_{key}_BURST", default_burst)
    return BucketConfig(rps=rps, burst=max(1, int(burst)))


class RateLimiter:
    """Token buckets keyed by service name, created on first use."""

    def __init__(
        self,
        overrides: dict[str, BucketConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def bucket(self, service: str) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(service)
            if bucket is None:
                cfg = self._overrides.get(service) or config_for(service)
                bucket = TokenBucket(cfg.rps, cfg.burst, self._clock)
                self._buckets[service] = bucket
                logger.debug(
                    "Rate limiter bucket for %s: %.2f rps, burst %d", service, cfg.rps, cfg.burst
                )
            return bucket

    async def acquire(self, service: str) -> None:
        """Wait until a token for ``service`` is available and consume it."""
        bucket = self.bucket(service)
        while True:
            wait = bucket.try_take()
            if wait <= 0:
                return
            await self._sleep(wait)

    def try_acquire(self, service: str) -> bool:
        """Consume a token if one is available right now."""
        return self.bucket(service).try_take() == 0.0
