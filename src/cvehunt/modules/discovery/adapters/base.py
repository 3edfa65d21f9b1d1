"""Abstract base class for CVE source adapters."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from dateutil.relativedelta import relativedelta

from cvehunt.config.settings import DiscoverySettings

from ..circuit import OPEN, CircuitBreaker
from ..context import DiscoveryContext
from ..errors import DeadlineExceeded, SourceError
from ..models import DiscoveryOptions, RateLimitStatus, RawRecord
from ..ratelimit import RateLimiter
from .helpers import dedupe_latest, extract_cve_id, matches_options
from .transport import RequestMixin

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 60


class BaseSourceAdapter(RequestMixin, ABC):
    """Common plumbing for every source.

    Subclasses declare their identity and capabilities as class attributes and
    implement ``_health_check``, ``_discover`` and ``_details``.
    """

    source_name: str = ""
    display_name: str = ""
    base_url: str = ""
    reliability_score: float = 0.5
    metadata_richness: float = 0.5
    enabled_by_default: bool = True
    supports_historical_data: bool = True
    supports_realtime_updates: bool = False
    max_timeframe_years: int = 10
    requests_per_minute: int = 60
    request_timeout: float | None = None

    def __init__(
        self,
        settings: DiscoverySettings | None = None,
        limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or DiscoverySettings()
        self.limiter = limiter or RateLimiter()
        self.breaker = CircuitBreaker(
            self.source_name,
            threshold=self.settings.breaker_threshold,
            reset_timeout=self.settings.breaker_reset,
            clock=clock,
        )
        if self.request_timeout is None:
            self.request_timeout = self.settings.request_timeout
        self.enabled = self.enabled_by_default
        self._clock = clock
        self._sleep = sleep
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": self.settings.user_agent, "Accept": "application/json"},
            follow_redirects=True,
        )
        self._window_start = clock()
        self._window_count = 0

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.source_name} enabled={self.enabled}>"

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # Request window bookkeeping

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= RATE_WINDOW_SECONDS:
            self._window_start = now
            self._window_count = 0

    def _record_request(self) -> None:
        self._roll_window()
        self._window_count += 1

    def rate_limit_status(self) -> RateLimitStatus:
        self._roll_window()
        remaining = max(0, self.requests_per_minute - self._window_count)
        reset_in = RATE_WINDOW_SECONDS - (self._clock() - self._window_start)
        return RateLimitStatus(
            is_limited=remaining == 0,
            remaining=remaining,
            reset_time=datetime.now(UTC) + timedelta(seconds=max(0.0, reset_in)),
            daily_limit=self.requests_per_minute * 24 * 60,
        )

    # Public contract

    async def is_healthy(self, ctx: DiscoveryContext | None = None) -> bool:
        """Probe the source; an open breaker reports unhealthy without I/O."""
        if self.breaker.state == OPEN:
            return False
        try:
            return bool(await self._health_check(ctx))
        except SourceError as exc:
            logger.debug("%s health check failed: %s", self.source_name, exc)
            return False

    async def collect(
        self, options: DiscoveryOptions, ctx: DiscoveryContext | None = None
    ) -> tuple[list[RawRecord], SourceError | None]:
        """Collect records matching ``options``.

        Returns the records and, when an error cut collection short after
        some records were gathered, that error. Errors before any record
        arrived are raised.
        """
        ctx = ctx or DiscoveryContext()
        limit = options.result_limit(self.settings.max_results)
        sink: list[RawRecord] = []
        error: SourceError | None = None
        try:
            await self._discover(options, ctx, sink, limit)
        except SourceError as exc:
            if not sink:
                raise
            error = exc
            level = logging.INFO if isinstance(exc, DeadlineExceeded) else logging.WARNING
            logger.log(
                level, "%s: returning %d partial records after error: %s", self.source_name, len(sink), exc
            )

        window = self.window(options)
        records = [r for r in dedupe_latest(sink) if matches_options(r, options, window)][:limit]
        logger.info("%s: discovered %d records", self.source_name, len(records))
        return records, error

    async def discover(
        self, options: DiscoveryOptions, ctx: DiscoveryContext | None = None
    ) -> list[RawRecord]:
        """Collect records matching ``options``, keeping partial results on error."""
        records, _ = await self.collect(options, ctx)
        return records

    async def get_details(
        self, cve_id: str, ctx: DiscoveryContext | None = None
    ) -> RawRecord | None:
        normalized = extract_cve_id(cve_id)
        if not normalized:
            return None
        return await self._details(normalized, ctx)

    def window(self, options: DiscoveryOptions) -> tuple[datetime, datetime]:
        """Publication window for ``options``, clamped to this source's reach."""
        start, end = options.date_range()
        earliest = end - relativedelta(years=self.max_timeframe_years)
        return max(start, earliest), end

    # Subclass hooks

    @abstractmethod
    async def _health_check(self, ctx: DiscoveryContext | None) -> bool: ...

    @abstractmethod
    async def _discover(
        self, options: DiscoveryOptions, ctx: DiscoveryContext, sink: list[RawRecord], limit: int
    ) -> None: ...

    @abstractmethod
    async def _details(self, cve_id: str, ctx: DiscoveryContext | None) -> RawRecord | None: ...

    def _parse_items(
        self, items: Iterable[Any], parse: Callable[[Any], RawRecord | None]
    ) -> list[RawRecord]:
        """Parse payload items, skipping the malformed ones."""
        records: list[RawRecord] = []
        for item in items or ():
            try:
                record = parse(item)
            except (KeyError, TypeError, ValueError, AttributeError, IndexError) as exc:
                logger.warning("%s: skipping malformed item: %s", self.source_name, exc)
                continue
            if record is not None:
                records.append(record)
        return records
