"""Discovery coordinator: fan out to sources, reconcile, feed reliability back."""

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace

from cvehunt.config.settings import DiscoverySettings
from cvehunt.modules.reconcile import EnrichedRecord, ReconciliationEngine, normalize_value
from cvehunt.modules.reconcile.models import ReconciliationReport
from cvehunt.modules.reliability import ReliabilityService

from .adapters import BaseSourceAdapter, create_all_adapters
from .cache import DiscoveryCache
from .context import DiscoveryContext
from .errors import AllSourcesFailedError, SourceError, is_retryable_error
from .models import (
    DiscoveryMetrics,
    DiscoveryOptions,
    DiscoveryResult,
    RawRecord,
    SourceFailure,
    SourceHealth,
)
from .ratelimit import RateLimiter

logger = logging.getLogger(__name__)

# Extra time granted past the deadline for adapters to hand back partial results.
DEADLINE_GRACE = 1.0


@dataclass
class _Outcome:
    records: list[RawRecord] = field(default_factory=list)
    failure: SourceFailure | None = None
    partial: SourceFailure | None = None
    elapsed: float = 0.0
    cached: bool = False


def _failure(source: str, error: BaseException | str, severity: str | None = None) -> SourceFailure:
    retryable = is_retryable_error(error)
    return SourceFailure(
        source_name=source,
        error=str(error),
        retryable=retryable,
        severity=severity or ("error" if retryable else "critical"),
    )


class DiscoveryCoordinator:
    """Owns the adapters and every piece of shared discovery state."""

    def __init__(
        self,
        adapters: Iterable[BaseSourceAdapter],
        settings: DiscoverySettings | None = None,
        limiter: RateLimiter | None = None,
        cache: DiscoveryCache | None = None,
        reliability: ReliabilityService | None = None,
        engine: ReconciliationEngine | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or DiscoverySettings()
        self.adapters = list(adapters)
        self.limiter = limiter or RateLimiter()
        self.cache = cache or DiscoveryCache(self.settings.cache_ttl, self.settings.cache_size)
        self.reliability = reliability or ReliabilityService(weights=self.settings.reliability_weights)
        for adapter in self.adapters:
            self.reliability.register_source(
                adapter.source_name, adapter.reliability_score, adapter.metadata_richness
            )
        self.engine = engine or ReconciliationEngine(self.reliability.score)
        self._clock = clock
        self._health: dict[str, SourceHealth] = {}
        self._health_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: DiscoverySettings | None = None) -> "DiscoveryCoordinator":
        settings = settings or DiscoverySettings.from_config()
        limiter = RateLimiter()
        return cls(create_all_adapters(settings, limiter), settings=settings, limiter=limiter)

    async def __aenter__(self) -> "DiscoveryCoordinator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await asyncio.gather(*(a.aclose() for a in self.adapters), return_exceptions=True)

    def enabled_adapters(self) -> list[BaseSourceAdapter]:
        return [a for a in self.adapters if a.enabled]

    # Health

    async def _check(self, adapter: BaseSourceAdapter, ctx: DiscoveryContext | None) -> SourceHealth:
        timeout = self.settings.health_timeout
        if ctx is not None:
            timeout = ctx.bound(timeout)
        started = self._clock()
        error = None
        try:
            healthy = await asyncio.wait_for(adapter.is_healthy(ctx), timeout)
            if not healthy:
                error = "Health check failed"
        except TimeoutError:
            healthy = False
            error = f"Health check timed out after {timeout:.1f}s"
        elapsed = self._clock() - started

        name = adapter.source_name
        self.reliability.record_performance(name, elapsed, healthy, error=error)
        health = SourceHealth(
            source_name=name,
            healthy=healthy,
            response_time=elapsed,
            success_rate=self.reliability.success_rate(name),
            last_error=error,
        )
        with self._health_lock:
            self._health[name] = health
        if not healthy:
            logger.warning("Source %s is unhealthy: %s", name, error)
        return health

    async def health_check_all(self, ctx: DiscoveryContext | None = None) -> list[SourceHealth]:
        """Probe every enabled adapter concurrently."""
        return list(await asyncio.gather(*(self._check(a, ctx) for a in self.enabled_adapters())))

    def source_health(self) -> list[SourceHealth]:
        with self._health_lock:
            return [replace(h) for h in self._health.values()]

    def prioritize(
        self, adapters: Iterable[BaseSourceAdapter], options: DiscoveryOptions
    ) -> list[BaseSourceAdapter]:
        """Caller's priority list first, the rest by descending success rate."""
        by_name = {a.source_name: a for a in adapters}
        ordered = [by_name.pop(name) for name in options.prioritize_sources if name in by_name]
        rest = sorted(
            by_name.values(),
            key=lambda a: (-self.reliability.success_rate(a.source_name), a.source_name),
        )
        return ordered + rest

    # Discovery

    async def _discover_one(
        self, adapter: BaseSourceAdapter, options: DiscoveryOptions, ctx: DiscoveryContext
    ) -> _Outcome:
        name = adapter.source_name
        key = self.cache.make_key(name, options.cache_key())
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return _Outcome(list(cached), cached=True)

        started = self._clock()
        try:
            records, error = await adapter.collect(options, ctx)
        except SourceError as exc:
            elapsed = self._clock() - started
            logger.warning("Discovery failed for %s: %s", name, exc)
            self.reliability.record_performance(name, elapsed, False, error=str(exc))
            return _Outcome(failure=_failure(name, exc), elapsed=elapsed)
        except Exception as exc:
            elapsed = self._clock() - started
            logger.error("Unexpected error from %s", name, exc_info=True)
            self.reliability.record_performance(name, elapsed, False, error=str(exc))
            return _Outcome(failure=_failure(name, exc, "critical"), elapsed=elapsed)

        elapsed = self._clock() - started
        self.reliability.record_performance(name, elapsed, True, records_returned=len(records))
        if error is not None:
            # Partial: report it and leave the cache alone so the next call asks again.
            partial = SourceFailure(name, str(error), retryable=True, severity="warning")
            return _Outcome(list(records), partial=partial, elapsed=elapsed)
        if not ctx.expired():
            self.cache.set(key, records)
        return _Outcome(list(records), elapsed=elapsed)

    async def discover_all(
        self, options: DiscoveryOptions | None = None, deadline: float | None = None
    ) -> DiscoveryResult:
        """Run one discovery across every healthy source and reconcile the results.

        ``deadline`` (seconds) bounds the whole call; adapters still running
        when it passes stop retrying and contribute what they have.
        """
        options = options or DiscoveryOptions()
        started = self._clock()
        ctx = DiscoveryContext(deadline, clock=self._clock)

        enabled = self.enabled_adapters()
        health = await self.health_check_all(ctx)
        errors = [
            _failure(h.source_name, h.last_error or "Source unhealthy", "warning")
            for h in health
            if not h.healthy
        ]
        healthy_names = {h.source_name for h in health if h.healthy}
        ordered = self.prioritize((a for a in enabled if a.source_name in healthy_names), options)
        logger.info(
            "Discovering from %d sources: %s",
            len(ordered),
            ", ".join(a.source_name for a in ordered) or "none",
        )

        outcomes = await self._fan_out(ordered, options, ctx)

        raw: list[RawRecord] = []
        source_counts: dict[str, int] = {}
        for adapter in ordered:
            outcome = outcomes[adapter.source_name]
            if outcome.failure is not None:
                errors.append(outcome.failure)
                continue
            source_counts[adapter.source_name] = len(outcome.records)
            raw.extend(outcome.records)
            if outcome.partial is not None:
                errors.append(outcome.partial)

        report = self.engine.reconcile(raw)
        self._feed_reliability(report, source_counts)

        attempted = [o for o in outcomes.values() if not o.cached]
        timed = [o.elapsed for o in attempted if o.failure is None]
        metrics = DiscoveryMetrics(
            total_time=self._clock() - started,
            parallel_sources=len(ordered),
            successful_sources=len(source_counts),
            failed_sources=len(enabled) - len(source_counts),
            average_response_time=sum(timed) / len(timed) if timed else 0.0,
            rate_limited_sources=sorted(self._rate_limited(enabled, outcomes)),
            cache_hit_rate=(len(outcomes) - len(attempted)) / len(outcomes) if outcomes else 0.0,
        )
        result = DiscoveryResult(
            records=report.records,
            source_counts=source_counts,
            source_health=health,
            report=report,
            errors=errors,
            metrics=metrics,
        )
        logger.info(
            "Discovery finished: %d raw, %d unique, %d errors in %.2fs",
            report.metrics.total_raw,
            report.metrics.unique,
            len(errors),
            metrics.total_time,
        )
        if enabled and not source_counts:
            raise AllSourcesFailedError(result)
        return result

    async def _fan_out(
        self, adapters: list[BaseSourceAdapter], options: DiscoveryOptions, ctx: DiscoveryContext
    ) -> dict[str, _Outcome]:
        if not adapters:
            return {}
        tasks = {
            asyncio.create_task(self._discover_one(a, options, ctx)): a.source_name for a in adapters
        }
        remaining = ctx.remaining()
        timeout = None if remaining is None else remaining + DEADLINE_GRACE
        done, pending = await asyncio.wait(tasks, timeout=timeout)

        outcomes: dict[str, _Outcome] = {}
        for task in done:
            outcomes[tasks[task]] = task.result()
        for task in pending:
            task.cancel()
            name = tasks[task]
            logger.warning("Cancelled %s after the discovery deadline", name)
            self.reliability.record_performance(name, timeout or 0.0, False, error="deadline")
            outcomes[name] = _Outcome(
                failure=_failure(name, "Timed out: discovery deadline reached"),
                elapsed=timeout or 0.0,
            )
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return outcomes

    @staticmethod
    def _rate_limited(
        adapters: list[BaseSourceAdapter], outcomes: dict[str, _Outcome]
    ) -> set[str]:
        names = {a.source_name for a in adapters if a.rate_limit_status().is_limited}
        for name, outcome in outcomes.items():
            if outcome.failure and "rate limit" in outcome.failure.error.lower():
                names.add(name)
        return names

    def _feed_reliability(self, report: ReconciliationReport, source_counts: dict[str, int]) -> None:
        unique: dict[str, int] = dict.fromkeys(source_counts, 0)
        for record in report.records:
            if len(record.sources) == 1:
                unique[record.primary_source] = unique.get(record.primary_source, 0) + 1
            else:
                self._record_agreement(record)
        for name, total in source_counts.items():
            self.reliability.record_contribution(name, unique.get(name, 0), total)
            self.reliability.evaluate(name)

    def _record_agreement(self, record: EnrichedRecord) -> None:
        consistent = len(record.validation.consistent_fields)
        for source in record.sources:
            agreed = total = consistent
            for conflict in record.conflicts:
                if source not in conflict.values:
                    continue
                total += 1
                if normalize_value(conflict.values[source]) == normalize_value(conflict.resolved_value):
                    agreed += 1
            self.reliability.record_validation(source, agreed, total, record.cve_id)

    # Details

    async def get_details(self, cve_id: str, deadline: float | None = None) -> EnrichedRecord | None:
        """Look one CVE up in every usable source and reconcile the answers."""
        ctx = DiscoveryContext(deadline, clock=self._clock)
        with self._health_lock:
            unhealthy = {name for name, h in self._health.items() if not h.healthy}
        adapters = [a for a in self.enabled_adapters() if a.source_name not in unhealthy]

        results = await asyncio.gather(
            *(a.get_details(cve_id, ctx) for a in adapters), return_exceptions=True
        )
        records: list[RawRecord] = []
        for adapter, result in zip(adapters, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Detail lookup failed for %s on %s: %s", cve_id, adapter.source_name, result)
            elif result is not None:
                records.append(result)
        if not records:
            return None

        report = self.engine.reconcile(records)
        wanted = cve_id.strip().upper()
        for record in report.records:
            if record.fingerprint == wanted:
                return record
        return report.records[0]
