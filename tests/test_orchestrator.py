"""Tests for the discovery coordinator."""

import asyncio

import httpx
import pytest
import respx

from conftest import no_sleep
from cvehunt.config.settings import DiscoverySettings
from cvehunt.modules.discovery.adapters import BaseSourceAdapter
from cvehunt.modules.discovery.errors import AllSourcesFailedError, SourceResponseError, SourceServerError
from cvehunt.modules.discovery.models import DiscoveryOptions
from cvehunt.modules.discovery.orchestrator import DiscoveryCoordinator
from cvehunt.modules.reliability import ReliabilityService

SLOW_URL = "https://slow.example/api/cves"


class ScriptedAdapter(BaseSourceAdapter):
    """Adapter whose answers are fixed up front."""

    def __init__(
        self,
        name,
        settings,
        limiter,
        records=(),
        healthy=True,
        error=None,
        delay=0.0,
        health_delay=0.0,
        fetch_url=None,
        prior=0.5,
    ):
        self.source_name = name
        self.reliability_score = prior
        super().__init__(settings, limiter, sleep=no_sleep)
        self.records = list(records)
        self.healthy = healthy
        self.error = error
        self.delay = delay
        self.health_delay = health_delay
        self.fetch_url = fetch_url
        self.discover_calls = 0

    async def _health_check(self, ctx):
        if self.health_delay:
            await asyncio.sleep(self.health_delay)
        return self.healthy

    async def _discover(self, options, ctx, sink, limit):
        self.discover_calls += 1
        if self.fetch_url:
            await self._get_json(self.fetch_url, ctx=ctx)
        if self.delay:
            await asyncio.sleep(self.delay)
        sink.extend(self.records)
        if self.error is not None:
            raise self.error

    async def _details(self, cve_id, ctx):
        if self.error is not None:
            raise self.error
        return next((r for r in self.records if r.cve_id == cve_id), None)


@pytest.fixture
def scripted(settings, limiter):
    def _make(name, **kwargs):
        return ScriptedAdapter(name, settings, limiter, **kwargs)

    return _make


def _coordinator(adapters, settings, limiter) -> DiscoveryCoordinator:
    return DiscoveryCoordinator(adapters, settings=settings, limiter=limiter)


class TestDiscoverAll:
    @pytest.mark.asyncio
    async def test_merges_sources(self, scripted, settings, limiter, make_record):
        alpha = scripted(
            "alpha",
            prior=0.9,
            records=[make_record("CVE-2024-1000", "alpha", cvss_score=7.2)],
        )
        beta = scripted(
            "beta",
            prior=0.4,
            records=[
                make_record("CVE-2024-1000", "beta", cvss_score=9.1),
                make_record("CVE-2024-1001", "beta"),
            ],
        )
        async with _coordinator([alpha, beta], settings, limiter) as coordinator:
            result = await coordinator.discover_all(DiscoveryOptions())

        assert result.succeeded
        assert result.source_counts == {"alpha": 1, "beta": 2}
        assert result.errors == []
        merged = next(r for r in result.records if r.cve_id == "CVE-2024-1000")
        assert merged.cvss_score == 7.2
        assert merged.sources == ["alpha", "beta"]
        assert merged.validation.status == "partial"
        assert result.report.duplicates_detected == 1
        assert result.metrics.successful_sources == 2
        assert result.metrics.failed_sources == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_source_timing_out_on_every_attempt(self, scripted, settings, limiter, make_record):
        route = respx.get(SLOW_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        good = scripted("alpha", records=[make_record("CVE-2024-2000", "alpha")])
        other = scripted("gamma", records=[make_record("CVE-2024-2000", "gamma")])
        slow = scripted("beta", fetch_url=SLOW_URL, records=[make_record("CVE-2024-2001", "beta")])

        async with _coordinator([good, slow, other], settings, limiter) as coordinator:
            result = await coordinator.discover_all(DiscoveryOptions())

        assert route.call_count == settings.max_attempts
        assert "beta" not in result.source_counts
        assert [r.cve_id for r in result.records] == ["CVE-2024-2000"]
        assert result.records[0].sources == ["alpha", "gamma"]
        (failure,) = result.errors
        assert failure.source_name == "beta"
        assert failure.retryable
        assert failure.severity == "error"
        assert result.metrics.failed_sources == 1

    @pytest.mark.asyncio
    async def test_unhealthy_sources_are_skipped(self, scripted, settings, limiter, make_record):
        good = scripted("alpha", records=[make_record("CVE-2024-3000", "alpha")])
        sick = scripted("beta", healthy=False, records=[make_record("CVE-2024-3001", "beta")])
        async with _coordinator([good, sick], settings, limiter) as coordinator:
            result = await coordinator.discover_all()

        assert sick.discover_calls == 0
        assert [e.severity for e in result.errors] == ["warning"]
        assert {h.source_name: h.healthy for h in result.source_health} == {"alpha": True, "beta": False}

    @pytest.mark.asyncio
    async def test_disabled_adapters_are_ignored(self, scripted, settings, limiter, make_record):
        good = scripted("alpha", records=[make_record("CVE-2024-3100", "alpha")])
        off = scripted("beta", records=[make_record("CVE-2024-3101", "beta")])
        off.enabled = False
        async with _coordinator([good, off], settings, limiter) as coordinator:
            result = await coordinator.discover_all()
        assert off.discover_calls == 0
        assert list(result.source_counts) == ["alpha"]

    @pytest.mark.asyncio
    async def test_results_are_cached(self, scripted, settings, limiter, make_record):
        alpha = scripted("alpha", records=[make_record("CVE-2024-4000", "alpha")])
        async with _coordinator([alpha], settings, limiter) as coordinator:
            first = await coordinator.discover_all(DiscoveryOptions())
            second = await coordinator.discover_all(DiscoveryOptions())
            third = await coordinator.discover_all(DiscoveryOptions(keywords=("other",)))

        assert alpha.discover_calls == 2
        assert first.metrics.cache_hit_rate == 0.0
        assert second.metrics.cache_hit_rate == 1.0
        assert [r.cve_id for r in second.records] == ["CVE-2024-4000"]
        assert third.records == []

    @pytest.mark.asyncio
    async def test_deadline_cancels_stragglers(self, scripted, settings, limiter, make_record):
        fast = scripted("alpha", records=[make_record("CVE-2024-5000", "alpha")])
        stuck = scripted("beta", delay=30, records=[make_record("CVE-2024-5001", "beta")])
        async with _coordinator([fast, stuck], settings, limiter) as coordinator:
            result = await coordinator.discover_all(DiscoveryOptions(), deadline=0.05)

        assert result.source_counts == {"alpha": 1}
        (failure,) = result.errors
        assert failure.source_name == "beta"
        assert "deadline" in failure.error
        assert failure.retryable

    @pytest.mark.asyncio
    async def test_partial_records_kept_on_error(self, scripted, settings, limiter, make_record):
        partial = scripted(
            "alpha",
            records=[make_record("CVE-2024-5100", "alpha")],
            error=SourceResponseError("Client error: 400 Bad Request", "alpha"),
        )
        async with _coordinator([partial], settings, limiter) as coordinator:
            result = await coordinator.discover_all()
        assert result.source_counts == {"alpha": 1}
        (failure,) = result.errors
        assert failure.source_name == "alpha"
        assert failure.severity == "warning"
        assert failure.retryable
        assert "400" in failure.error

    @pytest.mark.asyncio
    async def test_partial_results_are_not_cached(self, scripted, settings, limiter, make_record):
        flaky = scripted(
            "alpha",
            records=[make_record("CVE-2024-5200", "alpha")],
            error=SourceServerError("Server error: 502 Bad Gateway", "alpha", status_code=502),
        )
        async with _coordinator([flaky], settings, limiter) as coordinator:
            first = await coordinator.discover_all()
            second = await coordinator.discover_all()

        assert flaky.discover_calls == 2
        assert second.metrics.cache_hit_rate == 0.0
        assert [e.source_name for e in first.errors] == ["alpha"]
        assert [e.source_name for e in second.errors] == ["alpha"]
        assert len(coordinator.cache) == 0

    @pytest.mark.asyncio
    async def test_all_sources_failed(self, scripted, settings, limiter):
        bad = scripted("alpha", error=SourceResponseError("Client error: 401 Unauthorized", "alpha"))
        broken = scripted("beta", error=RuntimeError("bug"))
        async with _coordinator([bad, broken], settings, limiter) as coordinator:
            with pytest.raises(AllSourcesFailedError) as excinfo:
                await coordinator.discover_all()

        errors = {e.source_name: e for e in excinfo.value.result.errors}
        assert not errors["alpha"].retryable
        assert errors["alpha"].severity == "critical"
        assert errors["beta"].severity == "critical"
        assert excinfo.value.result.records == []

    @pytest.mark.asyncio
    async def test_no_enabled_sources_is_empty_result(self, settings, limiter):
        async with _coordinator([], settings, limiter) as coordinator:
            result = await coordinator.discover_all()
        assert result.records == []
        assert not result.succeeded

    @pytest.mark.asyncio
    async def test_reliability_feedback(self, scripted, settings, limiter, make_record):
        alpha = scripted(
            "alpha",
            prior=0.9,
            records=[make_record("CVE-2024-6000", "alpha"), make_record("CVE-2024-6001", "alpha")],
        )
        beta = scripted("beta", prior=0.4, records=[make_record("CVE-2024-6000", "beta", cvss_score=1.0)])
        service = ReliabilityService()
        coordinator = DiscoveryCoordinator(
            [alpha, beta], settings=settings, limiter=limiter, reliability=service
        )
        async with coordinator:
            await coordinator.discover_all()

        alpha_metrics = service.metrics("alpha")
        assert alpha_metrics.total_contributed == 2
        assert alpha_metrics.unique_contributed == 1
        assert alpha_metrics.evaluation_count == 2
        assert alpha_metrics.last_evaluated is not None
        # beta lost the cvss_score vote, so its accuracy falls below alpha's.
        assert service.metrics("beta").accuracy < alpha_metrics.accuracy


class TestHealthAndPriority:
    @pytest.mark.asyncio
    async def test_health_check_timeout(self, limiter):
        settings = DiscoverySettings(health_timeout=0.05)
        slow = ScriptedAdapter("alpha", settings, limiter, health_delay=5)
        async with _coordinator([slow], settings, limiter) as coordinator:
            (health,) = await coordinator.health_check_all()
        assert not health.healthy
        assert "timed out" in health.last_error
        assert coordinator.source_health()[0].healthy is False

    def test_prioritize(self, scripted, settings, limiter):
        adapters = [scripted("alpha"), scripted("beta"), scripted("gamma")]
        coordinator = _coordinator(adapters, settings, limiter)
        for _ in range(3):
            coordinator.reliability.record_performance("alpha", 1.0, False)
        coordinator.reliability.record_performance("beta", 1.0, True)
        ordered = coordinator.prioritize(adapters, DiscoveryOptions(prioritize_sources=("GAMMA",)))
        assert [a.source_name for a in ordered] == ["gamma", "beta", "alpha"]


class TestGetDetails:
    @pytest.mark.asyncio
    async def test_merges_detail_answers(self, scripted, settings, limiter, make_record):
        alpha = scripted("alpha", prior=0.9, records=[make_record("CVE-2021-44228", "alpha")])
        beta = scripted("beta", records=[make_record("CVE-2021-44228", "beta")])
        failing = scripted("gamma", error=SourceResponseError("Client error: 403 Forbidden", "gamma"))
        async with _coordinator([alpha, beta, failing], settings, limiter) as coordinator:
            record = await coordinator.get_details("cve-2021-44228")
        assert record.cve_id == "CVE-2021-44228"
        assert record.sources == ["alpha", "beta"]
        assert record.validation.status == "validated"

    @pytest.mark.asyncio
    async def test_unknown_cve(self, scripted, settings, limiter):
        async with _coordinator([scripted("alpha")], settings, limiter) as coordinator:
            assert await coordinator.get_details("CVE-2099-0001") is None

    @pytest.mark.asyncio
    async def test_skips_known_unhealthy(self, scripted, settings, limiter, make_record):
        sick = scripted("alpha", healthy=False, records=[make_record("CVE-2024-7000", "alpha")])
        async with _coordinator([sick], settings, limiter) as coordinator:
            await coordinator.health_check_all()
            assert await coordinator.get_details("CVE-2024-7000") is None
