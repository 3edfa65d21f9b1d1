"""Tests for the discovery result cache and deadline context."""

import pytest

from conftest import FakeClock
from cvehunt.modules.discovery.cache import DiscoveryCache
from cvehunt.modules.discovery.context import DiscoveryContext
from cvehunt.modules.discovery.models import DiscoveryOptions


class TestDiscoveryCache:
    def test_key_format(self):
        options = DiscoveryOptions(severities=("high",))
        key = DiscoveryCache.make_key("nist", options.cache_key())
        assert key.startswith("cve_discovery:nist:")
        assert len(key.rsplit(":", 1)[1]) == 16

    def test_get_set_and_expiry(self):
        clock = FakeClock()
        cache = DiscoveryCache(ttl=10, clock=clock)
        cache.set("k", [1, 2])
        assert cache.get("k") == [1, 2]
        clock.advance(11)
        assert cache.get("k") is None
        assert cache.hits == 1
        assert cache.misses == 1
        assert cache.hit_rate == 0.5

    def test_evicts_oldest_when_full(self):
        cache = DiscoveryCache(ttl=100, max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == 3

    def test_clear(self):
        cache = DiscoveryCache()
        cache.set("a", 1)
        cache.get("a")
        cache.clear()
        assert len(cache) == 0
        assert cache.hit_rate == 0.0


class TestDiscoveryOptions:
    def test_cache_key_ignores_order_and_case(self):
        a = DiscoveryOptions(keywords=("Apache", "nginx"), severities=("high", "critical"))
        b = DiscoveryOptions(keywords=("nginx", "apache"), severities=("CRITICAL", "HIGH"))
        assert a.cache_key() == b.cache_key()

    def test_cache_key_differs_for_different_filters(self):
        assert DiscoveryOptions(timeframe_years=1).cache_key() != DiscoveryOptions(
            timeframe_years=2
        ).cache_key()

    def test_invalid_options(self):
        from datetime import date

        with pytest.raises(ValueError):
            DiscoveryOptions(start_date=date(2024, 1, 1))
        with pytest.raises(ValueError):
            DiscoveryOptions(start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))
        with pytest.raises(ValueError):
            DiscoveryOptions(timeframe_years=0)

    def test_result_limit(self):
        assert DiscoveryOptions().result_limit(1000) == 1000
        assert DiscoveryOptions(max_results_per_source=10).result_limit(1000) == 10
        assert DiscoveryOptions(max_results_per_source=5000).result_limit(1000) == 1000


class TestDiscoveryContext:
    def test_unbounded(self):
        ctx = DiscoveryContext()
        assert not ctx.bounded
        assert ctx.remaining() is None
        assert not ctx.expired()
        assert ctx.bound(30) == 30

    def test_bounded(self):
        clock = FakeClock()
        ctx = DiscoveryContext(5, clock=clock)
        assert ctx.bound(30) == 5
        clock.advance(4)
        assert ctx.bound(30) == pytest.approx(1)
        clock.advance(2)
        assert ctx.expired()
        assert ctx.remaining() == 0.0
        assert ctx.bound(30) == 0.001
