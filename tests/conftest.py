"""Test configuration and fixtures for cvehunt."""

import tempfile
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from cvehunt.config.settings import DiscoverySettings
from cvehunt.modules.discovery.models import RawRecord
from cvehunt.modules.discovery.ratelimit import BucketConfig, RateLimiter

FAST_SOURCES = ("nist", "mitre", "vulners", "circl", "cvedetails", "exploitdb", "alpha", "beta", "gamma")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> DiscoverySettings:
    """Settings tuned for fast, deterministic adapter tests."""
    return DiscoverySettings(
        max_attempts=3,
        backoff_base=0.01,
        backoff_max=0.01,
        breaker_threshold=3,
        breaker_reset=60.0,
        request_timeout=5.0,
        health_timeout=5.0,
        max_results=100,
    )


@pytest.fixture
def limiter() -> RateLimiter:
    """A limiter that never makes tests wait."""
    fast = BucketConfig(rps=1000.0, burst=1000)
    return RateLimiter(overrides={name: fast for name in FAST_SOURCES}, sleep=no_sleep)


@pytest.fixture
def make_record() -> Callable[..., RawRecord]:
    """Factory for RawRecord with sensible defaults."""

    def _make(
        cve_id: str | None = "CVE-2024-1234",
        source: str = "nist",
        **overrides,
    ) -> RawRecord:
        published = datetime.now(UTC) - timedelta(days=10)
        values = {
            "description": "Buffer overflow in Example Server allows remote code execution.",
            "published": published,
            "modified": published + timedelta(days=1),
            "severity": "HIGH",
            "cvss_score": 7.5,
            "source_url": f"https://{source}.example/{cve_id}",
        }
        values.update(overrides)
        return RawRecord(cve_id=cve_id, source=source, **values)

    return _make


@pytest.fixture
def fixed_reliability() -> Callable[[dict[str, float]], Callable[[str], float]]:
    """Build a reliability lookup from a fixed mapping."""

    def _build(scores: dict[str, float]) -> Callable[[str], float]:
        return lambda source: scores.get(source, 0.5)

    return _build


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "cves.db"
