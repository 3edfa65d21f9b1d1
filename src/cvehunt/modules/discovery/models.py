"""Data models for multi-source CVE discovery."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from typing import TYPE_CHECKING, Any

from dateutil.relativedelta import relativedelta

if TYPE_CHECKING:
    from cvehunt.modules.reconcile.models import EnrichedRecord, ReconciliationReport

UNKNOWN_SEVERITY = "UNKNOWN"
NO_DESCRIPTION = "No description available"
SEVERITY_LEVELS = ("LOW", "MEDIUM", "HIGH", "CRITICAL")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _as_tuple(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value if item)


@dataclass(frozen=True)
class RawRecord:
    """One source's view of one vulnerability."""

    cve_id: str | None
    source: str
    description: str = ""
    source_url: str = ""
    published: datetime | None = None
    modified: datetime | None = None
    severity: str = UNKNOWN_SEVERITY
    cvss_score: float | None = None
    cvss_vector: str | None = None
    affected_products: tuple[str, ...] = ()
    references: tuple[str, ...] = ()
    cwe_ids: tuple[str, ...] = ()
    attack_vector: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        # Frozen, so normalize through object.__setattr__.
        if self.cve_id is not None:
            object.__setattr__(self, "cve_id", self.cve_id.strip() or None)
        score = self.cvss_score
        if score is not None:
            try:
                score = max(0.0, min(10.0, float(score)))
            except (TypeError, ValueError):
                score = None
            object.__setattr__(self, "cvss_score", score)
        object.__setattr__(self, "severity", (self.severity or UNKNOWN_SEVERITY).strip().upper())
        object.__setattr__(self, "description", (self.description or "").strip())
        for name in ("affected_products", "references", "cwe_ids"):
            object.__setattr__(self, name, _as_tuple(getattr(self, name)))


@dataclass(frozen=True)
class DiscoveryOptions:
    """Filters for a discovery request.

    Either ``timeframe_years`` or an explicit ``start_date``/``end_date`` pair
    selects the publication window; the explicit pair wins when given.
    """

    timeframe_years: int = 1
    start_date: date | None = None
    end_date: date | None = None
    severities: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    technologies: tuple[str, ...] = ()
    max_results_per_source: int | None = None
    prioritize_sources: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("start_date and end_date must be given together")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        if self.timeframe_years < 1:
            raise ValueError("timeframe_years must be at least 1")
        if self.max_results_per_source is not None and self.max_results_per_source < 1:
            raise ValueError("max_results_per_source must be positive")
        object.__setattr__(
            self, "severities", tuple(s.strip().upper() for s in self.severities if s.strip())
        )
        object.__setattr__(self, "keywords", _as_tuple(self.keywords))
        object.__setattr__(self, "technologies", _as_tuple(self.technologies))
        object.__setattr__(
            self, "prioritize_sources", tuple(s.lower() for s in _as_tuple(self.prioritize_sources))
        )

    def date_range(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """Return the inclusive (start, end) publication window in UTC."""
        if self.start_date and self.end_date:
            start = datetime.combine(self.start_date, time.min, tzinfo=UTC)
            end = datetime.combine(self.end_date, time.max, tzinfo=UTC)
            return start, end
        now = now or _utc_now()
        end = datetime.combine(now.date(), time.max, tzinfo=UTC)
        start = datetime.combine(now.date(), time.min, tzinfo=UTC) - relativedelta(
            years=self.timeframe_years
        )
        return start, end

    def result_limit(self, ceiling: int) -> int:
        """Cap the per-source result count at the configured ceiling."""
        if self.max_results_per_source is None:
            return ceiling
        return min(self.max_results_per_source, ceiling)

    def cache_key(self) -> str:
        """Return a stable short hash identifying these options."""
        payload = {
            "timeframe_years": self.timeframe_years,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "severities": sorted(self.severities),
            "keywords": sorted(k.lower() for k in self.keywords),
            "technologies": sorted(t.lower() for t in self.technologies),
            "max_results_per_source": self.max_results_per_source,
        }
        encoded = json.dumps(payload, sort_keys=True).encode()
        return hashlib.sha256(encoded).hexdigest()[:16]


@dataclass
class RateLimitStatus:
    """Snapshot of an adapter's own request window."""

    is_limited: bool
    remaining: int
    reset_time: datetime
    daily_limit: int


@dataclass
class SourceHealth:
    """Health snapshot for one source."""

    source_name: str
    healthy: bool
    response_time: float = 0.0
    success_rate: float = 1.0
    last_error: str | None = None
    last_checked: datetime = field(default_factory=_utc_now)


@dataclass
class SourceFailure:
    """A per-source error surfaced to the caller."""

    source_name: str
    error: str
    retryable: bool
    timestamp: datetime = field(default_factory=_utc_now)
    severity: str = "error"


@dataclass
class DiscoveryMetrics:
    """Timing and outcome counters for one discovery run."""

    total_time: float = 0.0
    parallel_sources: int = 0
    successful_sources: int = 0
    failed_sources: int = 0
    average_response_time: float = 0.0
    rate_limited_sources: list[str] = field(default_factory=list)
    cache_hit_rate: float = 0.0


@dataclass
class DiscoveryResult:
    """Everything a discovery run returns to its caller."""

    records: list[EnrichedRecord]
    source_counts: dict[str, int]
    source_health: list[SourceHealth]
    report: ReconciliationReport
    errors: list[SourceFailure]
    metrics: DiscoveryMetrics = field(default_factory=DiscoveryMetrics)

    @property
    def succeeded(self) -> bool:
        """True when at least one source contributed a result."""
        return bool(self.source_counts)
