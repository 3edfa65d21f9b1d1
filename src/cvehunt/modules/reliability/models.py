"""Reliability tracking models."""

from dataclasses import dataclass, field
from datetime import UTC, datetime


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class PerformanceSample:
    """One observed request outcome for a source."""

    response_time: float
    success: bool
    records_returned: int = 0
    error: str | None = None
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class ValidationSample:
    """How many reconciled fields a source agreed on for one record."""

    agreed_fields: int
    total_fields: int
    cve_id: str | None = None
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass
class ReliabilityMetrics:
    """Static prior, dynamic sub-scores and the blended final score for a source."""

    source_name: str
    base_score: float
    metadata_richness: float
    final_score: float
    dynamic_score: float = 0.0
    accuracy: float = 0.8
    completeness: float = 0.5
    freshness: float = 0.5
    consistency: float = 0.5
    performance: float = 0.0
    availability: float = 0.95
    metadata_score: float = 0.0
    average_response_time: float = 0.0
    success_rate: float = 0.95
    uptime: float = 0.95
    total_requests: int = 0
    total_contributed: int = 0
    unique_contributed: int = 0
    evaluation_count: int = 0
    last_evaluated: datetime | None = None


@dataclass
class Recommendation:
    source_name: str
    issue: str
    recommendation: str
    priority: str


@dataclass
class ReliabilitySummary:
    total_sources: int
    average_reliability: float
    healthy_sources: int
    sources_needing_attention: int


@dataclass
class ReliabilityReport:
    summary: ReliabilitySummary
    rankings: list[ReliabilityMetrics]
    recommendations: list[Recommendation]


@dataclass
class TrendAnalysis:
    source_name: str
    reliability_trend: str
    performance_trend: str
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
