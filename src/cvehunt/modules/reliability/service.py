"""Source reliability scoring.

Each source starts from a static prior. Observed performance, cross-source
agreement and contribution counts produce seven sub-scores whose weighted sum
is the dynamic score; the final score blends prior and dynamic, leaning on
the dynamic side as evidence accumulates.
"""

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from .models import (
    PerformanceSample,
    Recommendation,
    ReliabilityMetrics,
    ReliabilityReport,
    ReliabilitySummary,
    TrendAnalysis,
    ValidationSample,
)

logger = logging.getLogger(__name__)

# (base score, metadata richness)
SOURCE_PRIORS: dict[str, tuple[float, float]] = {
    "nist": (0.98, 0.9),
    "mitre": (0.95, 0.7),
    "cvedetails": (0.85, 0.8),
    "vulners": (0.80, 0.9),
    "circl": (0.75, 0.6),
    "exploitdb": (0.70, 0.8),
}
UNKNOWN_PRIOR = (0.5, 0.5)

DEFAULT_WEIGHTS: dict[str, float] = {
    "accuracy": 0.25,
    "completeness": 0.20,
    "freshness": 0.15,
    "consistency": 0.15,
    "performance": 0.10,
    "availability": 0.10,
    "metadata": 0.05,
}

HISTORY_SIZE = 1000
VALIDATION_WINDOW = timedelta(days=30)
PERFORMANCE_WINDOW = timedelta(days=7)
MIN_EVALUATIONS = 10
SLOW_RESPONSE = 30.0
DEFAULT_RATE = 0.95

HEALTHY_THRESHOLD = 0.8
ATTENTION_THRESHOLD = 0.6

_FRESHNESS_TIERS = (
    (timedelta(hours=1), 1.0),
    (timedelta(hours=6), 0.9),
    (timedelta(hours=24), 0.8),
    (timedelta(hours=72), 0.6),
)


def normalize_weights(overrides: dict[str, float] | None = None) -> dict[str, float]:
    """Merge overrides into the defaults and rescale so the weights sum to 1."""
    weights = dict(DEFAULT_WEIGHTS)
    for name, value in (overrides or {}).items():
        if name not in weights:
            logger.warning("Unknown reliability weight %r ignored", name)
            continue
        weights[name] = max(0.0, float(value))
    total = sum(weights.values())
    if total <= 0:
        logger.warning("Reliability weights sum to zero, using defaults")
        return dict(DEFAULT_WEIGHTS)
    return {name: value / total for name, value in weights.items()}


def blend(base: float, dynamic: float, evaluations: int, minimum: int = MIN_EVALUATIONS) -> float:
    """Blend prior and dynamic score by how much evidence exists."""
    if evaluations < minimum:
        prior_weight = 1.0 - 0.5 * evaluations / minimum
    else:
        prior_weight = max(0.2, 0.5 * minimum / evaluations)
    return max(0.0, min(1.0, prior_weight * base + (1 - prior_weight) * dynamic))


def _variance(values: list[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def classify_trend(values: list[float]) -> str:
    """Compare the halves of a series: a 10% move either way is a trend."""
    if len(values) < 3:
        return "stable"
    middle = len(values) // 2
    first = sum(values[:middle]) / middle
    second = sum(values[middle:]) / (len(values) - middle)
    if first == 0:
        return "improving" if second > 0 else "stable"
    change = (second - first) / first
    if change > 0.1:
        return "improving"
    if change < -0.1:
        return "declining"
    return "stable"


class _SourceState:
    def __init__(self, metrics: ReliabilityMetrics, history_size: int):
        self.metrics = metrics
        self.performance: deque[PerformanceSample] = deque(maxlen=history_size)
        self.validations: deque[ValidationSample] = deque(maxlen=history_size)


class ReliabilityService:
    """Per-source reliability bookkeeping. Safe to share between threads."""

    def __init__(
        self,
        weights: dict[str, float] | None = None,
        priors: dict[str, tuple[float, float]] | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        history_size: int = HISTORY_SIZE,
        min_evaluations: int = MIN_EVALUATIONS,
    ):
        self.weights = normalize_weights(weights)
        self._clock = clock
        self._history_size = history_size
        self._min_evaluations = min_evaluations
        self._lock = threading.RLock()
        self._sources: dict[str, _SourceState] = {}
        for name, (base, richness) in (priors or SOURCE_PRIORS).items():
            self.register_source(name, base, richness)

    def register_source(self, name: str, base_score: float, metadata_richness: float) -> None:
        with self._lock:
            if name in self._sources:
                return
            metrics = ReliabilityMetrics(
                source_name=name,
                base_score=base_score,
                metadata_richness=metadata_richness,
                final_score=base_score,
            )
            self._sources[name] = _SourceState(metrics, self._history_size)

    def _state(self, name: str) -> _SourceState:
        state = self._sources.get(name)
        if state is None:
            self.register_source(name, *UNKNOWN_PRIOR)
            state = self._sources[name]
        return state

    # Recording

    def record_performance(
        self,
        source: str,
        response_time: float,
        success: bool,
        records_returned: int = 0,
        error: str | None = None,
    ) -> None:
        sample = PerformanceSample(
            response_time=max(0.0, response_time),
            success=success,
            records_returned=records_returned,
            error=error,
            timestamp=self._clock(),
        )
        with self._lock:
            state = self._state(source)
            state.performance.append(sample)
            state.metrics.total_requests += 1
            state.metrics.evaluation_count += 1

    def record_validation(
        self, source: str, agreed_fields: int, total_fields: int, cve_id: str | None = None
    ) -> None:
        if total_fields <= 0:
            return
        sample = ValidationSample(
            agreed_fields=max(0, min(agreed_fields, total_fields)),
            total_fields=total_fields,
            cve_id=cve_id,
            timestamp=self._clock(),
        )
        with self._lock:
            self._state(source).validations.append(sample)

    def record_contribution(self, source: str, unique: int, total: int) -> None:
        with self._lock:
            metrics = self._state(source).metrics
            metrics.unique_contributed += max(0, unique)
            metrics.total_contributed += max(0, total)

    # Sub-scores

    def _recent(self, samples: Iterable, window: timedelta) -> list:
        cutoff = self._clock() - window
        return [s for s in samples if s.timestamp >= cutoff]

    def _accuracy(self, state: _SourceState) -> float:
        recent = self._recent(state.validations, VALIDATION_WINDOW)
        total = sum(v.total_fields for v in recent)
        if not total:
            return 0.8
        return sum(v.agreed_fields for v in recent) / total

    def _completeness(self, state: _SourceState) -> float:
        metrics = state.metrics
        if not metrics.total_contributed:
            return 0.5
        uniqueness = metrics.unique_contributed / metrics.total_contributed
        return 0.6 * min(1.0, uniqueness) + 0.4 * metrics.metadata_richness

    def _freshness(self, state: _SourceState) -> float:
        successes = [s.timestamp for s in state.performance if s.success]
        if not successes:
            return 0.5
        age = self._clock() - max(successes)
        for limit, score in _FRESHNESS_TIERS:
            if age <= limit:
                return score
        return 0.4

    def _consistency(self, recent: list[PerformanceSample]) -> float:
        if len(recent) < 3:
            return 0.5
        latency = 1.0 / (1.0 + _variance([s.response_time for s in recent]))
        outcomes = 1.0 - _variance([1.0 if s.success else 0.0 for s in recent])
        return (latency + outcomes) / 2

    @staticmethod
    def _rates(samples: list[PerformanceSample]) -> tuple[float, float]:
        """Return (success rate, average successful response time)."""
        if not samples:
            return DEFAULT_RATE, 0.0
        successes = [s for s in samples if s.success]
        rate = len(successes) / len(samples)
        average = sum(s.response_time for s in successes) / len(successes) if successes else SLOW_RESPONSE
        return rate, average

    # Evaluation

    def evaluate(self, source: str) -> ReliabilityMetrics:
        """Recompute every sub-score and the final score for ``source``."""
        with self._lock:
            state = self._state(source)
            metrics = state.metrics
            recent = self._recent(state.performance, PERFORMANCE_WINDOW)
            success_rate, average = self._rates(recent)
            uptime, _ = self._rates(list(state.performance))

            metrics.accuracy = self._accuracy(state)
            metrics.completeness = self._completeness(state)
            metrics.freshness = self._freshness(state)
            metrics.consistency = self._consistency(recent)
            metrics.performance = 0.4 * max(0.0, 1 - average / SLOW_RESPONSE) + 0.6 * success_rate
            metrics.availability = uptime
            metrics.metadata_score = metrics.metadata_richness
            metrics.success_rate = success_rate
            metrics.uptime = uptime
            metrics.average_response_time = average

            w = self.weights
            metrics.dynamic_score = (
                w["accuracy"] * metrics.accuracy
                + w["completeness"] * metrics.completeness
                + w["freshness"] * metrics.freshness
                + w["consistency"] * metrics.consistency
                + w["performance"] * metrics.performance
                + w["availability"] * metrics.availability
                + w["metadata"] * metrics.metadata_score
            )
            metrics.final_score = blend(
                metrics.base_score,
                metrics.dynamic_score,
                metrics.evaluation_count,
                self._min_evaluations,
            )
            metrics.last_evaluated = self._clock()
            logger.debug(
                "Reliability for %s: dynamic=%.3f final=%.3f (%d evaluations)",
                source,
                metrics.dynamic_score,
                metrics.final_score,
                metrics.evaluation_count,
            )
            return replace(metrics)

    def evaluate_all(self) -> None:
        with self._lock:
            for name in list(self._sources):
                self.evaluate(name)

    # Queries

    def score(self, source: str) -> float:
        """Current final reliability score, used by the reconciliation engine."""
        with self._lock:
            return self._state(source).metrics.final_score

    def success_rate(self, source: str) -> float:
        with self._lock:
            recent = self._recent(self._state(source).performance, PERFORMANCE_WINDOW)
            return self._rates(recent)[0]

    def metrics(self, source: str) -> ReliabilityMetrics:
        with self._lock:
            return replace(self._state(source).metrics)

    def sources(self) -> list[str]:
        with self._lock:
            return list(self._sources)

    def ranking(self) -> list[ReliabilityMetrics]:
        with self._lock:
            snapshot = [replace(s.metrics) for s in self._sources.values()]
        return sorted(snapshot, key=lambda m: (-m.final_score, m.source_name))

    def report(self) -> ReliabilityReport:
        rankings = self.ranking()
        recommendations: list[Recommendation] = []
        for m in rankings:
            if m.final_score < 0.5:
                recommendations.append(
                    Recommendation(
                        m.source_name,
                        "Very low reliability score",
                        "Consider disabling or investigating data quality issues",
                        "high",
                    )
                )
            elif m.success_rate < 0.8:
                recommendations.append(
                    Recommendation(
                        m.source_name,
                        "Low success rate",
                        "Check connection stability and error handling",
                        "medium",
                    )
                )
            elif m.average_response_time > 15.0:
                recommendations.append(
                    Recommendation(
                        m.source_name,
                        "High response time",
                        "Optimize queries or implement caching",
                        "low",
                    )
                )
        total = len(rankings)
        summary = ReliabilitySummary(
            total_sources=total,
            average_reliability=sum(m.final_score for m in rankings) / total if total else 0.0,
            healthy_sources=sum(1 for m in rankings if m.final_score >= HEALTHY_THRESHOLD),
            sources_needing_attention=sum(1 for m in rankings if m.final_score < ATTENTION_THRESHOLD),
        )
        return ReliabilityReport(summary=summary, rankings=rankings, recommendations=recommendations)

    def analyze_trends(self, source: str, days: int = 7) -> TrendAnalysis:
        with self._lock:
            state = self._state(source)
            history = self._recent(state.performance, timedelta(days=days))
            validations = self._recent(state.validations, timedelta(days=days))

        if len(history) < 5:
            return TrendAnalysis(
                source_name=source,
                reliability_trend="stable",
                performance_trend="stable",
                issues=["Insufficient data for trend analysis"],
                recommendations=["Continue monitoring source performance"],
            )

        if len(validations) >= 3:
            reliability_series = [v.agreed_fields / v.total_fields for v in validations]
        else:
            reliability_series = [1.0 if s.success else 0.0 for s in history]
        performance_series = [
            max(0.0, 1 - s.response_time / SLOW_RESPONSE) if s.success else 0.0 for s in history
        ]
        analysis = TrendAnalysis(
            source_name=source,
            reliability_trend=classify_trend(reliability_series),
            performance_trend=classify_trend(performance_series),
        )

        success_rate, average = self._rates(history)
        if success_rate < 0.9:
            analysis.issues.append(f"Low success rate: {success_rate * 100:.1f}%")
            analysis.recommendations.append("Investigate connection issues or API changes")
        if average > 10.0:
            analysis.issues.append(f"High response time: {average:.1f}s")
            analysis.recommendations.append("Consider timeout adjustments or caching strategies")
        if analysis.reliability_trend == "declining":
            analysis.issues.append("Reliability trend is declining")
            analysis.recommendations.append("Review data quality and cross-source validations")
        return analysis
