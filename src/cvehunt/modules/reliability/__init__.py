"""Source reliability scoring."""

from .models import (
    PerformanceSample,
    Recommendation,
    ReliabilityMetrics,
    ReliabilityReport,
    ReliabilitySummary,
    TrendAnalysis,
    ValidationSample,
)
from .service import (
    DEFAULT_WEIGHTS,
    SOURCE_PRIORS,
    ReliabilityService,
    blend,
    classify_trend,
    normalize_weights,
)

__all__ = [
    "DEFAULT_WEIGHTS",
    "SOURCE_PRIORS",
    "PerformanceSample",
    "Recommendation",
    "ReliabilityMetrics",
    "ReliabilityReport",
    "ReliabilityService",
    "ReliabilitySummary",
    "TrendAnalysis",
    "ValidationSample",
    "blend",
    "classify_trend",
    "normalize_weights",
]
