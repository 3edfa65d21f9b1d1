"""Fingerprinting, deduplication and reconciliation of raw CVE records."""

from .engine import ReconciliationEngine, enrichment_level, normalize_value, validation_status
from .fingerprint import fingerprint, is_content_fingerprint, normalize_description
from .models import (
    ConsolidatedMetadata,
    CrossSourceValidation,
    EnrichedRecord,
    FieldConflict,
    ReconciliationMetrics,
    ReconciliationReport,
)

__all__ = [
    "ConsolidatedMetadata",
    "CrossSourceValidation",
    "EnrichedRecord",
    "FieldConflict",
    "ReconciliationEngine",
    "ReconciliationMetrics",
    "ReconciliationReport",
    "enrichment_level",
    "fingerprint",
    "is_content_fingerprint",
    "normalize_description",
    "normalize_value",
    "validation_status",
]
