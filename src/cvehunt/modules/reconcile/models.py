"""Reconciliation output models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

RESOLUTION_WEIGHTED_VOTE = "reliability_weighted_vote"


@dataclass
class FieldConflict:
    """Disagreement between sources on one field."""

    field: str
    values: dict[str, Any]
    severity: str
    resolved_value: Any
    weights: dict[str, float] = field(default_factory=dict)
    resolution: str = RESOLUTION_WEIGHTED_VOTE


@dataclass
class CrossSourceValidation:
    total_sources: int
    consistent_fields: list[str]
    conflicting_fields: list[str]
    confidence: float
    status: str


@dataclass
class ConsolidatedMetadata:
    references: list[str] = field(default_factory=list)
    cwe_ids: list[str] = field(default_factory=list)
    affected_products: list[str] = field(default_factory=list)
    source_data: dict[str, dict[str, Any]] = field(default_factory=dict)
    enrichment_level: str = "basic"


@dataclass
class EnrichedRecord:
    """One reconciled vulnerability assembled from every source that saw it."""

    fingerprint: str
    cve_id: str | None
    sources: list[str]
    primary_source: str
    reliability_score: float
    description: str
    published: datetime | None
    modified: datetime | None
    severity: str
    cvss_score: float | None
    validation: CrossSourceValidation
    metadata: ConsolidatedMetadata
    cvss_vector: str | None = None
    attack_vector: str | None = None
    source_url: str = ""
    conflicts: list[FieldConflict] = field(default_factory=list)
    duplicate_ids: list[str] = field(default_factory=list)

    @property
    def display_id(self) -> str:
        return self.cve_id or self.fingerprint

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""
        return {
            "fingerprint": self.fingerprint,
            "cve_id": self.cve_id,
            "sources": list(self.sources),
            "primary_source": self.primary_source,
            "reliability_score": round(self.reliability_score, 4),
            "description": self.description,
            "published": self.published.isoformat() if self.published else None,
            "modified": self.modified.isoformat() if self.modified else None,
            "severity": self.severity,
            "cvss_score": self.cvss_score,
            "cvss_vector": self.cvss_vector,
            "attack_vector": self.attack_vector,
            "source_url": self.source_url,
            "validation": {
                "status": self.validation.status,
                "confidence": round(self.validation.confidence, 4),
                "consistent_fields": self.validation.consistent_fields,
                "conflicting_fields": self.validation.conflicting_fields,
            },
            "conflicts": [
                {
                    "field": c.field,
                    "severity": c.severity,
                    "values": {k: _jsonable(v) for k, v in c.values.items()},
                    "resolved_value": _jsonable(c.resolved_value),
                }
                for c in self.conflicts
            ],
            "references": self.metadata.references,
            "cwe_ids": self.metadata.cwe_ids,
            "affected_products": self.metadata.affected_products,
            "enrichment_level": self.metadata.enrichment_level,
            "duplicate_ids": self.duplicate_ids,
        }


def _jsonable(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


@dataclass
class ReconciliationMetrics:
    total_raw: int = 0
    unique: int = 0
    groups: int = 0
    average_sources_per_record: float = 0.0
    source_distribution: dict[str, int] = field(default_factory=dict)
    fingerprint_collisions: int = 0
    resolution_time: float = 0.0


@dataclass
class ReconciliationReport:
    records: list[EnrichedRecord]
    duplicates_detected: int
    conflicts: list[FieldConflict]
    metrics: ReconciliationMetrics
