"""Deduplication and reliability-weighted reconciliation of raw records."""

import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime
from typing import Any

from cvehunt.modules.discovery.models import NO_DESCRIPTION, UNKNOWN_SEVERITY, RawRecord

from .fingerprint import CANONICAL_CVE_RE, fingerprint
from .models import (
    ConsolidatedMetadata,
    CrossSourceValidation,
    EnrichedRecord,
    FieldConflict,
    ReconciliationMetrics,
    ReconciliationReport,
)

logger = logging.getLogger(__name__)

RECONCILED_FIELDS = ("cvss_score", "severity", "description", "published", "modified")
MAJOR_FIELDS = frozenset({"cvss_score", "severity"})
CONFIDENCE_CAP = 0.95
DEFAULT_RELIABILITY = 0.5

_PLACEHOLDER_DESCRIPTIONS = frozenset(
    {
        NO_DESCRIPTION.lower(),
        "description available via detail fetch",
        "n/a",
        "",
    }
)
_EPOCH = datetime.min.replace(tzinfo=UTC)

ReliabilityLookup = Callable[[str], float]


def normalize_value(value: Any) -> str:
    """Comparison key for a field value; equal keys mean agreement."""
    if isinstance(value, datetime | date):
        return value.date().isoformat() if isinstance(value, datetime) else value.isoformat()
    if isinstance(value, float | int):
        return f"{float(value):.1f}"
    return str(value).strip().lower()


def is_missing(field_name: str, value: Any) -> bool:
    if value is None:
        return True
    if field_name == "severity":
        return value == UNKNOWN_SEVERITY
    if field_name == "description":
        return str(value).strip().lower() in _PLACEHOLDER_DESCRIPTIONS
    return False


def validation_status(conflict_count: int) -> str:
    if conflict_count == 0:
        return "validated"
    if conflict_count <= 2:
        return "partial"
    return "conflicted"


def enrichment_level(source_count: int) -> str:
    if source_count >= 3:
        return "comprehensive"
    if source_count == 2:
        return "enhanced"
    return "basic"


def _merge_lists(*lists: Iterable[str]) -> list[str]:
    merged: dict[str, None] = {}
    for values in lists:
        for value in values:
            if value:
                merged.setdefault(value, None)
    return list(merged)


class ReconciliationEngine:
    """Groups raw records by fingerprint and merges each group.

    Pure apart from the reliability lookup, which is consulted once per
    source per ``reconcile`` call.
    """

    def __init__(
        self,
        reliability_lookup: ReliabilityLookup | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._lookup = reliability_lookup or (lambda _source: DEFAULT_RELIABILITY)
        self._clock = clock

    def group(self, records: Iterable[RawRecord]) -> dict[str, list[RawRecord]]:
        """Group records by fingerprint, preserving first-seen order."""
        groups: dict[str, list[RawRecord]] = {}
        for record in records:
            groups.setdefault(fingerprint(record), []).append(record)
        return groups

    def reconcile(self, records: Iterable[RawRecord]) -> ReconciliationReport:
        started = self._clock()
        raw = list(records)
        groups = self.group(raw)
        reliability = self._snapshot({r.source for r in raw})

        enriched: list[EnrichedRecord] = []
        conflicts: list[FieldConflict] = []
        for key, members in groups.items():
            record = self.merge(key, members, reliability)
            enriched.append(record)
            conflicts.extend(record.conflicts)

        unique_count = len(enriched)
        distribution = Counter(r.source for r in raw)
        metrics = ReconciliationMetrics(
            total_raw=len(raw),
            unique=unique_count,
            groups=sum(1 for members in groups.values() if len(members) > 1),
            average_sources_per_record=len(raw) / unique_count if unique_count else 0.0,
            source_distribution=dict(sorted(distribution.items())),
            fingerprint_collisions=len(raw) - len(groups),
            resolution_time=self._clock() - started,
        )
        logger.debug(
            "Reconciled %d raw records into %d (%d conflicts)",
            metrics.total_raw,
            metrics.unique,
            len(conflicts),
        )
        return ReconciliationReport(
            records=enriched,
            duplicates_detected=len(raw) - unique_count,
            conflicts=conflicts,
            metrics=metrics,
        )

    def _snapshot(self, sources: Iterable[str]) -> dict[str, float]:
        snapshot = {}
        for source in sources:
            try:
                value = float(self._lookup(source))
            except (TypeError, ValueError):
                logger.warning("Invalid reliability for %s, using default", source)
                value = DEFAULT_RELIABILITY
            snapshot[source] = max(0.0, min(1.0, value))
        return snapshot

    def merge(
        self,
        key: str,
        members: list[RawRecord],
        reliability: dict[str, float] | None = None,
    ) -> EnrichedRecord:
        """Merge one fingerprint group into an EnrichedRecord."""
        if reliability is None:
            reliability = self._snapshot({r.source for r in members})

        # One contributor per source, strongest first.
        contributors = sorted(
            self._collapse_sources(members).values(),
            key=lambda r: (-reliability[r.source], r.source),
        )
        primary = contributors[0]
        sources = [r.source for r in contributors]
        scores = [reliability[s] for s in sources]
        mean_reliability = sum(scores) / len(scores)

        resolved: dict[str, Any] = {}
        consistent: list[str] = []
        conflicts: list[FieldConflict] = []
        if len(contributors) == 1:
            for name in RECONCILED_FIELDS:
                resolved[name] = getattr(primary, name)
            validation = CrossSourceValidation(
                total_sources=1,
                consistent_fields=[],
                conflicting_fields=[],
                confidence=reliability[primary.source],
                status="single_source",
            )
        else:
            for name in RECONCILED_FIELDS:
                value, conflict = self._vote(name, contributors, reliability)
                resolved[name] = value
                if conflict is None:
                    if value is not None:
                        consistent.append(name)
                else:
                    conflicts.append(conflict)
            validation = CrossSourceValidation(
                total_sources=len(contributors),
                consistent_fields=consistent,
                conflicting_fields=[c.field for c in conflicts],
                confidence=min(CONFIDENCE_CAP, mean_reliability * (1 + 0.1 * len(contributors))),
                status=validation_status(len(conflicts)),
            )

        if resolved["severity"] is None:
            resolved["severity"] = UNKNOWN_SEVERITY
        if resolved["description"] is None:
            resolved["description"] = primary.description or NO_DESCRIPTION

        metadata = ConsolidatedMetadata(
            references=_merge_lists(*(r.references for r in contributors)),
            cwe_ids=_merge_lists(*(r.cwe_ids for r in contributors)),
            affected_products=_merge_lists(*(r.affected_products for r in contributors)),
            source_data={r.source: dict(r.metadata) for r in contributors},
            enrichment_level=enrichment_level(len(contributors)),
        )
        cve_id = key if CANONICAL_CVE_RE.match(key) else None

        return EnrichedRecord(
            fingerprint=key,
            cve_id=cve_id,
            sources=sources,
            primary_source=primary.source,
            reliability_score=mean_reliability,
            description=resolved["description"],
            published=resolved["published"],
            modified=resolved["modified"],
            severity=resolved["severity"],
            cvss_score=resolved["cvss_score"],
            cvss_vector=_first(r.cvss_vector for r in contributors),
            attack_vector=_first(r.attack_vector for r in contributors),
            source_url=primary.source_url or _first(r.source_url for r in contributors) or "",
            conflicts=conflicts,
            validation=validation,
            metadata=metadata,
            duplicate_ids=_merge_lists(
                f"{r.source}:{r.cve_id or key}" for r in sorted(members, key=lambda r: r.source)
            ),
        )

    @staticmethod
    def _collapse_sources(members: list[RawRecord]) -> dict[str, RawRecord]:
        """Keep the most recently modified record per source."""
        latest: dict[str, RawRecord] = {}
        for record in members:
            current = latest.get(record.source)
            if current is None or _rank(record) > _rank(current):
                latest[record.source] = record
        return latest

    @staticmethod
    def _vote(
        name: str, contributors: list[RawRecord], reliability: dict[str, float]
    ) -> tuple[Any, FieldConflict | None]:
        weights: dict[str, float] = {}
        best: dict[str, tuple[float, str, Any]] = {}
        values: dict[str, Any] = {}
        for record in contributors:
            value = getattr(record, name)
            if is_missing(name, value):
                continue
            score = reliability[record.source]
            norm = normalize_value(value)
            values[record.source] = value
            weights[norm] = weights.get(norm, 0.0) + score
            holder = (score, record.source, value)
            current = best.get(norm)
            if current is None or (-holder[0], holder[1]) < (-current[0], current[1]):
                best[norm] = holder

        if not weights:
            return None, None

        winner = min(weights, key=lambda k: (-weights[k], -best[k][0], k))
        resolved = best[winner][2]
        if len(weights) == 1:
            return resolved, None
        return resolved, FieldConflict(
            field=name,
            values=values,
            severity="major" if name in MAJOR_FIELDS else "minor",
            resolved_value=resolved,
            weights=dict(sorted(weights.items())),
        )


def _rank(record: RawRecord) -> tuple:
    # Timestamp ties break on content.
    return (
        record.modified or record.published or _EPOCH,
        record.description,
        record.cvss_score if record.cvss_score is not None else -1.0,
    )


def _first(values: Iterable[Any]) -> Any:
    return next((v for v in values if v), None)
