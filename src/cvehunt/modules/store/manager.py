"""CveStore: persists reconciled records and merges them across runs."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from cvehunt.db.init import DEFAULT_DB_PATH, get_session, init_db
from cvehunt.db.models import StoredCve
from cvehunt.modules.reconcile import EnrichedRecord, enrichment_level, is_content_fingerprint

logger = logging.getLogger(__name__)

# Replaced wholesale when the incoming record is newer.
SCALAR_FIELDS = (
    "description",
    "severity",
    "published",
    "modified",
    "cvss_vector",
    "attack_vector",
    "source_url",
    "primary_source",
)
LIST_FIELDS = ("references", "cwe_ids", "affected_products")


@dataclass
class UpsertSummary:
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    changes: dict[str, list[str]] = field(default_factory=dict)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _union(current: list | None, incoming: Iterable[str]) -> list[str]:
    merged = dict.fromkeys(current or [])
    for value in incoming:
        merged.setdefault(value, None)
    return list(merged)


def _incoming_values(record: EnrichedRecord) -> dict:
    return {
        "description": record.description,
        "severity": record.severity,
        "published": record.published,
        "modified": record.modified,
        "cvss_vector": record.cvss_vector,
        "attack_vector": record.attack_vector,
        "source_url": record.source_url,
        "primary_source": record.primary_source,
        "references": record.metadata.references,
        "cwe_ids": record.metadata.cwe_ids,
        "affected_products": record.metadata.affected_products,
    }


class CveStore:
    """SQLite-backed store keyed by canonical id (CVE id or fingerprint).

    Merge policy across runs: the newer ``modified`` wins for scalar fields,
    list fields and sources are unioned, CVSS score and reliability keep
    their maximum.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = db_path
        self._session = None

    def _get_session(self):
        if self._session is None:
            init_db(self.db_path)
            self._session = get_session(self.db_path)
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def upsert(self, record: EnrichedRecord) -> tuple[StoredCve, bool, list[str]]:
        """Insert or merge one record. Returns (row, is_new, changed field names).

        The caller commits; see ``upsert_many``.
        """
        session = self._get_session()
        canonical_id = record.display_id
        row = session.query(StoredCve).filter_by(canonical_id=canonical_id).first()
        incoming = _incoming_values(record)

        if row is None:
            row = StoredCve(
                canonical_id=canonical_id,
                fingerprint=record.fingerprint,
                cve_id=record.cve_id,
                cvss_score=record.cvss_score,
                sources=list(record.sources),
                reliability_score=record.reliability_score,
                confidence=record.validation.confidence,
                validation_status=record.validation.status,
                enrichment_level=record.metadata.enrichment_level,
                conflict_count=len(record.conflicts),
                **incoming,
            )
            session.add(row)
            return row, True, []

        changes: list[str] = []
        stored_modified = _as_utc(row.modified)
        newer = record.modified is not None and (
            stored_modified is None or record.modified > stored_modified
        )
        if newer:
            for name in SCALAR_FIELDS:
                value = incoming[name]
                current = getattr(row, name)
                if name in ("published", "modified"):
                    current = _as_utc(current)
                if value is not None and value != current:
                    setattr(row, name, value)
                    changes.append(name)
            row.confidence = record.validation.confidence
            row.validation_status = record.validation.status
            row.conflict_count = len(record.conflicts)

        for name in LIST_FIELDS:
            merged = _union(getattr(row, name), incoming[name])
            if len(merged) != len(getattr(row, name) or []):
                setattr(row, name, merged)
                changes.append(name)

        sources = _union(row.sources, record.sources)
        if len(sources) != len(row.sources or []):
            row.sources = sources
            row.enrichment_level = enrichment_level(len(sources))
            changes.append("sources")

        if record.cvss_score is not None and (
            row.cvss_score is None or record.cvss_score > row.cvss_score
        ):
            row.cvss_score = record.cvss_score
            changes.append("cvss_score")
        if record.reliability_score > (row.reliability_score or 0.0):
            row.reliability_score = record.reliability_score
            changes.append("reliability_score")

        return row, False, changes

    def upsert_many(self, records: Iterable[EnrichedRecord]) -> UpsertSummary:
        """Upsert a batch in one transaction."""
        session = self._get_session()
        summary = UpsertSummary()
        try:
            for record in records:
                _, is_new, changes = self.upsert(record)
                if is_new:
                    summary.new += 1
                elif changes:
                    summary.updated += 1
                    summary.changes[record.display_id] = changes
                else:
                    summary.unchanged += 1
            session.commit()
        except SQLAlchemyError:
            logger.warning("Failed to store records in %s", self.db_path, exc_info=True)
            session.rollback()
            raise
        logger.info(
            "Stored records: %d new, %d updated, %d unchanged",
            summary.new,
            summary.updated,
            summary.unchanged,
        )
        return summary

    def get(self, canonical_id: str) -> StoredCve | None:
        session = self._get_session()
        if not is_content_fingerprint(canonical_id):
            canonical_id = canonical_id.upper()
        return session.query(StoredCve).filter_by(canonical_id=canonical_id).first()

    def recent(self, limit: int = 20) -> list[StoredCve]:
        session = self._get_session()
        return (
            session.query(StoredCve)
            .order_by(StoredCve.published.desc())
            .limit(limit)
            .all()
        )

    def count(self) -> int:
        return self._get_session().query(StoredCve).count()

    def get_stats(self) -> dict:
        """Return summary stats for the store."""
        session = self._get_session()
        total = session.query(StoredCve).count()
        by_severity = {}
        for (severity,) in session.query(StoredCve.severity).all():
            by_severity[severity] = by_severity.get(severity, 0) + 1
        multi = session.query(StoredCve).filter(StoredCve.enrichment_level != "basic").count()
        return {
            "total_records": total,
            "by_severity": dict(sorted(by_severity.items())),
            "multi_source": multi,
        }
