"""Database models for cvehunt using SQLAlchemy."""

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base


def _utc_now() -> datetime:
    return datetime.now(UTC)


Base = declarative_base()


class StoredCve(Base):
    """A reconciled vulnerability persisted across discovery runs."""

    __tablename__ = "cves"

    id = Column(Integer, primary_key=True)
    canonical_id = Column(String, nullable=False, unique=True, index=True)
    fingerprint = Column(String, nullable=False)
    cve_id = Column(String, nullable=True, index=True)

    description = Column(Text, nullable=False, default="")
    severity = Column(String, nullable=False, default="UNKNOWN")
    cvss_score = Column(Float, nullable=True)
    cvss_vector = Column(String, nullable=True)
    attack_vector = Column(String, nullable=True)
    published = Column(DateTime(timezone=True), nullable=True)
    modified = Column(DateTime(timezone=True), nullable=True)
    source_url = Column(String, default="")

    sources = Column(JSON, default=list)
    primary_source = Column(String, nullable=False)
    reliability_score = Column(Float, default=0.0)
    confidence = Column(Float, default=0.0)
    validation_status = Column(String, default="single_source")
    enrichment_level = Column(String, default="basic")
    conflict_count = Column(Integer, default=0)

    references = Column(JSON, default=list)
    cwe_ids = Column(JSON, default=list)
    affected_products = Column(JSON, default=list)

    first_seen = Column(DateTime(timezone=True), default=_utc_now)
    last_seen = Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<StoredCve {self.canonical_id} {self.severity}>"
