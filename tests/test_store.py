"""Tests for the persistent CVE store."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.exc import SQLAlchemyError

from cvehunt.db.init import get_session, init_db
from cvehunt.db.models import StoredCve
from cvehunt.modules.reconcile import ReconciliationEngine
from cvehunt.modules.store import CveStore


@pytest.fixture
def enrich(fixed_reliability):
    engine = ReconciliationEngine(fixed_reliability({"nist": 0.98, "circl": 0.75}))

    def _enrich(*records):
        return engine.reconcile(records).records

    return _enrich


@pytest.fixture
def store(db_path: Path):
    cve_store = CveStore(db_path)
    yield cve_store
    cve_store.close()


class TestDatabase:
    def test_init_creates_db(self, db_path: Path):
        init_db(db_path)
        assert db_path.exists()
        session = get_session(db_path)
        assert session.query(StoredCve).count() == 0
        session.close()


class TestCveStore:
    def test_insert(self, store, enrich, make_record):
        summary = store.upsert_many(enrich(make_record("CVE-2024-1000", "nist", cwe_ids=["CWE-79"])))
        assert (summary.new, summary.updated, summary.unchanged) == (1, 0, 0)

        row = store.get("cve-2024-1000")
        assert row is not None
        assert row.sources == ["nist"]
        assert row.cwe_ids == ["CWE-79"]
        assert row.validation_status == "single_source"
        assert row.enrichment_level == "basic"
        assert store.count() == 1

    def test_same_record_twice_is_unchanged(self, store, enrich, make_record):
        records = enrich(make_record("CVE-2024-1001", "nist"))
        store.upsert_many(records)
        summary = store.upsert_many(records)
        assert (summary.new, summary.updated, summary.unchanged) == (0, 0, 1)

    def test_newer_record_wins_and_sources_union(self, store, enrich, make_record):
        now = datetime.now(UTC)
        store.upsert_many(
            enrich(make_record("CVE-2024-1002", "nist", modified=now - timedelta(days=2), references=["https://a"]))
        )
        newer = make_record(
            "CVE-2024-1002",
            "circl",
            description="Updated description",
            modified=now,
            references=["https://b"],
        )
        summary = store.upsert_many(enrich(newer))

        assert summary.updated == 1
        changes = summary.changes["CVE-2024-1002"]
        assert {"description", "modified", "sources", "references"} <= set(changes)
        row = store.get("CVE-2024-1002")
        assert row.description == "Updated description"
        assert row.sources == ["nist", "circl"]
        assert row.references == ["https://a", "https://b"]
        assert row.enrichment_level == "enhanced"

    def test_older_record_keeps_scalars_but_max_score(self, store, enrich, make_record):
        now = datetime.now(UTC)
        store.upsert_many(enrich(make_record("CVE-2024-1003", "nist", modified=now, cvss_score=5.0)))
        older = make_record(
            "CVE-2024-1003",
            "nist",
            description="Stale wording",
            modified=now - timedelta(days=30),
            cvss_score=8.8,
        )
        store.upsert_many(enrich(older))

        row = store.get("CVE-2024-1003")
        assert row.description != "Stale wording"
        assert row.cvss_score == 8.8

    def test_content_fingerprint_records(self, store, enrich, make_record):
        (record,) = enrich(make_record(None, "nist"))
        store.upsert_many([record])
        row = store.get(record.fingerprint)
        assert row.cve_id is None
        assert row.canonical_id.startswith("CONTENT_")

    def test_recent_and_stats(self, store, enrich, make_record):
        now = datetime.now(UTC)
        store.upsert_many(
            enrich(
                make_record("CVE-2024-2000", "nist", published=now - timedelta(days=3), severity="LOW"),
                make_record("CVE-2024-2001", "nist", published=now - timedelta(days=1)),
                make_record("CVE-2024-2001", "circl", published=now - timedelta(days=1)),
            )
        )
        assert [r.canonical_id for r in store.recent(limit=1)] == ["CVE-2024-2001"]
        stats = store.get_stats()
        assert stats["total_records"] == 2
        assert stats["by_severity"] == {"HIGH": 1, "LOW": 1}
        assert stats["multi_source"] == 1

    def test_rollback_on_failure(self, store, enrich, make_record, monkeypatch):
        session = store._get_session()

        def fail():
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(session, "commit", fail)
        with pytest.raises(SQLAlchemyError):
            store.upsert_many(enrich(make_record("CVE-2024-3000", "nist")))
        monkeypatch.undo()
        assert store.count() == 0
