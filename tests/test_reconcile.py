"""Tests for deduplication and reliability-weighted reconciliation."""

from datetime import UTC, datetime, timedelta

import pytest

from cvehunt.modules.reconcile import ReconciliationEngine, enrichment_level, validation_status


@pytest.fixture
def engine(fixed_reliability):
    return ReconciliationEngine(fixed_reliability({"alpha": 0.9, "beta": 0.4, "gamma": 0.7}))


class TestHelpers:
    def test_validation_status(self):
        assert validation_status(0) == "validated"
        assert validation_status(2) == "partial"
        assert validation_status(3) == "conflicted"

    def test_enrichment_level(self):
        assert enrichment_level(1) == "basic"
        assert enrichment_level(2) == "enhanced"
        assert enrichment_level(4) == "comprehensive"


class TestWeightedVote:
    def test_score_conflict_prefers_reliable_source(self, engine, make_record):
        a = make_record("CVE-2024-1000", "alpha", cvss_score=7.2)
        b = make_record("CVE-2024-1000", "beta", cvss_score=9.1)
        report = engine.reconcile([b, a])

        assert len(report.records) == 1
        record = report.records[0]
        assert record.cvss_score == 7.2
        assert record.primary_source == "alpha"
        assert record.validation.status == "partial"
        conflict = next(c for c in record.conflicts if c.field == "cvss_score")
        assert conflict.severity == "major"
        assert conflict.values == {"alpha": 7.2, "beta": 9.1}
        assert conflict.resolved_value == 7.2

    def test_three_agreeing_sources(self, engine, make_record):
        records = [make_record("CVE-2024-2000", s) for s in ("alpha", "beta", "gamma")]
        record = engine.reconcile(records).records[0]

        assert record.conflicts == []
        assert record.validation.status == "validated"
        assert record.metadata.enrichment_level == "comprehensive"
        assert set(record.validation.consistent_fields) == {
            "cvss_score",
            "severity",
            "description",
            "published",
            "modified",
        }
        mean = (0.9 + 0.4 + 0.7) / 3
        assert record.validation.confidence == pytest.approx(min(0.95, mean * 1.3))

    def test_majority_of_weaker_sources_can_win(self, engine, make_record):
        # beta (0.4) + gamma (0.7) outweigh alpha (0.9).
        records = [
            make_record("CVE-2024-3000", "alpha", severity="CRITICAL"),
            make_record("CVE-2024-3000", "beta", severity="HIGH"),
            make_record("CVE-2024-3000", "gamma", severity="HIGH"),
        ]
        record = engine.reconcile(records).records[0]
        assert record.severity == "HIGH"

    def test_description_conflict_is_minor(self, engine, make_record):
        records = [
            make_record("CVE-2024-3001", "alpha", description="First wording"),
            make_record("CVE-2024-3001", "beta", description="Second wording"),
        ]
        record = engine.reconcile(records).records[0]
        assert record.description == "First wording"
        assert [c.severity for c in record.conflicts] == ["minor"]

    def test_missing_values_do_not_vote(self, engine, make_record):
        records = [
            make_record("CVE-2024-3002", "alpha", cvss_score=None, severity="UNKNOWN"),
            make_record("CVE-2024-3002", "beta", cvss_score=5.0, severity="MEDIUM"),
        ]
        record = engine.reconcile(records).records[0]
        assert record.cvss_score == 5.0
        assert record.severity == "MEDIUM"
        assert record.conflicts == []

    def test_monotonic_in_reliability(self, fixed_reliability, make_record):
        records = [
            make_record("CVE-2024-4000", "alpha", cvss_score=6.0),
            make_record("CVE-2024-4000", "beta", cvss_score=8.0),
        ]
        low = ReconciliationEngine(fixed_reliability({"alpha": 0.6, "beta": 0.5}))
        assert low.reconcile(records).records[0].cvss_score == 6.0
        for boost in (0.61, 0.8, 1.0):
            high = ReconciliationEngine(fixed_reliability({"alpha": 0.6, "beta": boost}))
            assert high.reconcile(records).records[0].cvss_score == 8.0


class TestDeduplication:
    def test_idempotent_and_order_independent(self, engine, make_record):
        records = [
            make_record("CVE-2024-5000", "alpha", cvss_score=7.2),
            make_record("CVE-2024-5000", "beta", cvss_score=9.1, description="Other text"),
            make_record("CVE-2024-5001", "gamma"),
        ]
        first = engine.reconcile(records)
        second = engine.reconcile(list(reversed(records)))

        by_id = {r.fingerprint: r for r in first.records}
        for record in second.records:
            other = by_id[record.fingerprint]
            assert record.cvss_score == other.cvss_score
            assert record.description == other.description
            assert record.sources == other.sources
            assert [(c.field, c.resolved_value) for c in record.conflicts] == [
                (c.field, c.resolved_value) for c in other.conflicts
            ]

    def test_metrics(self, engine, make_record):
        records = [
            make_record("CVE-2024-6000", "alpha"),
            make_record("CVE-2024-6000", "beta"),
            make_record("CVE-2024-6001", "alpha"),
        ]
        report = engine.reconcile(records)
        assert report.duplicates_detected == 1
        assert report.metrics.total_raw == 3
        assert report.metrics.unique == 2
        assert report.metrics.groups == 1
        assert report.metrics.source_distribution == {"alpha": 2, "beta": 1}
        assert report.metrics.average_sources_per_record == pytest.approx(1.5)

    def test_same_source_duplicates_collapse_to_latest(self, engine, make_record):
        now = datetime.now(UTC)
        older = make_record("CVE-2024-7000", "alpha", cvss_score=5.0, modified=now - timedelta(days=5))
        newer = make_record("CVE-2024-7000", "alpha", cvss_score=6.5, modified=now)
        record = engine.reconcile([newer, older]).records[0]
        assert record.sources == ["alpha"]
        assert record.cvss_score == 6.5
        assert record.validation.status == "single_source"
        assert sorted(record.duplicate_ids) == ["alpha:CVE-2024-7000"]

    def test_records_without_id_get_content_fingerprint(self, engine, make_record):
        record = engine.reconcile([make_record(None, "alpha")]).records[0]
        assert record.cve_id is None
        assert record.display_id.startswith("CONTENT_")

    def test_metadata_union(self, engine, make_record):
        records = [
            make_record("CVE-2024-8000", "alpha", references=["https://a"], cwe_ids=["CWE-79"]),
            make_record(
                "CVE-2024-8000",
                "beta",
                references=["https://b", "https://a"],
                metadata={"vendor": "x"},
            ),
        ]
        record = engine.reconcile(records).records[0]
        assert record.metadata.references == ["https://a", "https://b"]
        assert record.metadata.cwe_ids == ["CWE-79"]
        assert record.metadata.source_data["beta"] == {"vendor": "x"}
        assert record.metadata.enrichment_level == "enhanced"

    def test_to_dict_is_serializable(self, engine, make_record):
        import json

        record = engine.reconcile([make_record("CVE-2024-9000", "alpha")]).records[0]
        payload = json.loads(json.dumps(record.to_dict()))
        assert payload["cve_id"] == "CVE-2024-9000"
        assert payload["validation"]["status"] == "single_source"

    def test_empty_input(self, engine):
        report = engine.reconcile([])
        assert report.records == []
        assert report.metrics.unique == 0
