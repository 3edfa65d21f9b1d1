"""MITRE CVE program adapter.

Detail lookups use the CVE Services record API (CVE JSON 5). The program has
no date-range search, so discovery walks the publication window year by year
through the NVD API, which mirrors the CVE list.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from ..context import DiscoveryContext
from ..models import DiscoveryOptions, RawRecord
from .base import BaseSourceAdapter
from .helpers import (
    clean_description,
    normalize_severity,
    parse_cvss_score,
    parse_date,
    severity_from_score,
    unique,
)
from .nist import NVD_API_URL, NVD_PAGE_SIZE, date_chunks, nvd_timestamp, parse_nvd_cve

logger = logging.getLogger(__name__)

CVE_RECORD_API = "https://cveawg.mitre.org/api/cve/{cve_id}"
CVE_RECORD_URL = "https://www.cve.org/CVERecord?id={cve_id}"
HEALTH_PROBE_ID = "CVE-2021-44228"

_CVSS_KEYS = ("cvssV4_0", "cvssV3_1", "cvssV3_0", "cvssV2_0")


def _record_metric(containers: list[dict]) -> dict:
    for container in containers:
        for metric in container.get("metrics") or []:
            for key in _CVSS_KEYS:
                if key in metric:
                    return metric[key]
    return {}


def parse_cve_record(record: dict, source: str = "mitre") -> RawRecord | None:
    """Convert a CVE JSON 5 record into a RawRecord."""
    meta = record["cveMetadata"]
    if meta.get("state") == "REJECTED":
        return None
    cve_id = meta["cveId"]
    cna = record.get("containers", {}).get("cna") or {}
    adp = record.get("containers", {}).get("adp") or []
    metric = _record_metric([cna, *adp])

    description = next(
        (d.get("value") for d in cna.get("descriptions") or [] if str(d.get("lang", "")).startswith("en")),
        None,
    )
    score = parse_cvss_score(metric.get("baseScore"))
    severity = normalize_severity(metric.get("baseSeverity"))
    if severity == "UNKNOWN":
        severity = severity_from_score(score)

    products = [
        f"{a.get('vendor')}:{a.get('product')}".lower()
        for a in cna.get("affected") or []
        if a.get("vendor") and a.get("product") and a.get("vendor") != "n/a"
    ]
    cwes = [
        d.get("cweId")
        for pt in cna.get("problemTypes") or []
        for d in pt.get("descriptions") or []
        if d.get("cweId")
    ]
    return RawRecord(
        cve_id=cve_id,
        source=source,
        source_url=CVE_RECORD_URL.format(cve_id=cve_id),
        description=clean_description(description),
        published=parse_date(meta.get("datePublished")),
        modified=parse_date(meta.get("dateUpdated")),
        severity=severity,
        cvss_score=score,
        cvss_vector=metric.get("vectorString"),
        attack_vector=metric.get("attackVector"),
        affected_products=unique(products),
        references=unique(ref.get("url", "") for ref in cna.get("references") or []),
        cwe_ids=unique(cwes),
        metadata={
            "assigner": meta.get("assignerShortName"),
            "state": meta.get("state"),
            "authoritative": True,
        },
    )


class MitreAdapter(BaseSourceAdapter):
    """Authoritative CVE list maintained by MITRE."""

    source_name = "mitre"
    display_name = "MITRE CVE"
    base_url = "https://cveawg.mitre.org/api"
    reliability_score = 0.95
    metadata_richness = 0.7
    supports_realtime_updates = True
    max_timeframe_years = 30
    requests_per_minute = 20

    async def _health_check(self, ctx: DiscoveryContext | None) -> bool:
        data = await self._get_json(CVE_RECORD_API.format(cve_id=HEALTH_PROBE_ID), ctx=ctx)
        return bool(data and data.get("cveMetadata"))

    async def _discover(
        self, options: DiscoveryOptions, ctx: DiscoveryContext, sink: list[RawRecord], limit: int
    ) -> None:
        start, end = self.window(options)
        for year in range(end.year, start.year - 1, -1):
            year_start = max(start, datetime(year, 1, 1, tzinfo=UTC))
            year_end = min(end, datetime(year, 12, 31, 23, 59, 59, tzinfo=UTC))
            logger.debug("mitre: fetching CVEs published in %d", year)
            for chunk_start, chunk_end in reversed(list(date_chunks(year_start, year_end))):
                params: dict[str, Any] = {
                    "pubStartDate": nvd_timestamp(chunk_start),
                    "pubEndDate": nvd_timestamp(chunk_end),
                    "resultsPerPage": min(NVD_PAGE_SIZE, limit - len(sink)),
                }
                data = await self._get_json(NVD_API_URL, ctx=ctx, params=params) or {}
                sink.extend(
                    self._parse_items(data.get("vulnerabilities") or [], self._from_nvd)
                )
                if len(sink) >= limit:
                    return

    def _from_nvd(self, item: dict) -> RawRecord:
        cve = item["cve"]
        record = parse_nvd_cve(cve, self.source_name, CVE_RECORD_URL.format(cve_id=cve["id"]))
        record.metadata["nvd_fallback"] = True
        return record

    async def _details(self, cve_id: str, ctx: DiscoveryContext | None) -> RawRecord | None:
        data = await self._get_json(CVE_RECORD_API.format(cve_id=cve_id), ctx=ctx, not_found_ok=True)
        if not data:
            return None
        records = self._parse_items([data], lambda item: parse_cve_record(item, self.source_name))
        return records[0] if records else None
