"""NIST National Vulnerability Database (NVD 2.0 JSON API) adapter."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from ..context import DiscoveryContext
from ..models import DiscoveryOptions, RawRecord
from .base import BaseSourceAdapter
from .helpers import clean_description, normalize_severity, parse_cvss_score, parse_date, unique

logger = logging.getLogger(__name__)

NVD_API_URL = "https://services.nvd.nist.gov/rest/json/cves/2.0"
NVD_DETAIL_URL = "https://nvd.nist.gov/vuln/detail/{cve_id}"
NVD_CHUNK_DAYS = 120
NVD_PAGE_SIZE = 2000

_METRIC_KEYS = ("cvssMetricV31", "cvssMetricV30", "cvssMetricV2")


def nvd_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.000")


def _primary_metric(cve: dict) -> tuple[dict, dict]:
    metrics = cve.get("metrics") or {}
    for key in _METRIC_KEYS:
        entries = metrics.get(key) or []
        if entries:
            entry = entries[0]
            return entry, entry.get("cvssData") or {}
    return {}, {}


def _cpe_products(cve: dict) -> list[str]:
    products = []
    for config in cve.get("configurations") or []:
        for node in config.get("nodes") or []:
            for match in node.get("cpeMatch") or []:
                parts = (match.get("criteria") or "").split(":")
                if len(parts) > 4 and parts[3] != "*" and parts[4] != "*":
                    products.append(f"{parts[3]}:{parts[4]}")
    return unique(products)


def _cwe_ids(cve: dict) -> list[str]:
    ids = []
    for weakness in cve.get("weaknesses") or []:
        descriptions = weakness.get("description") or []
        if descriptions:
            value = descriptions[0].get("value", "")
            if value.startswith("CWE-"):
                ids.append(value)
    return unique(ids)


def parse_nvd_cve(cve: dict, source: str, source_url: str | None = None) -> RawRecord:
    """Convert one NVD 2.0 ``cve`` object into a RawRecord."""
    cve_id = cve["id"]
    entry, data = _primary_metric(cve)
    description = next(
        (d.get("value") for d in cve.get("descriptions") or [] if d.get("lang") == "en"), None
    )
    severity = data.get("baseSeverity") or entry.get("baseSeverity")
    return RawRecord(
        cve_id=cve_id,
        source=source,
        source_url=source_url or NVD_DETAIL_URL.format(cve_id=cve_id),
        description=clean_description(description),
        published=parse_date(cve.get("published")),
        modified=parse_date(cve.get("lastModified")),
        severity=normalize_severity(severity),
        cvss_score=parse_cvss_score(data.get("baseScore")),
        cvss_vector=data.get("vectorString"),
        attack_vector=data.get("attackVector") or data.get("accessVector"),
        affected_products=_cpe_products(cve),
        references=unique(ref.get("url", "") for ref in cve.get("references") or []),
        cwe_ids=_cwe_ids(cve),
        metadata={
            "vuln_status": cve.get("vulnStatus"),
            "source_identifier": cve.get("sourceIdentifier"),
            "exploitability_score": entry.get("exploitabilityScore"),
            "impact_score": entry.get("impactScore"),
        },
    )


def date_chunks(start: datetime, end: datetime, days: int = NVD_CHUNK_DAYS):
    """Split [start, end] into windows the NVD API accepts."""
    chunk_start = start
    while chunk_start < end:
        chunk_end = min(chunk_start + timedelta(days=days), end)
        yield chunk_start, chunk_end
        chunk_start = chunk_end


class NistAdapter(BaseSourceAdapter):
    """NVD 2.0 REST API, paged within 120-day publication windows."""

    source_name = "nist"
    display_name = "NIST NVD"
    base_url = NVD_API_URL
    reliability_score = 0.98
    metadata_richness = 0.9
    supports_realtime_updates = True
    max_timeframe_years = 25
    requests_per_minute = 50
    request_timeout = 60.0

    @property
    def _headers(self) -> dict[str, str] | None:
        if self.settings.nvd_api_key:
            return {"apiKey": self.settings.nvd_api_key}
        return None

    async def _fetch(self, params: dict[str, Any], ctx: DiscoveryContext | None) -> dict:
        response = await self._request(
            "GET", self.base_url, ctx=ctx, params=params, headers=self._headers
        )
        return self._decode_json(response, self.base_url) or {}

    async def _health_check(self, ctx: DiscoveryContext | None) -> bool:
        end = datetime.now(UTC)
        start = end - timedelta(days=7)
        data = await self._fetch(
            {"pubStartDate": nvd_timestamp(start), "pubEndDate": nvd_timestamp(end), "resultsPerPage": 1},
            ctx,
        )
        return "vulnerabilities" in data

    async def _discover(
        self, options: DiscoveryOptions, ctx: DiscoveryContext, sink: list[RawRecord], limit: int
    ) -> None:
        start, end = self.window(options)
        base_params: dict[str, Any] = {"resultsPerPage": min(NVD_PAGE_SIZE, limit)}
        if len(options.severities) == 1:
            base_params["cvssV3Severity"] = options.severities[0]
        if len(options.keywords) == 1:
            base_params["keywordSearch"] = options.keywords[0]

        # Newest window first.
        for chunk_start, chunk_end in reversed(list(date_chunks(start, end))):
            start_index = 0
            while True:
                params = dict(
                    base_params,
                    pubStartDate=nvd_timestamp(chunk_start),
                    pubEndDate=nvd_timestamp(chunk_end),
                    startIndex=start_index,
                )
                data = await self._fetch(params, ctx)
                items = data.get("vulnerabilities") or []
                sink.extend(
                    self._parse_items(items, lambda item: parse_nvd_cve(item["cve"], self.source_name))
                )
                if len(sink) >= limit:
                    return
                start_index += len(items)
                if not items or start_index >= int(data.get("totalResults") or 0):
                    break

    async def _details(self, cve_id: str, ctx: DiscoveryContext | None) -> RawRecord | None:
        data = await self._fetch({"cveId": cve_id}, ctx)
        items = data.get("vulnerabilities") or []
        records = self._parse_items(items, lambda item: parse_nvd_cve(item["cve"], self.source_name))
        return records[0] if records else None
