"""CIRCL CVE Search (cve.circl.lu) adapter."""

import logging
from typing import Any
from urllib.parse import quote

from ..context import DiscoveryContext
from ..models import DiscoveryOptions, RawRecord
from .base import BaseSourceAdapter
from .helpers import (
    clean_description,
    extract_cve_id,
    normalize_severity,
    parse_cvss_score,
    parse_date,
    severity_from_score,
    unique,
)
from .mitre import parse_cve_record

logger = logging.getLogger(__name__)

LATEST_LIMIT = 200


def _references(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [v for v in value.values() if isinstance(v, str)]
    return [v for v in value or [] if isinstance(v, str)]


def _products(item: dict) -> list[str]:
    products = []
    for cpe in item.get("vulnerable_product") or []:
        parts = str(cpe).split(":")
        if len(parts) > 4 and parts[3] != "*":
            products.append(f"{parts[3]}:{parts[4]}")
    vendors = item.get("vendors") or []
    if isinstance(vendors, dict):
        vendors = list(vendors)
    products.extend(str(v) for v in vendors)
    return unique(products)


def parse_circl_item(item: dict, source: str = "circl") -> RawRecord | None:
    """Parse either a legacy cve-search document or a CVE JSON 5 record."""
    if "cveMetadata" in item:
        return parse_cve_record(item, source)

    cve_id = extract_cve_id(item.get("id"))
    if not cve_id:
        return None
    score = parse_cvss_score(item.get("cvss3") or item.get("cvss"))
    severity = severity_from_score(score)
    impact = item.get("impact")
    if severity == "UNKNOWN" and isinstance(impact, str):
        severity = normalize_severity(impact)
    cwe = item.get("cwe")
    return RawRecord(
        cve_id=cve_id,
        source=source,
        source_url=f"https://cve.circl.lu/cve/{cve_id}",
        description=clean_description(item.get("summary") or item.get("Summary")),
        published=parse_date(item.get("Published") or item.get("published") or item.get("Modified")),
        modified=parse_date(item.get("Modified") or item.get("modified") or item.get("Published")),
        severity=severity,
        cvss_score=score,
        cvss_vector=item.get("cvss3-vector") or item.get("cvss-vector"),
        affected_products=_products(item),
        references=unique(_references(item.get("references"))),
        cwe_ids=[cwe] if isinstance(cwe, str) and cwe.startswith("CWE-") else [],
        metadata={
            "has_impact": bool(impact),
            "access": item.get("access"),
        },
    )


class CirclAdapter(BaseSourceAdapter):
    """Computer Incident Response Center Luxembourg public CVE search."""

    source_name = "circl"
    display_name = "CIRCL CVE Search"
    base_url = "https://cve.circl.lu/api"
    reliability_score = 0.75
    metadata_richness = 0.6
    supports_realtime_updates = True
    max_timeframe_years = 25
    requests_per_minute = 200

    async def _health_check(self, ctx: DiscoveryContext | None) -> bool:
        data = await self._get_json(f"{self.base_url}/dbInfo", ctx=ctx)
        return isinstance(data, dict) and bool(data)

    async def _discover(
        self, options: DiscoveryOptions, ctx: DiscoveryContext, sink: list[RawRecord], limit: int
    ) -> None:
        latest = await self._get_json(f"{self.base_url}/last/{min(limit, LATEST_LIMIT)}", ctx=ctx)
        sink.extend(self._parse_items(_items(latest), parse_circl_item))

        for tech in options.technologies:
            if len(sink) >= limit:
                return
            data = await self._get_json(f"{self.base_url}/search/{quote(tech)}", ctx=ctx)
            sink.extend(self._parse_items(_items(data), parse_circl_item))

    async def _details(self, cve_id: str, ctx: DiscoveryContext | None) -> RawRecord | None:
        data = await self._get_json(f"{self.base_url}/cve/{cve_id}", ctx=ctx, not_found_ok=True)
        if not data:
            return None
        records = self._parse_items([data], parse_circl_item)
        return records[0] if records else None


def _items(data: Any) -> list:
    """Normalize the list shapes CIRCL endpoints return."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("results", "data"):
            if isinstance(data.get(key), list):
                return data[key]
    return []
