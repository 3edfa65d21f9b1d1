"""Vulners Lucene search API adapter."""

import logging
from datetime import datetime
from typing import Any

from ..context import DiscoveryContext
from ..errors import SourceResponseError
from ..models import DiscoveryOptions, RawRecord
from .base import BaseSourceAdapter
from .helpers import (
    clean_description,
    extract_cve_id,
    parse_cvss_score,
    parse_date,
    severity_from_score,
    unique,
)

logger = logging.getLogger(__name__)

SEVERITY_RANGES = {
    "CRITICAL": "[9.0 TO 10.0]",
    "HIGH": "[7.0 TO 8.9]",
    "MEDIUM": "[4.0 TO 6.9]",
    "LOW": "[0.1 TO 3.9]",
}
SEARCH_FIELDS = [
    "id",
    "title",
    "description",
    "published",
    "modified",
    "cvss",
    "references",
    "affectedPackage",
    "cwe",
]
MAX_TECHNOLOGY_QUERIES = 5


def _lucene_date(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT00:00:00Z")


def build_queries(options: DiscoveryOptions, start: datetime, end: datetime) -> list[str]:
    """Lucene queries for a discovery request, the timeframe query first."""
    published = f"published:[{_lucene_date(start)} TO {_lucene_date(end)}]"
    queries = [f"type:cve AND {published}"]
    for tech in options.technologies[:MAX_TECHNOLOGY_QUERIES]:
        queries.append(
            f"type:cve AND {published} AND (title:{tech} OR description:{tech} "
            f"OR affectedPackage.packageName:{tech})"
        )
    for severity in options.severities:
        score_range = SEVERITY_RANGES.get(severity)
        if score_range:
            queries.append(f"type:cve AND {published} AND cvss.score:{score_range}")
    return queries


def parse_document(doc: dict, source: str = "vulners") -> RawRecord | None:
    cve_id = extract_cve_id(doc.get("id") or doc.get("_id"))
    if not cve_id:
        return None

    cvss = doc.get("cvss")
    score = vector = None
    if isinstance(cvss, dict):
        score = parse_cvss_score(cvss.get("score") or cvss.get("baseScore"))
        vector = cvss.get("vector") or cvss.get("vectorString")
    elif isinstance(cvss, (int, float)):
        score = parse_cvss_score(cvss)

    packages = doc.get("affectedPackage") or []
    if isinstance(packages, dict):
        packages = [packages]
    references = doc.get("references") or []
    if isinstance(references, str):
        references = [references]
    cwes = doc.get("cwe") or []
    if isinstance(cwes, str):
        cwes = [cwes]

    return RawRecord(
        cve_id=cve_id,
        source=source,
        source_url=f"https://vulners.com/cve/{cve_id}",
        description=clean_description(doc.get("description") or doc.get("title")),
        published=parse_date(doc.get("published")),
        modified=parse_date(doc.get("modified") or doc.get("published")),
        severity=severity_from_score(score),
        cvss_score=score,
        cvss_vector=vector,
        affected_products=unique(p.get("packageName", "") for p in packages if isinstance(p, dict)),
        references=unique(references),
        cwe_ids=unique(cwes),
        metadata={
            "vulners_id": doc.get("_id") or doc.get("id"),
            "vulners_type": doc.get("type"),
            "title": doc.get("title"),
        },
    )


class VulnersAdapter(BaseSourceAdapter):
    """Vulners aggregated vulnerability database."""

    source_name = "vulners"
    display_name = "Vulners"
    base_url = "https://vulners.com/api/v3"
    reliability_score = 0.80
    metadata_richness = 0.9
    supports_realtime_updates = True
    max_timeframe_years = 20
    requests_per_minute = 100

    def _payload(self, **fields: Any) -> dict[str, Any]:
        if self.settings.vulners_api_key:
            fields["apiKey"] = self.settings.vulners_api_key
        return fields

    def _documents(self, data: Any, key: str, url: str) -> list[dict]:
        if not isinstance(data, dict) or data.get("result") != "OK":
            error = data.get("data", {}).get("error") if isinstance(data, dict) else None
            raise SourceResponseError(
                f"Unexpected response: {error or 'result != OK'}", self.source_name, url
            )
        documents = data.get("data", {}).get(key) or []
        # Search hits wrap the document in "_source".
        return [doc.get("_source", doc) for doc in documents if isinstance(doc, dict)]

    async def _health_check(self, ctx: DiscoveryContext | None) -> bool:
        data = await self._get_json(f"{self.base_url}/archive/collection/", ctx=ctx,
                                    params={"type": "cve"})
        return isinstance(data, dict) and data.get("result") == "OK"

    async def _discover(
        self, options: DiscoveryOptions, ctx: DiscoveryContext, sink: list[RawRecord], limit: int
    ) -> None:
        start, end = self.window(options)
        url = f"{self.base_url}/search/lucene/"
        for query in build_queries(options, start, end):
            payload = self._payload(
                query=query, size=limit, sort="published", order="desc", fields=SEARCH_FIELDS
            )
            data = await self._post_json(url, payload, ctx=ctx)
            sink.extend(self._parse_items(self._documents(data, "search", url), parse_document))
            if len(sink) >= limit * 2:
                return

    async def _details(self, cve_id: str, ctx: DiscoveryContext | None) -> RawRecord | None:
        url = f"{self.base_url}/search/id/"
        data = await self._post_json(url, self._payload(id=cve_id, fields=SEARCH_FIELDS), ctx=ctx)
        if isinstance(data, dict) and data.get("result") == "OK":
            documents = data.get("data", {}).get("documents") or {}
            if isinstance(documents, dict):
                documents = list(documents.values())
            records = self._parse_items(documents, parse_document)
            return records[0] if records else None
        return None
