"""CVE Details (cvedetails.com) HTML scraping adapter."""

import logging
import re
from urllib.parse import quote

from bs4 import BeautifulSoup

from ..context import DiscoveryContext
from ..models import DiscoveryOptions, RawRecord
from .base import BaseSourceAdapter
from .helpers import (
    CVE_ID_PATTERN,
    clean_description,
    normalize_severity,
    parse_cvss_score,
    parse_date,
    severity_from_score,
    unique,
)

logger = logging.getLogger(__name__)

_PUBLISHED_RE = re.compile(r"Published\s*:?\s*(\d{4}-\d{2}-\d{2})", re.IGNORECASE)
_UPDATED_RE = re.compile(r"(?:Updated|Modified)\s*:?\s*(\d{4}-\d{2}-\d{2})", re.IGNORECASE)
_SEVERITY_RE = re.compile(r"Severity\s*:?\s*(critical|high|medium|low)", re.IGNORECASE)

SUMMARY_SELECTORS = ".cvesummarylong, [data-tsvfield='summary'], .cvedetailssummary"
SCORE_SELECTORS = ".cvssbox, [data-tsvfield='maxCvssBaseScore']"


def _text(node) -> str:
    return node.get_text(" ", strip=True) if node is not None else ""


def parse_list_page(html: str, base_url: str, source: str = "cvedetails") -> list[RawRecord]:
    """Extract one record per CVE link on a listing page."""
    soup = BeautifulSoup(html, "html.parser")
    records: dict[str, RawRecord] = {}
    for link in soup.find_all("a", href=re.compile(r"/cve/CVE-\d{4}-\d+", re.IGNORECASE)):
        match = CVE_ID_PATTERN.search(link["href"])
        if not match:
            continue
        cve_id = match.group(0).upper()
        if cve_id in records:
            continue
        row = link.find_parent(["tr", "div"]) or link
        # Summaries sit in the row itself or in the row that follows it.
        summary = row.select_one(SUMMARY_SELECTORS)
        if summary is None and row.name == "tr":
            sibling = row.find_next_sibling("tr")
            summary = sibling.select_one(SUMMARY_SELECTORS) if sibling else None
        score = parse_cvss_score(_text(row.select_one(SCORE_SELECTORS)))
        row_text = _text(row)
        published = _PUBLISHED_RE.search(row_text)
        records[cve_id] = RawRecord(
            cve_id=cve_id,
            source=source,
            source_url=f"{base_url}/cve/{cve_id}/",
            description=clean_description(_text(summary)),
            published=parse_date(published.group(1)) if published else None,
            severity=severity_from_score(score),
            cvss_score=score,
            metadata={"needs_detail_fetch": summary is None},
        )
    return list(records.values())


def parse_detail_page(html: str, cve_id: str, base_url: str, source: str = "cvedetails") -> RawRecord:
    soup = BeautifulSoup(html, "html.parser")
    text = _text(soup)

    summary = soup.select_one(SUMMARY_SELECTORS)
    if summary is None:
        meta = soup.find("meta", attrs={"name": "description"})
        description = meta.get("content") if meta else None
    else:
        description = _text(summary)

    score = parse_cvss_score(_text(soup.select_one(SCORE_SELECTORS)))
    severity = severity_from_score(score)
    if severity == "UNKNOWN":
        match = _SEVERITY_RE.search(text)
        if match:
            severity = normalize_severity(match.group(1))

    published = _PUBLISHED_RE.search(text)
    updated = _UPDATED_RE.search(text)
    references = [
        a["href"]
        for a in soup.find_all("a", href=re.compile(r"^https?://"))
        if "cvedetails.com" not in a["href"]
    ]
    products = [_text(a) for a in soup.find_all("a", href=re.compile(r"/product/\d+"))]
    cwes = [m.group(0) for m in re.finditer(r"CWE-\d+", text)]

    return RawRecord(
        cve_id=cve_id,
        source=source,
        source_url=f"{base_url}/cve/{cve_id}/",
        description=clean_description(description),
        published=parse_date(published.group(1)) if published else None,
        modified=parse_date(updated.group(1)) if updated else None,
        severity=severity,
        cvss_score=score,
        affected_products=unique(products),
        references=unique(references),
        cwe_ids=unique(cwes),
        metadata={"detail_page": True},
    )


class CveDetailsAdapter(BaseSourceAdapter):
    """Scrapes cvedetails.com listing and detail pages."""

    source_name = "cvedetails"
    display_name = "CVE Details"
    base_url = "https://www.cvedetails.com"
    reliability_score = 0.85
    metadata_richness = 0.8
    enabled_by_default = False
    max_timeframe_years = 25
    requests_per_minute = 30

    async def _html(self, url: str, ctx: DiscoveryContext | None, not_found_ok: bool = False):
        response = await self._request(
            "GET", url, ctx=ctx, headers={"Accept": "text/html"}, not_found_ok=not_found_ok
        )
        return response.text if response is not None else None

    async def _health_check(self, ctx: DiscoveryContext | None) -> bool:
        html = await self._html(f"{self.base_url}/browse-by-date.php", ctx)
        return bool(html)

    async def _discover(
        self, options: DiscoveryOptions, ctx: DiscoveryContext, sink: list[RawRecord], limit: int
    ) -> None:
        for tech in options.technologies:
            html = await self._html(f"{self.base_url}/vendor-search.php?search={quote(tech)}", ctx)
            sink.extend(parse_list_page(html or "", self.base_url, self.source_name))
            if len(sink) >= limit:
                return

        start, end = self.window(options)
        for year in range(end.year, start.year - 1, -1):
            url = f"{self.base_url}/vulnerability-list/year-{year}/vulnerabilities.html"
            html = await self._html(url, ctx)
            sink.extend(parse_list_page(html or "", self.base_url, self.source_name))
            if len(sink) >= limit:
                return

    async def _details(self, cve_id: str, ctx: DiscoveryContext | None) -> RawRecord | None:
        html = await self._html(f"{self.base_url}/cve/{cve_id}/", ctx, not_found_ok=True)
        if not html:
            return None
        return parse_detail_page(html, cve_id, self.base_url, self.source_name)
