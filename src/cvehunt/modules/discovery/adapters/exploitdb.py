"""Exploit Database RSS feed adapter."""

import logging
import re

import feedparser

from ..context import DiscoveryContext
from ..models import DiscoveryOptions, RawRecord
from .base import BaseSourceAdapter
from .helpers import clean_description, extract_cve_id, parse_date

logger = logging.getLogger(__name__)

FEED_URL = "https://www.exploit-db.com/rss.xml"

_TYPE_RE = re.compile(r"^\[(?P<type>[^\]]+)\]\s*")
_TAG_RE = re.compile(r"<[^>]+>")


def parse_entry(entry, source: str = "exploitdb") -> RawRecord | None:
    """Turn one feed entry into a record; entries without a CVE id keep ``cve_id=None``."""
    title = entry.get("title") or ""
    summary = _TAG_RE.sub(" ", entry.get("summary") or entry.get("description") or "")
    if not title and not summary:
        return None
    match = _TYPE_RE.match(title)
    exploit_type = match.group("type").lower() if match else None
    clean_title = _TYPE_RE.sub("", title)
    published = parse_date(entry.get("published") or entry.get("updated"))
    description = clean_title if not summary.strip() else f"{clean_title}. {summary}"
    return RawRecord(
        cve_id=extract_cve_id(f"{title} {summary}"),
        source=source,
        source_url=entry.get("link") or "",
        description=clean_description(description),
        published=published,
        modified=published,
        references=[entry["link"]] if entry.get("link") else [],
        attack_vector="NETWORK" if exploit_type in ("remote", "webapps") else None,
        metadata={
            "exploit_type": exploit_type,
            "exploit_title": clean_title,
            "has_public_exploit": True,
        },
    )


class ExploitDbAdapter(BaseSourceAdapter):
    """Recently published public exploits."""

    source_name = "exploitdb"
    display_name = "Exploit Database"
    base_url = "https://www.exploit-db.com"
    reliability_score = 0.70
    metadata_richness = 0.8
    enabled_by_default = False
    supports_historical_data = False
    supports_realtime_updates = True
    max_timeframe_years = 5
    requests_per_minute = 20

    async def _feed(self, ctx: DiscoveryContext | None) -> list[RawRecord]:
        response = await self._request(
            "GET", FEED_URL, ctx=ctx, headers={"Accept": "application/rss+xml, application/xml"}
        )
        feed = feedparser.parse(response.text)
        if feed.bozo and not feed.entries:
            logger.warning("exploitdb: unreadable feed: %s", feed.get("bozo_exception"))
        return self._parse_items(feed.entries, parse_entry)

    async def _health_check(self, ctx: DiscoveryContext | None) -> bool:
        return bool(await self._feed(ctx))

    async def _discover(
        self, options: DiscoveryOptions, ctx: DiscoveryContext, sink: list[RawRecord], limit: int
    ) -> None:
        sink.extend((await self._feed(ctx))[:limit])

    async def _details(self, cve_id: str, ctx: DiscoveryContext | None) -> RawRecord | None:
        for record in await self._feed(ctx):
            if record.cve_id == cve_id:
                return record
        return None
