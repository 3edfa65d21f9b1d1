"""Normalization helpers shared by the source adapters."""

import logging
import re
from collections.abc import Iterable
from datetime import UTC, datetime

from dateutil import parser as date_parser

from ..models import NO_DESCRIPTION, UNKNOWN_SEVERITY, DiscoveryOptions, RawRecord

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000

CVE_ID_PATTERN = re.compile(r"CVE-\d{4}-\d{4,}", re.IGNORECASE)

_SEVERITY_MAP = {
    "CRIT": "CRITICAL",
    "CRITICAL": "CRITICAL",
    "HIGH": "HIGH",
    "IMPORTANT": "HIGH",
    "MED": "MEDIUM",
    "MEDIUM": "MEDIUM",
    "MODERATE": "MEDIUM",
    "LOW": "LOW",
    "INFO": "LOW",
    "INFORMATIONAL": "LOW",
    "NONE": "LOW",
}


def normalize_severity(value: str | None) -> str:
    if not value:
        return UNKNOWN_SEVERITY
    normalized = str(value).strip().upper()
    return _SEVERITY_MAP.get(normalized, normalized or UNKNOWN_SEVERITY)


def severity_from_score(score: float | None) -> str:
    """Map a CVSS base score onto a severity label."""
    if score is None or score <= 0:
        return UNKNOWN_SEVERITY
    if score >= 9.0:
        return "CRITICAL"
    if score >= 7.0:
        return "HIGH"
    if score >= 4.0:
        return "MEDIUM"
    return "LOW"


def clean_description(value: str | None) -> str:
    if not value:
        return NO_DESCRIPTION
    text = " ".join(str(value).split())
    return text[:MAX_DESCRIPTION_LENGTH] or NO_DESCRIPTION


def parse_cvss_score(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(10.0, score))


def extract_cve_id(text: str | None) -> str | None:
    if not text:
        return None
    match = CVE_ID_PATTERN.search(text)
    return match.group(0).upper() if match else None


def parse_date(value) -> datetime | None:
    """Parse a source timestamp into an aware UTC datetime, or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, OverflowError):
            logger.debug("Unparseable date %r", value)
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def unique(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(str(value).strip(), None)
    return [value for value in seen if value]


def effective_severity(record: RawRecord) -> str:
    if record.severity != UNKNOWN_SEVERITY:
        return record.severity
    return severity_from_score(record.cvss_score)


def matches_options(record: RawRecord, options: DiscoveryOptions, window=None) -> bool:
    """Client-side filter used when a source cannot filter server-side.

    Records whose severity and score are both unknown pass a severity filter,
    and records without a publication date pass the window filter.
    """
    if window is not None and record.published is not None:
        start, end = window
        if not start <= record.published <= end:
            return False

    if options.severities:
        severity = effective_severity(record)
        if severity != UNKNOWN_SEVERITY and severity not in options.severities:
            return False

    haystack = " ".join(
        [record.cve_id or "", record.description, " ".join(record.affected_products)]
    ).lower()
    if options.technologies and not any(t.lower() in haystack for t in options.technologies):
        return False
    if options.keywords and not any(k.lower() in haystack for k in options.keywords):
        return False
    return True


def dedupe_latest(records: Iterable[RawRecord]) -> list[RawRecord]:
    """Keep one record per CVE id, preferring the most recently modified."""
    by_id: dict[str, RawRecord] = {}
    anonymous: list[RawRecord] = []
    for record in records:
        if not record.cve_id:
            anonymous.append(record)
            continue
        key = record.cve_id.upper()
        current = by_id.get(key)
        if current is None or _modified_key(record) > _modified_key(current):
            by_id[key] = record
    return list(by_id.values()) + anonymous


def _modified_key(record: RawRecord) -> datetime:
    return record.modified or record.published or datetime.min.replace(tzinfo=UTC)
