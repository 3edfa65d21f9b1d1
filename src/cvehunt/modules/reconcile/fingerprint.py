"""Deterministic fingerprints for grouping duplicate records."""

import hashlib
import re

from cvehunt.modules.discovery.models import RawRecord

CANONICAL_CVE_RE = re.compile(r"^CVE-\d{4}-\d{4,}$", re.IGNORECASE)
CONTENT_PREFIX = "CONTENT_"

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_description(text: str) -> str:
    text = _PUNCTUATION_RE.sub(" ", (text or "").lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def fingerprint(record: RawRecord) -> str:
    """Return the upper-cased CVE id, or a content hash when it is missing or malformed."""
    if record.cve_id and CANONICAL_CVE_RE.match(record.cve_id):
        return record.cve_id.upper()

    published = record.published
    parts = [
        normalize_description(record.description)[:200],
        str(published.year) if published else "",
        str(published.month) if published else "",
        (record.severity or "").lower(),
        ",".join(sorted(p.lower() for p in record.affected_products)),
    ]
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return f"{CONTENT_PREFIX}{digest[:16]}"


def is_content_fingerprint(value: str) -> bool:
    return value.startswith(CONTENT_PREFIX)
