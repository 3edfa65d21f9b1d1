"""CVE source adapters."""

import logging

from cvehunt.config.settings import DiscoverySettings

from ..ratelimit import RateLimiter
from .base import BaseSourceAdapter
from .circl import CirclAdapter
from .cvedetails import CveDetailsAdapter
from .exploitdb import ExploitDbAdapter
from .mitre import MitreAdapter
from .nist import NistAdapter
from .vulners import VulnersAdapter

logger = logging.getLogger(__name__)

ADAPTER_CLASSES: tuple[type[BaseSourceAdapter], ...] = (
    NistAdapter,
    MitreAdapter,
    VulnersAdapter,
    CirclAdapter,
    CveDetailsAdapter,
    ExploitDbAdapter,
)


def create_all_adapters(
    settings: DiscoverySettings | None = None, limiter: RateLimiter | None = None
) -> list[BaseSourceAdapter]:
    """Instantiate every known adapter sharing one rate limiter.

    ``settings.sources`` (``CVEHUNT_SOURCES``), when set, replaces the
    default enabled set.
    """
    settings = settings or DiscoverySettings()
    limiter = limiter or RateLimiter()
    adapters = [cls(settings, limiter) for cls in ADAPTER_CLASSES]
    if settings.sources:
        wanted = set(settings.sources)
        unknown = wanted - {a.source_name for a in adapters}
        if unknown:
            logger.warning("Ignoring unknown sources: %s", ", ".join(sorted(unknown)))
        for adapter in adapters:
            adapter.enabled = adapter.source_name in wanted
    return adapters


__all__ = [
    "ADAPTER_CLASSES",
    "BaseSourceAdapter",
    "CirclAdapter",
    "CveDetailsAdapter",
    "ExploitDbAdapter",
    "MitreAdapter",
    "NistAdapter",
    "VulnersAdapter",
    "create_all_adapters",
]
