"""Typed discovery settings assembled from the configuration sources."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .getters import get_api_key, get_config, get_float, get_int, get_list

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "cvehunt/0.3 (+https://github.com/cvehunt/cvehunt)"


@dataclass
class DiscoverySettings:
    """Tunables for adapters, the coordinator and the reliability service."""

    cache_ttl: float = 30 * 60
    cache_size: int = 10_000
    health_timeout: float = 15.0
    request_timeout: float = 30.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    breaker_threshold: int = 5
    breaker_reset: float = 5 * 60
    max_results: int = 1000
    sources: list[str] = field(default_factory=list)
    user_agent: str = DEFAULT_USER_AGENT
    nvd_api_key: str | None = None
    vulners_api_key: str | None = None
    reliability_weights: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_config(cls, project_dir: Path | None = None) -> "DiscoverySettings":
        """Build settings from env vars, project .env and ~/.cvehunt/config.yml."""
        defaults = cls()
        return cls(
            cache_ttl=get_float("CVEHUNT_CACHE_TTL", defaults.cache_ttl, project_dir),
            cache_size=get_int("CVEHUNT_CACHE_SIZE", defaults.cache_size, project_dir),
            health_timeout=get_float(
                "CVEHUNT_HEALTH_TIMEOUT", defaults.health_timeout, project_dir
            ),
            request_timeout=get_float(
                "CVEHUNT_REQUEST_TIMEOUT", defaults.request_timeout, project_dir
            ),
            max_attempts=get_int("CVEHUNT_MAX_ATTEMPTS", defaults.max_attempts, project_dir),
            backoff_base=get_float("CVEHUNT_BACKOFF_BASE", defaults.backoff_base, project_dir),
            backoff_max=get_float("CVEHUNT_BACKOFF_MAX", defaults.backoff_max, project_dir),
            breaker_threshold=get_int(
                "CVEHUNT_BREAKER_THRESHOLD", defaults.breaker_threshold, project_dir
            ),
            breaker_reset=get_float("CVEHUNT_BREAKER_RESET", defaults.breaker_reset, project_dir),
            max_results=get_int("CVEHUNT_MAX_RESULTS", defaults.max_results, project_dir),
            sources=[s.lower() for s in get_list("CVEHUNT_SOURCES", project_dir)],
            user_agent=get_config("CVEHUNT_USER_AGENT", project_dir, DEFAULT_USER_AGENT),
            nvd_api_key=get_api_key("nvd", project_dir),
            vulners_api_key=get_api_key("vulners", project_dir),
            reliability_weights=load_reliability_weights(project_dir),
        )


def load_reliability_weights(project_dir: Path | None = None) -> dict[str, float]:
    """Read reliability weight overrides.

    Accepts a mapping under ``CVEHUNT_RELIABILITY_WEIGHTS`` in config.yml or a
    ``name=value,name=value`` string in the environment.
    """
    raw = get_config("CVEHUNT_RELIABILITY_WEIGHTS", project_dir)
    if not raw:
        return {}
    if isinstance(raw, dict):
        items = raw.items()
    else:
        items = []
        for part in str(raw).split(","):
            if "=" in part:
                name, value = part.split("=", 1)
                items.append((name, value))
    weights: dict[str, float] = {}
    for name, value in items:
        try:
            weights[str(name).strip().lower()] = float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring reliability weight %s=%r", name, value)
    return weights
