"""Multi-source CVE discovery.

The coordinator lives in ``cvehunt.modules.discovery.orchestrator``.
"""

from .cache import DiscoveryCache
from .circuit import CircuitBreaker
from .context import DiscoveryContext
from .errors import (
    AllSourcesFailedError,
    CircuitOpenError,
    DeadlineExceeded,
    RateLimitedError,
    SourceError,
    SourceResponseError,
    SourceServerError,
    SourceTransportError,
    is_retryable_error,
)
from .models import (
    DiscoveryMetrics,
    DiscoveryOptions,
    DiscoveryResult,
    RateLimitStatus,
    RawRecord,
    SourceFailure,
    SourceHealth,
)
from .ratelimit import RateLimiter, TokenBucket

__all__ = [
    "AllSourcesFailedError",
    "CircuitBreaker",
    "CircuitOpenError",
    "DeadlineExceeded",
    "DiscoveryCache",
    "DiscoveryContext",
    "DiscoveryMetrics",
    "DiscoveryOptions",
    "DiscoveryResult",
    "RateLimitStatus",
    "RateLimitedError",
    "RateLimiter",
    "RawRecord",
    "SourceError",
    "SourceFailure",
    "SourceHealth",
    "SourceResponseError",
    "SourceServerError",
    "SourceTransportError",
    "TokenBucket",
    "is_retryable_error",
]
