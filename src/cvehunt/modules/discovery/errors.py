"""Exception hierarchy for source access and discovery."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import DiscoveryResult

_RETRYABLE_PATTERN = re.compile(
    r"timeout|timed out|network|connect|rate limit|too many requests|(?:http|status|error:?)\s*5\d\d\b|server error",
    re.IGNORECASE,
)


class SourceError(Exception):
    """Base exception for all source operations."""

    def __init__(self, message: str, source_name: str | None = None, url: str | None = None):
        self.source_name = source_name
        self.url = url
        super().__init__(message)

    def __str__(self) -> str:
        if self.source_name:
            return f"[{self.source_name}] {super().__str__()}"
        return super().__str__()


class SourceTransportError(SourceError):
    """Timeout, abort or connection failure talking to a source."""


class RateLimitedError(SourceError):
    """The source kept answering 429 until retries ran out."""

    def __init__(self, message: str, source_name: str | None = None, url: str | None = None,
                 retry_after: float | None = None):
        self.retry_after = retry_after
        super().__init__(message, source_name, url)


class SourceServerError(SourceError):
    """The source kept answering 5xx until retries ran out."""

    def __init__(self, message: str, source_name: str | None = None, url: str | None = None,
                 status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, source_name, url)


class SourceResponseError(SourceError):
    """4xx answer or malformed payload; never retried."""

    def __init__(self, message: str, source_name: str | None = None, url: str | None = None,
                 status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, source_name, url)


class CircuitOpenError(SourceError):
    """Raised without any network call while a breaker is open."""


class DeadlineExceeded(SourceError):
    """The discovery deadline passed; no further attempts are made."""


class AllSourcesFailedError(Exception):
    """Every attempted source failed; carries whatever was collected."""

    def __init__(self, result: DiscoveryResult):
        self.result = result
        names = ", ".join(sorted(f.source_name for f in result.errors)) or "none"
        super().__init__(f"All sources failed ({names})")


def is_retryable_error(error: BaseException | str) -> bool:
    """Classify an error as retryable by its type, falling back to its text.

    Timeout, network/connection, rate-limit and 5xx failures are retryable;
    everything else (4xx, malformed payloads, open breakers) is not.
    """
    if isinstance(error, (SourceResponseError, CircuitOpenError)):
        return False
    if isinstance(error, (SourceTransportError, RateLimitedError, SourceServerError, DeadlineExceeded)):
        return True
    return bool(_RETRYABLE_PATTERN.search(str(error)))
