"""Retrying HTTP transport shared by all source adapters."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Any

import httpx

from ..circuit import HALF_OPEN
from ..errors import (
    CircuitOpenError,
    DeadlineExceeded,
    RateLimitedError,
    SourceError,
    SourceResponseError,
    SourceServerError,
    SourceTransportError,
)

if TYPE_CHECKING:
    from ..context import DiscoveryContext

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after")
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class RequestMixin:
    """Provide ``_request`` with breaker, rate limiting, retries and deadline.

    Expects the host class to define ``source_name``, ``breaker``, ``limiter``,
    ``settings``, ``request_timeout``, ``_sleep`` and ``_record_request``.
    """

    def _backoff(self, attempt: int) -> float:
        base = self.settings.backoff_base * (2**attempt)
        delay = min(self.settings.backoff_max, base)
        return delay + random.uniform(0, delay * 0.1)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        ctx: DiscoveryContext | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        not_found_ok: bool = False,
    ) -> httpx.Response | None:
        """Issue one logical request, retrying transient failures.

        Returns ``None`` only for a 404 when ``not_found_ok`` is set.
        """
        if ctx is not None and ctx.expired():
            raise self._deadline_error(url, None)
        trial = self.breaker.state == HALF_OPEN
        if not self.breaker.allow_request():
            raise CircuitOpenError(f"Circuit breaker open for {self.source_name}", self.source_name, url)

        try:
            return await self._send(
                method, url, ctx=ctx, params=params, json=json, headers=headers, not_found_ok=not_found_ok
            )
        except asyncio.CancelledError:
            if trial:
                self.breaker.release_trial()
            raise

    async def _send(
        self,
        method: str,
        url: str,
        *,
        ctx: DiscoveryContext | None,
        params: dict[str, Any] | None,
        json: Any,
        headers: dict[str, str] | None,
        not_found_ok: bool,
    ) -> httpx.Response | None:
        attempts = self.settings.max_attempts
        last_error: SourceError | None = None

        for attempt in range(attempts):
            if attempt and ctx is not None and ctx.expired():
                self.breaker.record_failure()
                raise self._deadline_error(url, last_error)

            await self.limiter.acquire(self.source_name)
            timeout = ctx.bound(self.request_timeout) if ctx is not None else self.request_timeout
            delay: float | None = None

            logger.debug("%s: %s %s (attempt %d/%d)", self.source_name, method, url, attempt + 1, attempts)
            try:
                response = await self.client.request(
                    method, url, params=params, json=json, headers=headers, timeout=timeout
                )
            except httpx.TimeoutException as exc:
                last_error = SourceTransportError(
                    f"Request timed out after {timeout:.1f}s: {exc}", self.source_name, url
                )
            except httpx.TransportError as exc:
                last_error = SourceTransportError(
                    f"Network connection error: {exc}", self.source_name, url
                )
            else:
                self._record_request()
                status = response.status_code
                if response.is_success:
                    self.breaker.record_success()
                    return response
                if status == 404 and not_found_ok:
                    self.breaker.record_success()
                    return None
                if status == 429:
                    delay = _retry_after(response)
                    last_error = RateLimitedError(
                        "Rate limit exceeded (HTTP 429)", self.source_name, url, retry_after=delay
                    )
                elif status >= 500:
                    last_error = SourceServerError(
                        f"Server error: {status} {response.reason_phrase}",
                        self.source_name,
                        url,
                        status_code=status,
                    )
                else:
                    self.breaker.record_failure()
                    raise SourceResponseError(
                        f"Client error: {status} {response.reason_phrase}",
                        self.source_name,
                        url,
                        status_code=status,
                    )

            logger.warning(
                "%s: request failed on attempt %d/%d: %s",
                self.source_name,
                attempt + 1,
                attempts,
                last_error,
            )
            if attempt == attempts - 1:
                break

            if delay is None:
                delay = self._backoff(attempt)
            if ctx is not None:
                remaining = ctx.remaining()
                if remaining is not None and remaining <= delay:
                    self.breaker.record_failure()
                    raise self._deadline_error(url, last_error)
            await self._sleep(delay)

        self.breaker.record_failure()
        raise last_error or SourceError("Request failed after all retry attempts", self.source_name, url)

    async def _get_json(self, url: str, *, ctx=None, params=None, not_found_ok=False) -> Any:
        response = await self._request("GET", url, ctx=ctx, params=params, not_found_ok=not_found_ok)
        if response is None:
            return None
        return self._decode_json(response, url)

    async def _post_json(self, url: str, payload: Any, *, ctx=None) -> Any:
        response = await self._request("POST", url, ctx=ctx, json=payload)
        return self._decode_json(response, url)

    def _decode_json(self, response: httpx.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise SourceResponseError(
                f"Malformed JSON payload: {exc}", self.source_name, url
            ) from exc

    def _deadline_error(self, url: str, last_error: SourceError | None) -> DeadlineExceeded:
        detail = f" after {last_error}" if last_error else ""
        return DeadlineExceeded(f"Timed out: discovery deadline reached{detail}", self.source_name, url)
