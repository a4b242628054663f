from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import httpx
import structlog

from .errors import (
    AuthenticationError,
    DecodeError,
    ProviderError,
    RateLimitError,
    TransportError,
    UpstreamAPIError,
)
from .logging import snippet
from .metrics import ClientMetrics
from .rate_limiter import RateLimiter
from .retry import RetryPolicy

log = structlog.get_logger()

USER_AGENT = "Emergent-World-Engine/1.0"

T = TypeVar("T")


def _loggable_url(url: str) -> str:
    return url.split("?", 1)[0]


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(err, str) and err:
            return err
        if isinstance(payload.get("message"), str):
            return payload["message"]
    text = response.text.strip()
    return snippet(text, 500) if text else response.reason_phrase


def error_from_response(response: httpx.Response) -> UpstreamAPIError:
    message = _error_message(response)
    status = response.status_code
    if status == 429:
        retry_after = response.headers.get("retry-after")
        retry_seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
        return RateLimitError(retry_after_seconds=retry_seconds, message=message)
    if status in (401, 403):
        return AuthenticationError(message, status_code=status)
    return UpstreamAPIError(status, message)


class RetryingTransport:
    """
    One logical HTTP request = rate-limit permit + bounded attempts.

    Connection failures, timeouts, 429 and 5xx are retried with a linear
    backoff; every other 4xx and any decode failure is terminal. Exactly one
    success or failure is recorded per logical call.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        policy: RetryPolicy | None = None,
        metrics: ClientMetrics | None = None,
        timeout_seconds: float = 30.0,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, headers={"User-Agent": USER_AGENT})
        self.limiter = limiter or RateLimiter()
        self.policy = policy or RetryPolicy()
        self.metrics = metrics or ClientMetrics("default")
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep

    async def close(self) -> None:
        await self._client.aclose()

    async def _backoff(self, attempt: int, reason: str, url: str, *, retry_after: float | None = None) -> None:
        delay = self.policy.backoff_for(attempt, retry_after_seconds=retry_after)
        self.metrics.record_retry(reason)
        log.info("transport_retry", url=_loggable_url(url), attempt=attempt, reason=reason, sleep_seconds=delay)
        await self._sleep(delay)

    async def _attempts(self, method: str, url: str, *, stream: bool, **kwargs: Any) -> httpx.Response:
        policy = self.policy
        for attempt in range(1, policy.max_attempts + 1):
            await self.limiter.acquire()
            try:
                if stream:
                    request = self._client.build_request(method, url, **kwargs)
                    response = await self._client.send(request, stream=True)
                else:
                    response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                reason = "timeout" if isinstance(e, httpx.TimeoutException) else "transport"
                if policy.has_attempts_left(attempt):
                    await self._backoff(attempt, reason, url)
                    continue
                log.warning("transport_exhausted", url=_loggable_url(url), attempts=attempt, error=str(e))
                raise TransportError(f"Upstream {reason} failure after {attempt} attempt(s).", attempts=attempt) from e

            if response.status_code < 400:
                return response

            if stream:
                await response.aread()
                await response.aclose()
            error = error_from_response(response)
            log.warning(
                "transport_http_error",
                url=_loggable_url(url),
                status_code=response.status_code,
                attempt=attempt,
                body=snippet(response.text),
            )
            if policy.should_retry_status(response.status_code, attempt):
                retry_after = error.retry_after_seconds if isinstance(error, RateLimitError) else None
                await self._backoff(attempt, f"http_{response.status_code}", url, retry_after=retry_after)
                continue
            raise error
        raise TransportError("Upstream request failed after retries.", attempts=policy.max_attempts)  # pragma: no cover

    def _decode(self, decoder: Callable[[httpx.Response], T], response: httpx.Response, url: str) -> T:
        try:
            return decoder(response)
        except DecodeError:
            log.warning("transport_decode_error", url=_loggable_url(url), body=snippet(response.text))
            raise
        except (ValueError, KeyError, TypeError) as e:
            log.warning("transport_decode_error", url=_loggable_url(url), error=str(e), body=snippet(response.text))
            raise DecodeError(f"Failed to decode upstream response: {e}") from e

    async def send(
        self,
        method: str,
        url: str,
        *,
        decoder: Callable[[httpx.Response], T] | None = None,
        **kwargs: Any,
    ) -> T | bytes:
        try:
            response = await self._attempts(method, url, stream=False, **kwargs)
            result: T | bytes = response.content if decoder is None else self._decode(decoder, response, url)
        except (ProviderError, asyncio.CancelledError):
            self.metrics.record_failure()
            raise
        self.metrics.record_request()
        return result

    @asynccontextmanager
    async def stream(self, method: str, url: str, **kwargs: Any) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming response under the retry policy.

        Only opening is retried. A connection error while the body is read
        surfaces as :class:`TransportError`; the call's outcome is recorded
        once the body is done.
        """
        try:
            response = await self._attempts(method, url, stream=True, **kwargs)
        except (ProviderError, asyncio.CancelledError):
            self.metrics.record_failure()
            raise
        broken = False
        try:
            yield response
        except httpx.TransportError as e:
            broken = True
            self.metrics.record_failure()
            log.warning("transport_stream_broken", url=_loggable_url(url), error=str(e))
            raise TransportError(f"Upstream stream broke: {type(e).__name__}.", attempts=1) from e
        finally:
            await response.aclose()
            if not broken:
                self.metrics.record_request()

