from __future__ import annotations

import asyncio
import random
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel

from .config import EngineConfig
from .contracts import (
    CompletionRequest,
    CompletionResult,
    ImageRequest,
    ImageResult,
    VideoRequest,
    VideoResult,
    VisionRequest,
    VisionResult,
    VoiceRequest,
    VoiceResult,
)
from .decoding import decode_completion_text, decode_image_url, decode_usage
from .endpoints import Capability, EndpointTable, ProviderEndpoint, build_image_payload, build_text_payload
from .errors import (
    AuthenticationError,
    DecodeError,
    ProviderError,
    RequestTimeoutError,
    TransportError,
    UpstreamAPIError,
)
from .metrics import ClientMetrics, MetricsSnapshot, request_latency_seconds
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from .streaming import iter_text_tokens
from .transport import RetryingTransport

log = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

VISION_PATH = "/v1/inference/grounding-dino"
VOICE_PATH = "/v1/inference/kokoro"
VIDEO_PATH = "/v1/inference/stable-video-diffusion"
JOBS_PATH = "/v1/jobs"


def _json_model(model: type[M]) -> Callable[[httpx.Response], M]:
    def decode(response: httpx.Response) -> M:
        payload = response.json()
        if isinstance(payload, dict) and payload.get("error"):
            err = payload["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise UpstreamAPIError(response.status_code, message or "Upstream reported an error.")
        return model.model_validate(payload)

    return decode


def _json_object(response: httpx.Response) -> dict[str, Any]:
    payload = response.json()
    if not isinstance(payload, dict):
        raise DecodeError("Expected a JSON object.")
    return payload


class InferenceClient:
    """
    Multi-provider client: model id -> endpoint -> envelope -> transport -> decoder.

    Every call goes through the shared rate limiter and retry policy of this
    instance. Terminal failures are raised to the caller; falling back to
    another provider is the caller's decision (see :mod:`.cascade`).
    """

    def __init__(
        self,
        cfg: EngineConfig | None = None,
        *,
        endpoints: EndpointTable | None = None,
        http_client: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        policy: RetryPolicy | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        metrics: ClientMetrics | None = None,
        name: str = "inference",
        rng: random.Random | None = None,
    ):
        self.cfg = cfg or EngineConfig()
        self.name = name
        self.endpoints = endpoints or EndpointTable.from_config(self.cfg)
        self.metrics = metrics or ClientMetrics(name)
        self._rng = rng or random.Random()
        self._transport = RetryingTransport(
            client=http_client,
            limiter=limiter or RateLimiter(self.cfg.rate_limit_rps),
            policy=policy
            or RetryPolicy(
                max_attempts=self.cfg.retry_max_attempts,
                base_backoff_seconds=self.cfg.retry_backoff_seconds,
            ),
            metrics=self.metrics,
            timeout_seconds=self.cfg.request_timeout_seconds,
            sleeper=sleeper,
        )

    async def __aenter__(self) -> "InferenceClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._transport.close()

    @property
    def limiter(self) -> RateLimiter:
        return self._transport.limiter

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._transport.policy

    def metrics_snapshot(self) -> MetricsSnapshot:
        return self.metrics.snapshot()

    def set_retry(self, attempts: int | None = None, backoff_seconds: float | None = None) -> None:
        """Non-positive values keep the current setting."""
        self._transport.policy = self._transport.policy.with_overrides(
            max_attempts=attempts, base_backoff_seconds=backoff_seconds
        )

    def set_rate_limit(self, rps: int) -> None:
        if rps <= 0:
            return
        self._transport.limiter.set_capacity(rps)

    @contextmanager
    def _preflight(self) -> Iterator[None]:
        # Failures before the transport runs still count as one failed call.
        try:
            yield
        except ProviderError:
            self.metrics.record_failure()
            raise

    async def _within(self, call: Awaitable[Any], timeout: float | None) -> Any:
        if not timeout or timeout <= 0:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(f"Request exceeded its {timeout:g}s deadline.") from e

    def _resolve(self, model: str, capability: Capability) -> ProviderEndpoint:
        with self._preflight():
            return self.endpoints.resolve(model, capability)

    async def complete(self, request: CompletionRequest, *, timeout: float | None = None) -> CompletionResult:
        if request.stream:
            return await self.complete_stream(request, timeout=timeout)

        endpoint = self._resolve(request.model, Capability.TEXT)
        with self._preflight():
            payload = build_text_payload(endpoint, request)
            headers = endpoint.auth_headers()

        def decode(response: httpx.Response) -> tuple[str, Any]:
            text = decode_completion_text(response.content, strict=request.strict_decoding)
            if not text:
                raise DecodeError("Upstream returned an empty completion.")
            return text, decode_usage(response.content)

        started = time.monotonic()
        with request_latency_seconds.labels(provider=endpoint.provider).time():
            text, usage = await self._within(
                self._transport.send("POST", endpoint.url_for(), json=payload, headers=headers, decoder=decode),
                timeout,
            )
        latency = time.monotonic() - started
        log.info("completion_ok", model=request.model, provider=endpoint.provider, latency_seconds=round(latency, 3))
        return CompletionResult(text=text, model=request.model, usage=usage, latency_seconds=latency)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """
        Yield text tokens in arrival order; stops at ``[DONE]`` or end of body.

        A connection error after the first byte raises :class:`TransportError`.
        """
        endpoint = self._resolve(request.model, Capability.TEXT)
        with self._preflight():
            url = endpoint.url_for(stream=True)
            payload = build_text_payload(endpoint, request, stream=True)
            headers = {**endpoint.auth_headers(), "Accept": "text/event-stream"}

        self.metrics.record_stream_request()
        async with self._transport.stream("POST", url, json=payload, headers=headers) as response:
            async for token in iter_text_tokens(response.aiter_lines()):
                self.metrics.record_stream_tokens(1)
                yield token

    async def complete_stream(self, request: CompletionRequest, *, timeout: float | None = None) -> CompletionResult:
        """
        Collect a streamed completion.

        When ``timeout`` elapses mid-stream the tokens received so far are
        returned with ``truncated=True``; the same holds when the connection
        breaks mid-stream. A deadline that passes before any token arrives
        raises :class:`RequestTimeoutError`, a broken stream with no output
        raises :class:`TransportError`.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        pieces: list[str] = []
        truncated = False
        it = self.stream(request).__aiter__()
        try:
            while True:
                remaining: float | None = None
                if timeout and timeout > 0:
                    remaining = timeout - (loop.time() - started)
                    if remaining <= 0:
                        truncated = True
                        break
                try:
                    piece = await asyncio.wait_for(anext(it), timeout=remaining)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    truncated = True
                    break
                except TransportError:
                    if not pieces:
                        raise
                    log.warning("stream_broken_after_output", model=request.model, chunks=len(pieces))
                    truncated = True
                    break
                pieces.append(piece)
        finally:
            await it.aclose()

        latency = loop.time() - started
        if truncated:
            if not pieces:
                raise RequestTimeoutError(f"No streamed output within {timeout:g}s.")
            log.info("stream_truncated", model=request.model, chunks=len(pieces), latency_seconds=round(latency, 3))
        return CompletionResult(
            text="".join(pieces),
            model=request.model,
            latency_seconds=latency,
            truncated=truncated,
            metadata={"tokens": len(pieces)},
        )

    async def generate_image(self, request: ImageRequest, *, timeout: float | None = None) -> ImageResult:
        model = request.model or self.cfg.primary_image_model
        endpoint = self._resolve(model, Capability.IMAGE)
        with self._preflight():
            payload = build_image_payload(endpoint, request, rng=self._rng)
            headers = endpoint.auth_headers()

        def decode(response: httpx.Response) -> str:
            url = decode_image_url(response.content)
            if not url:
                raise DecodeError("No image found in upstream response.")
            return url

        with request_latency_seconds.labels(provider=endpoint.provider).time():
            url = await self._within(
                self._transport.send("POST", endpoint.url_for(), json=payload, headers=headers, decoder=decode),
                timeout,
            )
        return ImageResult(url=url, model=model)

    def _media_target(self, path: str) -> tuple[str, dict[str, str]]:
        with self._preflight():
            if not self.cfg.theta_api_key:
                raise AuthenticationError("THETA_API_KEY is not configured.")
        return f"{self.cfg.theta_base_url.rstrip('/')}{path}", {"Authorization": f"Bearer {self.cfg.theta_api_key}"}

    async def analyze_vision(self, request: VisionRequest) -> VisionResult:
        url, headers = self._media_target(VISION_PATH)
        data = {"query": request.query} if request.query else None
        return await self._transport.send(
            "POST",
            url,
            headers=headers,
            files={"image": (request.filename, request.image, request.content_type)},
            data=data,
            decoder=_json_model(VisionResult),
        )

    async def generate_voice(self, request: VoiceRequest) -> VoiceResult:
        url, headers = self._media_target(VOICE_PATH)
        return await self._transport.send(
            "POST", url, headers=headers, json=request.model_dump(exclude_none=True), decoder=_json_model(VoiceResult)
        )

    async def generate_video(self, request: VideoRequest) -> VideoResult:
        url, headers = self._media_target(VIDEO_PATH)
        return await self._transport.send(
            "POST", url, headers=headers, json=request.model_dump(exclude_none=True), decoder=_json_model(VideoResult)
        )

    async def job_status(self, job_id: str) -> dict[str, Any]:
        url, headers = self._media_target(f"{JOBS_PATH}/{job_id}")
        return await self._transport.send("GET", url, headers=headers, decoder=_json_object)
