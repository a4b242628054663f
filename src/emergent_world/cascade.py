from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from .client import InferenceClient
from .contracts import CompletionRequest
from .metrics import CascadeMetrics

log = structlog.get_logger()

R = TypeVar("R")
T = TypeVar("T")


class Tier(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class CascadeTier(Generic[R]):
    call: Callable[[], Awaitable[R]]
    timeout_seconds: float | None = None
    label: str = ""
    # Overrides the extractor passed to FallbackCascade.resolve for this tier.
    extract: Callable[[R], Any] | None = None


@dataclass(frozen=True)
class CascadeResult(Generic[T]):
    value: T
    tier: Tier
    failures: tuple[str, ...] = ()


def text_tier(
    client: InferenceClient,
    request: CompletionRequest,
    timeout_seconds: float | None,
    *,
    extract: Callable[[str], Any] | None = None,
) -> CascadeTier[str]:
    """A tier that runs one completion and hands its text to the extractor."""

    async def call() -> str:
        result = await client.complete(request)
        return result.text

    return CascadeTier(call=call, timeout_seconds=timeout_seconds, label=request.model, extract=extract)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, dict, list, tuple)):
        return len(value) == 0
    return False


class FallbackCascade:
    """
    primary -> secondary -> static fallback.

    Each tier runs under its own deadline and its output goes through
    ``extract``; an empty extraction counts as a tier failure. Provider and
    timeout errors never escape ``resolve``. Cancellation of the caller does.
    """

    def __init__(self, metrics: CascadeMetrics | None = None, *, name: str = "cascade"):
        self.metrics = metrics or CascadeMetrics()
        self.name = name

    async def _run_tier(
        self,
        operation: str,
        tier: Tier,
        step: CascadeTier[R],
        extract: Callable[[R], T | None] | None,
        failures: list[str],
    ) -> T | None:
        log.debug("cascade_tier_started", cascade=self.name, operation=operation, tier=tier.value, label=step.label)
        try:
            if step.timeout_seconds and step.timeout_seconds > 0:
                raw = await asyncio.wait_for(step.call(), timeout=step.timeout_seconds)
            else:
                raw = await step.call()
        except asyncio.TimeoutError:
            reason = f"{tier.value}: timed out"
            failures.append(reason)
            log.warning(
                "cascade_tier_failed",
                cascade=self.name,
                operation=operation,
                tier=tier.value,
                reason=reason,
                timeout_seconds=step.timeout_seconds,
            )
            return None
        except Exception as e:
            reason = f"{tier.value}: {type(e).__name__}: {e}"
            failures.append(reason)
            log.warning("cascade_tier_failed", cascade=self.name, operation=operation, tier=tier.value, reason=reason)
            return None

        extractor = step.extract or extract
        try:
            value = extractor(raw) if extractor is not None else raw
        except Exception as e:
            reason = f"{tier.value}: extract failed: {type(e).__name__}: {e}"
            failures.append(reason)
            log.warning("cascade_tier_failed", cascade=self.name, operation=operation, tier=tier.value, reason=reason)
            return None
        if _is_empty(value):
            reason = f"{tier.value}: no usable output"
            failures.append(reason)
            log.info("cascade_tier_unusable", cascade=self.name, operation=operation, tier=tier.value)
            return None
        return value

    async def resolve(
        self,
        operation: str,
        *,
        primary: CascadeTier[R],
        secondary: CascadeTier[R] | None = None,
        fallback: T | Callable[[], T],
        extract: Callable[[R], T | None] | None = None,
    ) -> CascadeResult[T]:
        failures: list[str] = []
        for tier, step in ((Tier.PRIMARY, primary), (Tier.SECONDARY, secondary)):
            if step is None:
                continue
            value = await self._run_tier(operation, tier, step, extract, failures)
            if value is not None:
                self.metrics.record(operation, tier.value)
                log.info("cascade_resolved", cascade=self.name, operation=operation, tier=tier.value)
                return CascadeResult(value=value, tier=tier, failures=tuple(failures))

        value = fallback() if callable(fallback) else fallback
        self.metrics.record(operation, Tier.FALLBACK.value)
        log.warning("cascade_resolved", cascade=self.name, operation=operation, tier=Tier.FALLBACK.value, failures=failures)
        return CascadeResult(value=value, tier=Tier.FALLBACK, failures=tuple(failures))
