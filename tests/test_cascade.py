import asyncio

import httpx
import pytest

from helpers import chat_response, gemini_response
from emergent_world.cascade import CascadeTier, FallbackCascade, Tier
from emergent_world.client import InferenceClient
from emergent_world.council import FALLBACK_ADVICE, Advisor, AdvisorCouncil, GameEvent
from emergent_world.errors import UpstreamAPIError
from emergent_world.metrics import CascadeMetrics

ADVISOR = Advisor(id="econ", name="Dana Reyes", title="Treasury Secretary")
EVENT = GameEvent(title="Port strike", description="Dockworkers walk out.", category="economy", severity=6)


def _returning(value):
    async def call():
        return value

    return call


def _raising(exc):
    async def call():
        raise exc

    return call


@pytest.mark.asyncio
async def test_timeouts_then_malformed_body_fall_through_to_secondary(cfg, no_sleep, sleeps):
    attempts = {"llama": 0, "gemini": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "llama.test":
            attempts["llama"] += 1
            if attempts["llama"] <= 2:
                raise httpx.ReadTimeout("upstream slow", request=request)
            return chat_response("{ not json")
        attempts["gemini"] += 1
        return gemini_response('{"advisor_opinion":"Negotiate quietly with the union."}')

    metrics = CascadeMetrics()
    client = InferenceClient(
        cfg, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleeper=no_sleep
    )
    council = AdvisorCouncil(client, cascade=FallbackCascade(metrics, name="advisor"))

    async with client:
        result = await council.resolve_opinion(ADVISOR, EVENT)

    assert result.tier is Tier.SECONDARY
    assert result.value == "Negotiate quietly with the union."
    assert attempts == {"llama": 3, "gemini": 1}
    assert sleeps == pytest.approx([0.2, 0.4])
    assert metrics.count("secondary") == 1
    assert metrics.count("primary") == 0
    assert metrics.count("fallback") == 0
    assert result.failures == ("primary: no usable output",)


@pytest.mark.asyncio
async def test_primary_success_short_circuits():
    secondary_calls: list[int] = []

    async def secondary():
        secondary_calls.append(1)
        return "unused"

    cascade = FallbackCascade()
    result = await cascade.resolve(
        "op",
        primary=CascadeTier(call=_returning("first")),
        secondary=CascadeTier(call=secondary),
        fallback="static",
    )
    assert (result.value, result.tier, result.failures) == ("first", Tier.PRIMARY, ())
    assert secondary_calls == []
    assert cascade.metrics.snapshot() == {"primary": 1, "secondary": 0, "fallback": 0}


@pytest.mark.asyncio
async def test_tier_deadline_counts_as_failure():
    async def slow():
        await asyncio.sleep(5)
        return "late"

    result = await FallbackCascade().resolve(
        "op",
        primary=CascadeTier(call=slow, timeout_seconds=0.01),
        secondary=CascadeTier(call=_returning("on time")),
        fallback="static",
    )
    assert result.tier is Tier.SECONDARY
    assert result.failures == ("primary: timed out",)


@pytest.mark.asyncio
async def test_all_tiers_failing_yields_fallback():
    cascade = FallbackCascade()
    result = await cascade.resolve(
        "op",
        primary=CascadeTier(call=_raising(UpstreamAPIError(500, "boom"))),
        secondary=CascadeTier(call=_returning("")),
        fallback=lambda: "static",
    )
    assert result.value == "static"
    assert result.tier is Tier.FALLBACK
    assert len(result.failures) == 2
    assert result.failures[0].startswith("primary: UpstreamAPIError")
    assert result.failures[1] == "secondary: no usable output"
    assert cascade.metrics.count("fallback") == 1


@pytest.mark.asyncio
async def test_missing_secondary_goes_straight_to_fallback():
    result = await FallbackCascade().resolve(
        "op", primary=CascadeTier(call=_returning(None)), fallback=0
    )
    assert (result.value, result.tier) == (0, Tier.FALLBACK)


@pytest.mark.asyncio
async def test_extractors_run_per_tier():
    result = await FallbackCascade().resolve(
        "op",
        primary=CascadeTier(call=_returning("abc"), extract=lambda s: None),
        secondary=CascadeTier(call=_returning("xyz")),
        fallback="static",
        extract=str.upper,
    )
    assert (result.value, result.tier) == ("XYZ", Tier.SECONDARY)


@pytest.mark.asyncio
async def test_cancellation_propagates():
    started = asyncio.Event()

    async def hang():
        started.set()
        await asyncio.sleep(60)

    task = asyncio.create_task(
        FallbackCascade().resolve("op", primary=CascadeTier(call=hang, timeout_seconds=30), fallback="static")
    )
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_council_falls_back_to_static_advice(cfg, no_sleep):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "bad request"}})

    client = InferenceClient(
        cfg, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleeper=no_sleep
    )
    async with client:
        response = await AdvisorCouncil(client).opinion(ADVISOR, EVENT)

    assert response.advice == FALLBACK_ADVICE
    assert response.tier is Tier.FALLBACK
    assert response.advisor_name == "Dana Reyes"


@pytest.mark.asyncio
async def test_failing_extractor_falls_through_to_fallback():
    def explode(text):
        raise ValueError("unparseable reply")

    cascade = FallbackCascade()
    result = await cascade.resolve(
        "op",
        primary=CascadeTier(call=_returning("text")),
        secondary=CascadeTier(call=_returning("more text"), extract=explode),
        fallback="static",
        extract=explode,
    )

    assert (result.value, result.tier) == ("static", Tier.FALLBACK)
    assert result.failures == (
        "primary: extract failed: ValueError: unparseable reply",
        "secondary: extract failed: ValueError: unparseable reply",
    )
    assert cascade.metrics.snapshot() == {"primary": 0, "secondary": 0, "fallback": 1}
