import asyncio

import pytest

from emergent_world.config import EngineConfig


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def no_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def cfg() -> EngineConfig:
    return EngineConfig(
        theta_base_url="https://theta.test",
        theta_api_key="theta-key",
        on_demand_api_key="od-key",
        deepseek_url="https://ondemand.test/infer_request/deepseek_r1/completions",
        llama_chat_url="https://llama.test/v1/chat/completions",
        flux_url="https://ondemand.test/infer_request/flux",
        google_api_key="g-key",
        gemini_base_url="https://gemini.test/v1beta",
        gemini_model="gemini-1.5-flash-latest",
        gemini_image_model="gemini-2.0-flash-preview-image-generation",
        retry_max_attempts=3,
        retry_backoff_seconds=0.2,
        rate_limit_rps=100,
    )
