from __future__ import annotations

from collections import OrderedDict

import structlog

from .cascade import CascadeResult, CascadeTier, FallbackCascade, Tier
from .client import InferenceClient
from .config import EngineConfig
from .contracts import ImageRequest
from .council import GameEvent
from .prompts import event_image_prompt

log = structlog.get_logger()

DEFAULT_CACHE_SIZE = 500
EVENT_IMAGE_WIDTH = 800
EVENT_IMAGE_HEIGHT = 450


class AssetGenerator:
    """
    Image assets via the image cascade: primary image model, then the Gemini
    image model, then no image at all.

    Successful URLs are kept in a bounded LRU cache keyed by prompt and size.
    """

    def __init__(
        self,
        client: InferenceClient,
        *,
        cfg: EngineConfig | None = None,
        cascade: FallbackCascade | None = None,
        cache_size: int = DEFAULT_CACHE_SIZE,
        image_timeout_seconds: float | None = 45.0,
    ):
        self.client = client
        self.cfg = cfg or client.cfg
        self.cascade = cascade or FallbackCascade(name="assets")
        self.image_timeout_seconds = image_timeout_seconds
        self._cache: OrderedDict[tuple[str, int, int], str] = OrderedDict()
        self._cache_size = max(0, cache_size)

    def _cached(self, key: tuple[str, int, int]) -> str | None:
        url = self._cache.get(key)
        if url is not None:
            self._cache.move_to_end(key)
        return url

    def _remember(self, key: tuple[str, int, int], url: str) -> None:
        if self._cache_size == 0:
            return
        self._cache[key] = url
        self._cache.move_to_end(key)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    def _tier(self, model: str, prompt: str, width: int, height: int) -> CascadeTier[str]:
        async def call() -> str:
            result = await self.client.generate_image(ImageRequest(prompt=prompt, model=model, width=width, height=height))
            return result.url

        return CascadeTier(call=call, timeout_seconds=self.image_timeout_seconds, label=model)

    async def generate(
        self, prompt: str, *, width: int = EVENT_IMAGE_WIDTH, height: int = EVENT_IMAGE_HEIGHT, use_cache: bool = True
    ) -> CascadeResult[str | None]:
        key = (prompt, width, height)
        if use_cache:
            cached = self._cached(key)
            if cached is not None:
                log.debug("asset_cache_hit", width=width, height=height)
                return CascadeResult(value=cached, tier=Tier.PRIMARY)

        result: CascadeResult[str | None] = await self.cascade.resolve(
            "image_generation",
            primary=self._tier(self.cfg.primary_image_model, prompt, width, height),
            secondary=self._tier(self.cfg.gemini_image_model, prompt, width, height),
            fallback=None,
        )
        if result.value:
            self._remember(key, result.value)
        return result

    async def event_image(self, event: GameEvent, *, width: int = EVENT_IMAGE_WIDTH, height: int = EVENT_IMAGE_HEIGHT) -> str | None:
        result = await self.generate(event_image_prompt(event), width=width, height=height)
        return result.value

    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()
