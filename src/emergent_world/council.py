from __future__ import annotations

import asyncio
import random
from collections.abc import Sequence

import structlog
from pydantic import BaseModel, Field

from .cascade import CascadeResult, FallbackCascade, Tier, text_tier
from .client import InferenceClient
from .config import EngineConfig
from .contracts import CompletionRequest
from .extraction import extract_opinion, looks_meta_like
from .prompts import advisor_primary_prompt, advisor_secondary_prompt

log = structlog.get_logger()

FALLBACK_ADVICE = "You should take a stabilizing course."
ADVISOR_TEMPERATURE = 0.7


class Advisor(BaseModel):
    id: str
    name: str
    title: str
    personality: str = ""
    specialty: str = ""


class GameEvent(BaseModel):
    id: str = ""
    title: str
    description: str
    category: str = "general"
    severity: int = Field(default=5, ge=1, le=10)
    options: list[str] = Field(default_factory=list)
    image_url: str | None = None


class AdvisorResponse(BaseModel):
    advisor_id: str
    advisor_name: str
    title: str
    advice: str
    recommendation: int = 0
    tier: Tier


def advisor_opinion_from(text: str) -> str | None:
    """Extracted opinion, or None when it is missing or still carries markup."""
    opinion = extract_opinion(text)
    if not opinion:
        return None
    if looks_meta_like(opinion):
        log.info("advisor_opinion_rejected", reason="meta_like", opinion=opinion[:120])
        return None
    return opinion


class AdvisorCouncil:
    """
    Advisor opinions for a game event, one fallback cascade per advisor.

    The primary tier asks the dialogue model; the secondary tier re-asks the
    Gemini text model with its own prompt style.
    """

    def __init__(
        self,
        client: InferenceClient,
        *,
        secondary_client: InferenceClient | None = None,
        cfg: EngineConfig | None = None,
        cascade: FallbackCascade | None = None,
        rng: random.Random | None = None,
    ):
        self.client = client
        self.secondary_client = secondary_client or client
        self.cfg = cfg or client.cfg
        self.cascade = cascade or FallbackCascade(name="advisor")
        self._rng = rng or random.Random()

    def select(self, advisors: Sequence[Advisor], count: int = 3) -> list[Advisor]:
        return self._rng.sample(list(advisors), min(count, len(advisors)))

    async def resolve_opinion(self, advisor: Advisor, event: GameEvent) -> CascadeResult[str]:
        primary = CompletionRequest(
            model=self.cfg.primary_dialogue_model,
            prompt=advisor_primary_prompt(advisor, event),
            temperature=ADVISOR_TEMPERATURE,
        )
        secondary = CompletionRequest(
            model=self.cfg.gemini_model,
            prompt=advisor_secondary_prompt(advisor, event),
            temperature=ADVISOR_TEMPERATURE,
        )
        return await self.cascade.resolve(
            "advisor_opinion",
            primary=text_tier(self.client, primary, self.cfg.advisor_primary_timeout_seconds),
            secondary=text_tier(self.secondary_client, secondary, self.cfg.advisor_secondary_timeout_seconds),
            fallback=FALLBACK_ADVICE,
            extract=advisor_opinion_from,
        )

    async def opinion(self, advisor: Advisor, event: GameEvent) -> AdvisorResponse:
        result = await self.resolve_opinion(advisor, event)
        log.info("advisor_opinion", advisor=advisor.id, tier=result.tier.value, failures=len(result.failures))
        return AdvisorResponse(
            advisor_id=advisor.id,
            advisor_name=advisor.name,
            title=advisor.title,
            advice=result.value,
            tier=result.tier,
        )

    async def gather(self, advisors: Sequence[Advisor], event: GameEvent) -> list[AdvisorResponse]:
        """Opinions in the order of ``advisors``; every advisor gets an answer."""
        return list(await asyncio.gather(*(self.opinion(advisor, event) for advisor in advisors)))
