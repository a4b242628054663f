from __future__ import annotations

import random
from collections.abc import Mapping
from dataclasses import dataclass, field, replace

import structlog
from pydantic import BaseModel

from .cascade import FallbackCascade, Tier, text_tier
from .client import InferenceClient
from .config import EngineConfig
from .contracts import CompletionRequest
from .council import GameEvent
from .extraction import (
    METRIC_KEYS,
    METRIC_MAX,
    METRIC_MIN,
    ImpactDecision,
    convert_impacts_to_deltas,
    extract_action_analysis,
    extract_impacts,
    parse_legacy_metrics,
)
from .prompts import director_primary_prompt, director_secondary_prompt

log = structlog.get_logger()

DIRECTOR_TEMPERATURE = 0.6


def clamp(value: float, low: float = METRIC_MIN, high: float = METRIC_MAX) -> float:
    return max(low, min(high, value))


class WorldMetrics(BaseModel):
    economy: float = 50.0
    security: float = 50.0
    diplomacy: float = 50.0
    environment: float = 50.0
    approval: float = 50.0
    stability: float = 50.0

    def apply(self, deltas: Mapping[str, float]) -> "WorldMetrics":
        """New metrics with ``deltas`` added; each value is clamped to the metric range."""
        values = self.model_dump()
        return WorldMetrics(**{k: clamp(values[k] + float(deltas.get(k, 0.0))) for k in METRIC_KEYS})

    def triggers_game_over(self) -> bool:
        return any(value <= 0 for value in self.model_dump().values())


class PlayerChoice(BaseModel):
    option: str
    option_index: int = 0
    reasoning: str = ""


@dataclass(frozen=True)
class Evaluation:
    analysis: str
    deltas: dict[str, float]
    tier: Tier
    impacts: dict[str, ImpactDecision] = field(default_factory=dict)
    failures: tuple[str, ...] = ()


def random_impact(rng: random.Random | None = None) -> dict[str, float]:
    rng = rng or random.Random()
    spread = {"economy": 20, "security": 20, "diplomacy": 20, "environment": 20, "approval": 10, "stability": 10}
    return {key: (rng.random() - 0.5) * spread[key] for key in METRIC_KEYS}


def director_narrative(event: GameEvent, choice: PlayerChoice) -> str:
    reason = (choice.reasoning or choice.option).strip()
    if len(reason) > 220:
        reason = reason[:220] + "..."
    return (
        f'Action Analysis: In response to "{event.title}" ({event.category}, severity {event.severity}), '
        f"the administration chose: {reason}."
    )


class DecisionEvaluator:
    """Scores a player's decision through the director cascade."""

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
        self.cascade = cascade or FallbackCascade(name="director")
        self._rng = rng or random.Random()

    def _extractor(self, event: GameEvent, choice: PlayerChoice, current: WorldMetrics, *, legacy: bool):
        def extract(text: str) -> Evaluation | None:
            analysis = extract_action_analysis(text) or director_narrative(event, choice)
            impacts = extract_impacts(text)
            if impacts:
                deltas = convert_impacts_to_deltas(impacts, current.model_dump(), rng=self._rng)
                return Evaluation(analysis=analysis, deltas=deltas, tier=Tier.PRIMARY, impacts=impacts)
            if legacy:
                deltas = parse_legacy_metrics(text)
                if deltas is not None:
                    return Evaluation(analysis=analysis, deltas=deltas, tier=Tier.PRIMARY)
            return None

        return extract

    async def evaluate(self, event: GameEvent, choice: PlayerChoice, current: WorldMetrics) -> Evaluation:
        primary = CompletionRequest(
            model=self.cfg.primary_reasoning_model,
            prompt=director_primary_prompt(event, choice),
            temperature=DIRECTOR_TEMPERATURE,
        )
        secondary = CompletionRequest(
            model=self.cfg.gemini_model,
            prompt=director_secondary_prompt(event, choice),
        )
        result = await self.cascade.resolve(
            "director_evaluation",
            primary=text_tier(
                self.client,
                primary,
                self.cfg.director_primary_timeout_seconds,
                extract=self._extractor(event, choice, current, legacy=True),
            ),
            secondary=text_tier(
                self.secondary_client,
                secondary,
                self.cfg.director_secondary_timeout_seconds,
                extract=self._extractor(event, choice, current, legacy=False),
            ),
            fallback=lambda: Evaluation(
                analysis=f"Fallback evaluation for '{choice.option}' in {event.category} context.",
                deltas=random_impact(self._rng),
                tier=Tier.FALLBACK,
            ),
        )
        log.info("director_evaluation", tier=result.tier.value, failures=len(result.failures))
        return replace(result.value, tier=result.tier, failures=result.failures)
