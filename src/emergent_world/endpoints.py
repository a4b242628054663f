"""
Model routing.

A model identifier resolves to a :class:`ProviderEndpoint` describing where
the request goes, how it authenticates and which envelope it is wrapped in.
Payload construction is a dispatch table keyed by :class:`EnvelopeKind`, so
supporting another model or provider means registering another endpoint.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import EngineConfig
from .contracts import CompletionRequest, ImageRequest
from .errors import AuthenticationError, ConfigurationError, UnsupportedFeatureError

DEFAULT_SYSTEM_PREAMBLE = "You are an adaptive strategic assistant."
DIALOGUE_MAX_TOKENS = 150
REASONING_MAX_TOKENS = 300


class Capability(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class EnvelopeKind(str, Enum):
    CHAT_INPUT = "chat_input"
    RAW_COMPLETION = "raw_completion"
    GEMINI_CONTENTS = "gemini_contents"
    IMAGE_ON_DEMAND = "image_on_demand"
    IMAGE_INFERENCE = "image_inference"
    IMAGE_IMAGEN = "image_imagen"
    IMAGE_GEMINI = "image_gemini"

    @property
    def capability(self) -> Capability:
        if self in (EnvelopeKind.CHAT_INPUT, EnvelopeKind.RAW_COMPLETION, EnvelopeKind.GEMINI_CONTENTS):
            return Capability.TEXT
        return Capability.IMAGE


class AuthScheme(str, Enum):
    BEARER = "bearer"
    GOOGLE_API_KEY = "x-goog-api-key"
    NONE = "none"


@dataclass(frozen=True)
class ProviderEndpoint:
    model: str
    kind: EnvelopeKind
    url: str
    stream_url: str | None = None
    auth: AuthScheme = AuthScheme.BEARER
    credential: str | None = field(default=None, repr=False)
    provider: str = "theta"
    default_max_tokens: int | None = None
    system_preamble: str = DEFAULT_SYSTEM_PREAMBLE

    @property
    def capability(self) -> Capability:
        return self.kind.capability

    @property
    def supports_stream(self) -> bool:
        return self.stream_url is not None

    def url_for(self, *, stream: bool = False) -> str:
        if stream:
            if self.stream_url is None:
                raise UnsupportedFeatureError(f"Model {self.model!r} does not support streaming.")
            return self.stream_url
        return self.url

    def auth_headers(self) -> dict[str, str]:
        if self.auth is AuthScheme.NONE:
            return {}
        if not self.credential:
            raise AuthenticationError(f"Missing API credential for model {self.model!r} ({self.provider}).")
        if self.auth is AuthScheme.GOOGLE_API_KEY:
            return {"x-goog-api-key": self.credential}
        return {"Authorization": f"Bearer {self.credential}"}


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _chat_input_payload(endpoint: ProviderEndpoint, request: CompletionRequest, stream: bool) -> dict[str, Any]:
    body: dict[str, Any] = {
        "messages": request.chat_messages(endpoint.system_preamble),
        "max_tokens": request.max_tokens or endpoint.default_max_tokens,
        "temperature": request.temperature,
    }
    if request.top_p:
        body["top_p"] = request.top_p
    if request.stop:
        body["stop"] = list(request.stop)
    if stream:
        body["stream"] = True
    payload: dict[str, Any] = {"input": _drop_none(body)}
    if request.response_format is not None:
        payload["response_format"] = request.response_format
    return payload


def _raw_completion_payload(endpoint: ProviderEndpoint, request: CompletionRequest, stream: bool) -> dict[str, Any]:
    return _drop_none(
        {
            "model": request.model,
            "prompt": request.prompt_text(),
            "max_tokens": request.max_tokens or endpoint.default_max_tokens,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "stop": list(request.stop) if request.stop else None,
            "stream": True if stream else None,
            "response_format": request.response_format,
        }
    )


def _gemini_contents_payload(endpoint: ProviderEndpoint, request: CompletionRequest, stream: bool) -> dict[str, Any]:
    system_parts: list[str] = []
    contents: list[dict[str, Any]] = []
    messages = [dict(m) for m in request.messages] if request.messages else [{"role": "user", "content": request.prompt}]
    for msg in messages:
        role = msg.get("role")
        text = msg.get("content", "")
        if role == "system":
            if text:
                system_parts.append(text)
            continue
        if role == "user":
            gemini_role = "user"
        elif role == "assistant":
            gemini_role = "model"
        else:
            raise ConfigurationError(f"Unsupported message role for Gemini: {role!r}")
        contents.append({"role": gemini_role, "parts": [{"text": text}]})

    payload: dict[str, Any] = {"contents": contents}
    if system_parts:
        payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}

    generation_config = _drop_none(
        {
            "temperature": request.temperature,
            "topP": request.top_p,
            "maxOutputTokens": request.max_tokens,
            "stopSequences": list(request.stop) if request.stop else None,
        }
    )
    if request.response_format is not None:
        generation_config["responseMimeType"] = "application/json"
    if generation_config:
        payload["generationConfig"] = generation_config
    return payload


TextPayloadBuilder = Callable[[ProviderEndpoint, CompletionRequest, bool], dict[str, Any]]

TEXT_PAYLOAD_BUILDERS: dict[EnvelopeKind, TextPayloadBuilder] = {
    EnvelopeKind.CHAT_INPUT: _chat_input_payload,
    EnvelopeKind.RAW_COMPLETION: _raw_completion_payload,
    EnvelopeKind.GEMINI_CONTENTS: _gemini_contents_payload,
}


def _image_on_demand_payload(request: ImageRequest, rng: random.Random) -> dict[str, Any]:
    seed = request.seed if request.seed is not None else rng.getrandbits(63)
    return {
        "input": {
            "prompt": request.prompt,
            "width": request.width,
            "height": request.height,
            "num_steps": request.steps or 4,
            "guidance": request.guidance_scale if request.guidance_scale is not None else 3.5,
            "seed": str(seed),
        },
        "wait": 6,
    }


def _image_inference_payload(request: ImageRequest, rng: random.Random) -> dict[str, Any]:
    return _drop_none(
        {
            "prompt": request.prompt,
            "negative_prompt": request.negative_prompt,
            "width": request.width,
            "height": request.height,
            "steps": request.steps,
            "guidance_scale": request.guidance_scale,
            "seed": request.seed,
            "format": request.format,
        }
    )


def _image_imagen_payload(request: ImageRequest, rng: random.Random) -> dict[str, Any]:
    return {"instances": [{"prompt": request.prompt}], "parameters": {"sampleCount": request.sample_count}}


def _image_gemini_payload(request: ImageRequest, rng: random.Random) -> dict[str, Any]:
    return {"contents": [{"role": "user", "parts": [{"text": request.prompt}]}]}


ImagePayloadBuilder = Callable[[ImageRequest, random.Random], dict[str, Any]]

IMAGE_PAYLOAD_BUILDERS: dict[EnvelopeKind, ImagePayloadBuilder] = {
    EnvelopeKind.IMAGE_ON_DEMAND: _image_on_demand_payload,
    EnvelopeKind.IMAGE_INFERENCE: _image_inference_payload,
    EnvelopeKind.IMAGE_IMAGEN: _image_imagen_payload,
    EnvelopeKind.IMAGE_GEMINI: _image_gemini_payload,
}


def build_text_payload(endpoint: ProviderEndpoint, request: CompletionRequest, *, stream: bool = False) -> dict[str, Any]:
    builder = TEXT_PAYLOAD_BUILDERS.get(endpoint.kind)
    if builder is None:
        raise UnsupportedFeatureError(f"Model {endpoint.model!r} is not a text model.")
    return builder(endpoint, request, stream)


def build_image_payload(
    endpoint: ProviderEndpoint, request: ImageRequest, *, rng: random.Random | None = None
) -> dict[str, Any]:
    builder = IMAGE_PAYLOAD_BUILDERS.get(endpoint.kind)
    if builder is None:
        raise UnsupportedFeatureError(f"Model {endpoint.model!r} is not an image model.")
    return builder(request, rng or random.Random())


class EndpointTable:
    def __init__(
        self,
        endpoints: Iterable[ProviderEndpoint] = (),
        *,
        default_text: Callable[[str], ProviderEndpoint] | None = None,
        default_image: Callable[[str], ProviderEndpoint] | None = None,
    ):
        self._endpoints: dict[str, ProviderEndpoint] = {}
        self._defaults: dict[Capability, Callable[[str], ProviderEndpoint] | None] = {
            Capability.TEXT: default_text,
            Capability.IMAGE: default_image,
        }
        for endpoint in endpoints:
            self.register(endpoint)

    def register(self, endpoint: ProviderEndpoint) -> None:
        self._endpoints[endpoint.model] = endpoint

    def __contains__(self, model: object) -> bool:
        return model in self._endpoints

    def models(self) -> list[str]:
        return sorted(self._endpoints)

    def resolve(self, model: str, capability: Capability = Capability.TEXT) -> ProviderEndpoint:
        endpoint = self._endpoints.get(model)
        if endpoint is None:
            fallback = self._defaults.get(capability)
            if fallback is None:
                raise UnsupportedFeatureError(f"No endpoint registered for model {model!r}.")
            endpoint = fallback(model)
        if endpoint.capability is not capability:
            raise UnsupportedFeatureError(
                f"Model {model!r} serves {endpoint.capability.value}, not {capability.value}."
            )
        return endpoint

    @classmethod
    def from_config(cls, cfg: EngineConfig) -> "EndpointTable":
        base = cfg.theta_base_url.rstrip("/")
        gemini_base = cfg.gemini_base_url.rstrip("/")

        def theta_llm(model: str) -> ProviderEndpoint:
            return ProviderEndpoint(
                model=model,
                kind=EnvelopeKind.RAW_COMPLETION,
                url=f"{base}/v1/inference/llm",
                stream_url=f"{base}/v1/inference/llm?stream=true",
                credential=cfg.theta_api_key,
            )

        def theta_image(model: str) -> ProviderEndpoint:
            return ProviderEndpoint(
                model=model,
                kind=EnvelopeKind.IMAGE_INFERENCE,
                url=f"{base}/v1/inference/flux-schnell",
                credential=cfg.theta_api_key,
            )

        def gemini(model: str, kind: EnvelopeKind, action: str, stream_action: str | None = None) -> ProviderEndpoint:
            return ProviderEndpoint(
                model=model,
                kind=kind,
                url=f"{gemini_base}/models/{model}:{action}",
                stream_url=f"{gemini_base}/models/{model}:{stream_action}?alt=sse" if stream_action else None,
                auth=AuthScheme.GOOGLE_API_KEY,
                credential=cfg.google_api_key,
                provider="gemini",
            )

        endpoints = [
            ProviderEndpoint(
                model="deepseek_r1",
                kind=EnvelopeKind.CHAT_INPUT,
                url=cfg.deepseek_url,
                stream_url=f"{cfg.deepseek_url}?stream=true",
                credential=cfg.on_demand_api_key,
                default_max_tokens=REASONING_MAX_TOKENS,
            ),
            ProviderEndpoint(
                model="llama_3_1_70b",
                kind=EnvelopeKind.CHAT_INPUT,
                url=cfg.llama_chat_url,
                stream_url=f"{cfg.llama_chat_url}?stream=true",
                credential=cfg.on_demand_api_key,
                default_max_tokens=DIALOGUE_MAX_TOKENS,
            ),
            ProviderEndpoint(
                model="flux",
                kind=EnvelopeKind.IMAGE_ON_DEMAND,
                url=cfg.flux_url,
                credential=cfg.on_demand_api_key,
            ),
            theta_image("flux.1-schnell"),
            gemini(cfg.gemini_model, EnvelopeKind.GEMINI_CONTENTS, "generateContent", "streamGenerateContent"),
            gemini(cfg.gemini_image_model, EnvelopeKind.IMAGE_GEMINI, "generateContent"),
            gemini("imagen-3.0-generate-002", EnvelopeKind.IMAGE_IMAGEN, "predict"),
        ]
        return cls(endpoints, default_text=theta_llm, default_image=theta_image)
