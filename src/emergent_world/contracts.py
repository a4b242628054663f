from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    prompt: str = ""
    messages: tuple[dict[str, str], ...] | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop: tuple[str, ...] | None = None
    stream: bool = False
    response_format: dict[str, Any] | None = None
    # Structured call sites set this so an unrecognised body fails instead of
    # degrading to raw text.
    strict_decoding: bool = False

    def chat_messages(self, system_preamble: str) -> list[dict[str, str]]:
        if self.messages:
            return [dict(m) for m in self.messages]
        return [
            {"role": "system", "content": system_preamble},
            {"role": "user", "content": self.prompt},
        ]

    def prompt_text(self) -> str:
        if self.prompt or not self.messages:
            return self.prompt
        return "\n\n".join(m.get("content", "") for m in self.messages if m.get("role") != "system")


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class CompletionResult:
    text: str
    model: str
    usage: Usage | None = None
    latency_seconds: float = 0.0
    truncated: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


class ImageRequest(BaseModel):
    prompt: str
    model: str | None = None
    negative_prompt: str | None = None
    width: int = 1024
    height: int = 576
    steps: int | None = None
    guidance_scale: float | None = None
    seed: int | None = None
    format: str | None = None
    sample_count: int = 1


class ImageResult(BaseModel):
    url: str
    model: str

    @property
    def is_inline(self) -> bool:
        return self.url.startswith("data:")


class BoundingBox(BaseModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class Detection(BaseModel):
    label: str
    confidence: float = 0.0
    bounding_box: BoundingBox = Field(default_factory=BoundingBox)


class VisionRequest(BaseModel):
    image: bytes
    query: str | None = None
    filename: str = "upload.png"
    content_type: str = "image/png"


class VisionResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    status: str | None = None
    detections: list[Detection] = Field(default_factory=list)
    description: str | None = None


class VoiceRequest(BaseModel):
    text: str
    voice: str | None = None
    speed: float | None = None
    format: str | None = None


class VoiceResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    status: str | None = None
    audio_url: str | None = None
    audio_data: str | None = None


class VideoRequest(BaseModel):
    prompt: str
    negative_prompt: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    fps: int | None = None
    steps: int | None = None
    guidance_scale: float | None = None
    seed: int | None = None
    format: str | None = None
    quality: str | None = None
    motion_strength: float | None = None


class Video(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: str | None = None
    base64: str | None = None
    width: int = 0
    height: int = 0
    duration: float = 0.0
    fps: int = 0
    format: str | None = None


class VideoResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    status: str | None = None
    videos: list[Video] = Field(default_factory=list)
