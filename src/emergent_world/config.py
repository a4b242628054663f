from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

THETA_DEFAULT_BASE_URL = "https://api.thetaedgecloud.com"
GEMINI_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEEPSEEK_DEFAULT_URL = "https://ondemand.thetaedgecloud.com/infer_request/deepseek_r1/completions"
LLAMA_DEFAULT_URL = (
    "https://llama3170b2oczc2osyg-07554694ea35fad5.tec-s20.onthetaedgecloud.com/v1/chat/completions"
)
FLUX_DEFAULT_URL = "https://ondemand.thetaedgecloud.com/infer_request/flux"

_ENV_FILE_CANDIDATES = (".env", "../.env", "../../.env", "game/.env")


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def load_env_files(candidates: tuple[str, ...] = _ENV_FILE_CANDIDATES, *, base_dir: Path | None = None) -> Path | None:
    """Load the first ``.env`` found among ``candidates``; shell values win.

    Returns the path that was loaded, or None.
    """
    root = base_dir or Path.cwd()
    for candidate in candidates:
        path = (root / candidate).resolve()
        if path.is_file():
            load_dotenv(path, override=False)
            return path
    return None


class EngineConfig(BaseModel):
    # Provider A (Theta EdgeCloud)
    theta_base_url: str = Field(default_factory=lambda: os.getenv("THETA_BASE_URL", THETA_DEFAULT_BASE_URL))
    theta_api_key: str | None = Field(default_factory=lambda: os.getenv("THETA_API_KEY"))
    on_demand_api_key: str | None = Field(
        default_factory=lambda: _first_env("ON_DEMAND_API_ACCESS_TOKEN", "THETA_API_KEY")
    )
    deepseek_url: str = Field(default_factory=lambda: os.getenv("DEEPSEEK_URL", DEEPSEEK_DEFAULT_URL))
    llama_chat_url: str = Field(default_factory=lambda: os.getenv("LLAMA_CHAT_URL", LLAMA_DEFAULT_URL))
    flux_url: str = Field(default_factory=lambda: os.getenv("ON_DEMAND_FLUX_URL", FLUX_DEFAULT_URL))

    # Provider B (Google Gemini)
    google_api_key: str | None = Field(default_factory=lambda: _first_env("GOOGLE_AI_API_KEY", "GEMINI_API_KEY"))
    gemini_base_url: str = Field(default_factory=lambda: os.getenv("GEMINI_BASE_URL", GEMINI_DEFAULT_BASE_URL))
    gemini_model: str = Field(default_factory=lambda: os.getenv("GOOGLE_GEMINI_MODEL", "gemini-1.5-flash-latest"))
    gemini_image_model: str = Field(
        default_factory=lambda: os.getenv(
            "GOOGLE_GEMINI_IMAGE_MODEL", "gemini-2.0-flash-preview-image-generation"
        )
    )

    # Model routing used by the cascades
    primary_dialogue_model: str = Field(default_factory=lambda: os.getenv("PRIMARY_DIALOGUE_MODEL", "llama_3_1_70b"))
    primary_reasoning_model: str = Field(default_factory=lambda: os.getenv("PRIMARY_REASONING_MODEL", "deepseek_r1"))
    primary_image_model: str = Field(default_factory=lambda: os.getenv("PRIMARY_IMAGE_MODEL", "flux"))

    # HTTP behavior
    request_timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("THETA_TIMEOUT_SECONDS", "30")))
    retry_max_attempts: int = Field(default_factory=lambda: int(os.getenv("THETA_RETRY_COUNT", "3")))
    retry_backoff_seconds: float = Field(
        default_factory=lambda: float(os.getenv("THETA_RETRY_BACKOFF_SECONDS", "0.2"))
    )
    rate_limit_rps: int = Field(default_factory=lambda: int(os.getenv("THETA_RATE_LIMIT_RPS", "8")))

    # Cascade deadlines (per tier, independent of the transport's own retry timeline)
    advisor_primary_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("ADVISOR_PRIMARY_TIMEOUT_SECONDS", "35"))
    )
    advisor_secondary_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("ADVISOR_SECONDARY_TIMEOUT_SECONDS", "15"))
    )
    director_primary_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("DIRECTOR_PRIMARY_TIMEOUT_SECONDS", "35"))
    )
    director_secondary_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("DIRECTOR_SECONDARY_TIMEOUT_SECONDS", "22"))
    )

    # Observability
    enable_metrics: bool = Field(default_factory=lambda: _env_bool("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    def secrets(self) -> list[str]:
        return [s for s in (self.theta_api_key, self.on_demand_api_key, self.google_api_key) if s]
