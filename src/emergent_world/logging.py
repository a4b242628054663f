from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, MutableMapping
from typing import Any, TypeAlias, cast

import structlog

_SENSITIVE_KEYS = {
    "authorization",
    "x-goog-api-key",
    "x-api-key",
    "api_key",
    "apikey",
    "theta_api_key",
    "google_api_key",
    "on_demand_api_key",
    "token",
    "secret",
    "password",
}
_SENSITIVE_FRAGMENTS = ("api_key", "token", "secret", "password")

_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._-]{6,})")
_QUERY_KEY_RE = re.compile(r"(?i)([?&]key=)[^&\s\"']+")

Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], Mapping[str, Any] | str | bytes]


def snippet(text: str | bytes | None, limit: int = 240) -> str:
    """Bound an upstream body for log output."""
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def _scrub(value: str, secrets: Iterable[str]) -> str:
    for secret in secrets:
        if secret in value:
            value = value.replace(secret, "[REDACTED]")
    value = _BEARER_RE.sub("Bearer [REDACTED]", value)
    return _QUERY_KEY_RE.sub(r"\1[REDACTED]", value)


def _is_sensitive_key(key: Any) -> bool:
    name = str(key).lower()
    return name in _SENSITIVE_KEYS or any(fragment in name for fragment in _SENSITIVE_FRAGMENTS)


def redact(obj: Any, secrets: Iterable[str] = ()) -> Any:
    secrets = tuple(s for s in secrets if s)
    if isinstance(obj, str):
        return _scrub(obj, secrets)
    if isinstance(obj, dict):
        return {k: "[REDACTED]" if _is_sensitive_key(k) else redact(v, secrets) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact(v, secrets) for v in obj)
    return obj


def _redaction_processor(secrets: list[str]) -> Processor:
    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
        return cast(dict[str, Any], redact(dict(event_dict), secrets))

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        _redaction_processor(list(secrets or [])),
    ]
    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
