from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

DONE_SENTINEL = "[DONE]"
_SSE_FIELD_PREFIXES = ("event:", "id:", "retry:")


def tokens_from_payload(payload: Any) -> list[str]:
    """Text pieces carried by one decoded JSON chunk, in order.

    Understands ``delta``/``text`` strings, ``choices[].text``,
    ``choices[].delta.content``, ``choices[].message.content``, Gemini
    ``candidates[].content.parts[].text`` and on-demand ``output`` bodies.
    """
    if not isinstance(payload, dict):
        return []

    for key in ("delta", "text"):
        value = payload.get(key)
        if isinstance(value, str):
            return [value]

    choices = payload.get("choices")
    if isinstance(choices, list):
        out: list[str] = []
        for choice in choices:
            if not isinstance(choice, dict):
                continue
            if isinstance(choice.get("text"), str):
                out.append(choice["text"])
            for nested in ("delta", "message"):
                inner = choice.get(nested)
                if isinstance(inner, dict) and isinstance(inner.get("content"), str):
                    out.append(inner["content"])
        return out

    candidates = payload.get("candidates")
    if isinstance(candidates, list):
        out = []
        for candidate in candidates:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            parts = content.get("parts") if isinstance(content, dict) else None
            if not isinstance(parts, list):
                continue
            out.extend(p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str))
        return out

    output = payload.get("output")
    if isinstance(output, str):
        return [output]
    if isinstance(output, dict):
        nested = tokens_from_payload(output)
        if nested:
            return nested
        for key in ("message", "content"):
            if isinstance(output.get(key), str):
                return [output[key]]
        return []

    body = payload.get("body")
    if isinstance(body, dict):
        requests = body.get("infer_requests")
        if isinstance(requests, list):
            return [piece for item in requests for piece in tokens_from_payload(item)]
        return tokens_from_payload(body)
    return []


def parse_stream_line(line: str) -> list[str] | None:
    """Tokens for one line of an SSE / line-JSON stream; None marks ``[DONE]``."""
    line = line.strip()
    if not line or line.startswith(":") or line.startswith(_SSE_FIELD_PREFIXES):
        return []
    if line.startswith("data:"):
        line = line[len("data:") :].strip()
    if line == DONE_SENTINEL:
        return None
    if not line:
        return []
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return [line]
    return tokens_from_payload(payload)


async def iter_text_tokens(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    async for line in lines:
        tokens = parse_stream_line(line)
        if tokens is None:
            return
        for token in tokens:
            if token:
                yield token
