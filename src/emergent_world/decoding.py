from __future__ import annotations

import json
from typing import Any

from .contracts import Usage
from .errors import DecodeError
from .streaming import parse_stream_line, tokens_from_payload


def _as_text(raw: bytes | bytearray | str) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    return raw


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def looks_like_sse(text: str) -> bool:
    return text.startswith("data:") or "\ndata:" in text


def _sse_payloads(text: str) -> list[Any]:
    payloads = []
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:") :].strip()
        if data == "[DONE]":
            break
        payload = _load_json(data)
        if payload is not None:
            payloads.append(payload)
    return payloads


def decode_completion_text(raw: bytes | bytearray | str, *, strict: bool = False) -> str:
    """
    Collapse a provider body into one text result.

    Handles plain JSON and ``data:``-chunked bodies. Anything unrecognised
    comes back as the trimmed raw text, unless ``strict`` is set.
    """
    text = _as_text(raw).strip()
    if looks_like_sse(text):
        pieces: list[str] = []
        for line in text.splitlines():
            tokens = parse_stream_line(line)
            if tokens is None:
                break
            pieces.extend(tokens)
        joined = "".join(pieces)
        if joined:
            return joined
        # A recognised stream that carried no tokens is an empty completion.
        if strict:
            raise DecodeError("Stream body carried no text.")
        return ""
    else:
        joined = "".join(tokens_from_payload(_load_json(text)))
        if joined:
            return joined

    if strict:
        raise DecodeError("Unrecognised completion payload.")
    return text


def _usage_from_payload(payload: Any) -> Usage | None:
    if not isinstance(payload, dict):
        return None
    usage = payload.get("usage")
    if isinstance(usage, dict):
        return Usage(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
            total_tokens=int(usage.get("total_tokens") or 0),
        )
    meta = payload.get("usageMetadata")
    if isinstance(meta, dict):
        return Usage(
            prompt_tokens=int(meta.get("promptTokenCount") or 0),
            completion_tokens=int(meta.get("candidatesTokenCount") or 0),
            total_tokens=int(meta.get("totalTokenCount") or 0),
        )
    return None


def decode_usage(raw: bytes | bytearray | str) -> Usage | None:
    text = _as_text(raw).strip()
    payloads = _sse_payloads(text) if looks_like_sse(text) else [_load_json(text)]
    found = None
    for payload in payloads:
        found = _usage_from_payload(payload) or found
    return found


def _first_url(images: Any) -> str:
    if isinstance(images, list) and images and isinstance(images[0], dict):
        url = images[0].get("url")
        if isinstance(url, str) and url:
            return url
        b64 = images[0].get("base64")
        if isinstance(b64, str) and b64:
            return f"data:image/{images[0].get('format') or 'png'};base64,{b64}"
    return ""


def _inline_image(payload: dict[str, Any]) -> str:
    for candidate in payload.get("candidates") or []:
        parts = ((candidate or {}).get("content") or {}).get("parts") or []
        for part in parts:
            if not isinstance(part, dict):
                continue
            inline = part.get("inline_data") or part.get("inlineData")
            if isinstance(inline, dict) and inline.get("data"):
                mime = inline.get("mime_type") or inline.get("mimeType") or "image/png"
                return f"data:{mime};base64,{inline['data']}"
    for prediction in payload.get("predictions") or []:
        if isinstance(prediction, dict) and prediction.get("bytesBase64Encoded"):
            mime = prediction.get("mimeType") or "image/png"
            return f"data:{mime};base64,{prediction['bytesBase64Encoded']}"
    return ""


def decode_image_url(raw: bytes | bytearray | str) -> str:
    """Image URL (or ``data:`` URL) from any known image response; "" if none."""
    payload = _load_json(_as_text(raw).strip())
    if not isinstance(payload, dict):
        return ""

    body = payload.get("body")
    if isinstance(body, dict):
        for item in body.get("infer_requests") or []:
            output = item.get("output") if isinstance(item, dict) else None
            if isinstance(output, dict) and output.get("image_url"):
                return str(output["image_url"])

    if isinstance(payload.get("image_url"), str) and payload["image_url"]:
        return payload["image_url"]

    result = payload.get("result")
    if isinstance(result, dict):
        if isinstance(result.get("image_url"), str) and result["image_url"]:
            return result["image_url"]
        url = _first_url(result.get("images"))
        if url:
            return url

    url = _first_url(payload.get("images"))
    if url:
        return url
    if isinstance(payload.get("url"), str) and payload["url"]:
        return payload["url"]
    return _inline_image(payload)
