import json

import httpx


def body_of(request: httpx.Request) -> dict:
    return json.loads(request.content.decode("utf-8"))


def chat_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": text}}]})


def gemini_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


class BrokenStream(httpx.AsyncByteStream):
    """Response body that delivers ``chunks`` and then drops the connection."""

    def __init__(self, *chunks: bytes):
        self._chunks = chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        raise httpx.ReadError("connection reset by peer")
