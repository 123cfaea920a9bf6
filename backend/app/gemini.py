"""Gemini streaming client — POSTs a prompt and yields text deltas.

Gemini's `streamGenerateContent?alt=sse` endpoint answers with SSE frames
whose payload is a JSON candidate list. `UpstreamFrameParser` turns raw
response text into deltas; `stream_text()` drives the HTTP request.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from app.config import settings
from app.models import DONE_SENTINEL

logger = logging.getLogger(__name__)

# httpx logs each request URL at INFO, and the Gemini URL carries the API key.
logging.getLogger("httpx").setLevel(logging.WARNING)

DATA_PREFIX = "data: "


class GeminiError(Exception):
    """Raised when Gemini answers with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Gemini API error: {status_code} - {body}")


def extract_text(payload: Any) -> str | None:
    """Return candidates[0].content.parts[0].text, or None if the path is absent."""
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) else None


class UpstreamFrameParser:
    """Accumulates raw SSE text from Gemini and extracts text deltas.

    Reads from the network are not aligned with frame boundaries, so the
    unterminated tail of each chunk is carried over to the next `feed()`.
    A payload is only parsed once its line is complete.
    """

    def __init__(self) -> None:
        self._residual = ""

    def feed(self, chunk: str) -> list[str]:
        self._residual += chunk
        *lines, self._residual = self._residual.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> list[str]:
        """Parse whatever is left once the upstream body has ended."""
        tail, self._residual = self._residual, ""
        return self._parse_lines([tail])

    def _parse_lines(self, lines: list[str]) -> list[str]:
        texts: list[str] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.strip() or not line.startswith(DATA_PREFIX):
                continue
            data = line[len(DATA_PREFIX):]
            if data == DONE_SENTINEL:
                continue
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed upstream frame: %r", data)
                continue
            text = extract_text(payload)
            if text:
                texts.append(text)
        return texts


def new_http_client() -> httpx.AsyncClient:
    # No read timeout: a stream stays open as long as Gemini keeps it open.
    return httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))


def build_stream_url(api_key: str) -> str:
    return (
        f"{settings.gemini_base_url}/models/{settings.gemini_model}"
        f":streamGenerateContent?alt=sse&key={api_key}"
    )


def build_request_body(prompt: str) -> dict:
    return {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "temperature": settings.gemini_temperature,
            "maxOutputTokens": settings.gemini_max_output_tokens,
        },
    }


async def stream_text(
    prompt: str,
    *,
    api_key: str,
    client: httpx.AsyncClient | None = None,
) -> AsyncGenerator[str, None]:
    """Yield Gemini text deltas for `prompt`, in upstream order.

    Args:
        prompt: Flattened prompt from `build_prompt()`.
        api_key: Gemini API key, sent as the `key` query parameter.
        client: Optional shared client (tests inject a MockTransport here).

    Raises:
        GeminiError: Gemini returned a non-2xx status.
        httpx.HTTPError: the request could not be sent or read.
    """
    owns_client = client is None
    if client is None:
        client = new_http_client()

    parser = UpstreamFrameParser()
    try:
        async with client.stream(
            "POST",
            build_stream_url(api_key),
            json=build_request_body(prompt),
            headers={"Content-Type": "application/json"},
        ) as response:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise GeminiError(response.status_code, body)

            async for chunk in response.aiter_text():
                for text in parser.feed(chunk):
                    yield text
            for text in parser.flush():
                yield text
    finally:
        if owns_client:
            await client.aclose()
