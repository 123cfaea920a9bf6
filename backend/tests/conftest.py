"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator
from unittest.mock import patch

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Mock helpers for the Gemini streaming API
# ---------------------------------------------------------------------------


def make_gemini_frame(text: str) -> str:
    """One Gemini SSE frame carrying a single text delta."""
    payload = {
        "candidates": [
            {"content": {"parts": [{"text": text}], "role": "model"}, "index": 0}
        ]
    }
    return f"data: {json.dumps(payload)}\r\n\r\n"


def make_gemini_body(*texts: str) -> str:
    """A complete Gemini SSE body streaming `texts` in order."""
    return "".join(make_gemini_frame(t) for t in texts)


def split_into_chunks(body: str, size: int) -> list[bytes]:
    """Cut a body into fixed-size pieces, ignoring frame boundaries."""
    raw = body.encode()
    return [raw[i : i + size] for i in range(0, len(raw), size)]


async def _iter_chunks(chunks: list[bytes]):
    for chunk in chunks:
        yield chunk


class FakeGemini:
    """Canned Gemini endpoint served through httpx.MockTransport.

    Records every request so tests can inspect the URL and body sent
    upstream.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.chunks: list[bytes] = [make_gemini_body("Hello from Gemini!").encode()]
        self.error: Exception | None = None

    def respond_with(self, *texts: str, chunk_size: int | None = None) -> None:
        body = make_gemini_body(*texts)
        self.chunks = split_into_chunks(body, chunk_size) if chunk_size else [body.encode()]

    def respond_with_raw(self, body: str, chunk_size: int | None = None) -> None:
        self.chunks = split_into_chunks(body, chunk_size) if chunk_size else [body.encode()]

    def fail_with_status(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.chunks = [body.encode()]

    def raise_error(self, error: Exception) -> None:
        self.error = error

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(
            self.status_code,
            headers={"content-type": "text/event-stream"},
            content=_iter_chunks(self.chunks),
        )

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def fake_gemini():
    """Patch the relay's settings and Gemini HTTP client with canned responses.

    Usage:
        async def test_chat(client, fake_gemini):
            fake_gemini.respond_with("Hi", " there")
    """
    gemini = FakeGemini()

    with patch("app.gemini.new_http_client", side_effect=gemini.http_client):
        with patch("app.relay.settings") as mock_settings:
            mock_settings.gemini_configured = True
            mock_settings.gemini_api_key = "test-key"
            mock_settings.gemini_model = "gemini-2.0-flash"
            yield gemini


@pytest.fixture
def no_gemini_key():
    with patch("app.relay.settings") as mock_settings:
        mock_settings.gemini_configured = False
        mock_settings.gemini_api_key = ""
        yield mock_settings


# ---------------------------------------------------------------------------
# SSE helpers
# ---------------------------------------------------------------------------


def parse_data_frames(raw: str) -> list[str]:
    """Return the `data:` payload of every frame in a raw SSE body."""
    frames = []
    for block in raw.replace("\r\n", "\n").split("\n\n"):
        for line in block.split("\n"):
            if line.startswith("data: "):
                frames.append(line[len("data: "):])
    return frames


def make_relay_frame(text: str) -> str:
    return f"data: {json.dumps({'text': text})}\n\n"


def make_relay_body(*texts: str, done: bool = True) -> str:
    body = "".join(make_relay_frame(t) for t in texts)
    return body + ("data: [DONE]\n\n" if done else "")

