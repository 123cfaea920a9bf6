"""Relay layer — turns one chat turn into a stream of SSE data payloads.

The critical interface is `generate_response()`, an async generator that yields
the `data:` payload of each frame: a JSON-encoded `TextFrame` per delta, then
the `[DONE]` sentinel exactly once. The SSE bridge and routes consume this
interface — they never need to change regardless of what powers the relay.

Errors never surface as HTTP statuses: by the time anything can fail the
response has already committed to `text/event-stream`, so every failure is
reported as an `Error: ...` text frame followed by the sentinel.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import aclosing

import httpx

from app.config import settings
from app.gemini import GeminiError, stream_text
from app.models import DONE_SENTINEL, HistoryEntry, TextFrame
from app.prompt import build_prompt

logger = logging.getLogger(__name__)

__all__ = ["generate_response", "error_frame", "error_stream"]


class ConfigurationError(Exception):
    """A required setting is missing for this request."""


def error_frame(message: str) -> str:
    return TextFrame(text=f"Error: {message}").model_dump_json()


async def error_stream(message: str) -> AsyncGenerator[str, None]:
    """The whole stream for a turn that failed before it could start."""
    logger.warning("Rejected chat request: %s", message)
    yield error_frame(message)
    yield DONE_SENTINEL


async def generate_response(
    message: str,
    history: Sequence[HistoryEntry] | None = None,
    client: httpx.AsyncClient | None = None,
) -> AsyncGenerator[str, None]:
    """Yield SSE data payloads for one turn, always ending with `[DONE]`."""
    try:
        if not settings.gemini_configured:
            raise ConfigurationError("GEMINI_API_KEY missing")

        prompt = build_prompt(message, history)
        logger.debug("Gemini prompt (%s):\n%s", settings.gemini_model, prompt)

        deltas = stream_text(prompt, api_key=settings.gemini_api_key, client=client)
        async with aclosing(deltas):
            async for text in deltas:
                yield TextFrame(text=text).model_dump_json()

    except ConfigurationError as e:
        logger.error("Relay not configured: %s", e)
        yield error_frame(str(e))

    except GeminiError as e:
        logger.error("Gemini error: %s", e)
        yield error_frame(str(e))

    except httpx.HTTPError as e:
        logger.error("Gemini transport error: %s", e)
        yield error_frame(str(e) or type(e).__name__)

    except Exception as e:
        logger.exception("Unexpected error in generate_response")
        yield error_frame(str(e))

    yield DONE_SENTINEL
