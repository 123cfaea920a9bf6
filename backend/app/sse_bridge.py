"""SSE bridge — translates relay payload strings to ServerSentEvent objects.

This module sits between the relay layer and the HTTP response.
Frames are unnamed (`data:` lines only) and use bare `\\n` line endings, so
each one goes out as `data: <payload>\\n\\n`.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sse_starlette.sse import ServerSentEvent

SSE_LINE_SEPARATOR = "\n"


async def stream_sse_events(
    payload_source: AsyncGenerator[str, None],
) -> AsyncGenerator[ServerSentEvent, None]:
    """Wrap each payload in a ServerSentEvent.

    Args:
        payload_source: Async generator from relay.generate_response()
            yielding JSON text frames and the final `[DONE]` sentinel.

    Yields:
        ServerSentEvent objects ready for EventSourceResponse.
    """
    async for payload in payload_source:
        yield ServerSentEvent(data=payload, sep=SSE_LINE_SEPARATOR)
