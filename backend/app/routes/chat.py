"""Chat endpoint — POST /api/chat → SSE stream."""

from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from sse_starlette.sse import EventSourceResponse
from starlette.responses import Response

from app.models import ChatRequest
from app.relay import error_stream, generate_response
from app.sse_bridge import SSE_LINE_SEPARATOR, stream_sse_events

router = APIRouter()

CHAT_PATH = "/api/chat"

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


def event_stream(payload_source: AsyncGenerator[str, None]) -> EventSourceResponse:
    return EventSourceResponse(
        stream_sse_events(payload_source),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
        sep=SSE_LINE_SEPARATOR,
    )


@router.post(CHAT_PATH)
async def chat(request: ChatRequest) -> EventSourceResponse:
    """Send a message, receive the reply as a stream of `data:` frames.

    Each frame carries `{"text": ...}`; the stream always ends with
    `data: [DONE]` and the status is always 200.
    """
    return event_stream(
        generate_response(
            message=request.message,
            history=request.history,
        )
    )


def describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = first.get("msg", "invalid value")
    return f"Invalid request: {field}: {detail}" if field else f"Invalid request: {detail}"


async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    """Report a bad chat body in-band; other routes keep FastAPI's 422."""
    if request.url.path != CHAT_PATH:
        return await request_validation_exception_handler(request, exc)
    return event_stream(error_stream(describe_validation_error(exc)))
