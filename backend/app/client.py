"""Client reassembler — sends a turn to the relay and rebuilds the reply.

`ChatClient.send()` posts the user's message, reads the relay's SSE body and
appends every text delta to a live streaming buffer. When `[DONE]` arrives
the buffer is frozen into an assistant `ChatMessage`.

All conversation state lives in one `ConversationState` value:

    IDLE ──begin_turn──▶ SENDING ──start_streaming──▶ STREAMING
      ▲                                                   │
      ├───────────── finalize / abort ◀───────────────────┤
      └──── settle ◀── ERROR ◀──────── fail ◀─────────────┘

Only one turn can be in flight; `send()` is a no-op while busy.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

import httpx

from app.models import DONE_SENTINEL, ChatMessage, HistoryEntry

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DEFAULT_HISTORY_WINDOW = 10


class RelayError(Exception):
    """The relay could not be reached or answered with a non-200 status."""


class InvalidTransition(RuntimeError):
    """A ConversationState transition was applied in the wrong status."""


# ---------------------------------------------------------------------------
# Frame parsing
# ---------------------------------------------------------------------------


class RelayFrameParser:
    """Splits relay SSE text into `data:` payloads.

    Chunks may end mid-line; the unterminated tail is kept until the next
    `feed()` so a frame is never parsed half-received.
    """

    def __init__(self) -> None:
        self._residual = ""

    def feed(self, chunk: str) -> list[str]:
        self._residual += chunk
        *lines, self._residual = self._residual.split("\n")
        return self._payloads(lines)

    def flush(self) -> list[str]:
        tail, self._residual = self._residual, ""
        return self._payloads([tail])

    @staticmethod
    def _payloads(lines: list[str]) -> list[str]:
        payloads = []
        for line in lines:
            line = line.rstrip("\r")
            if line.strip() and line.startswith(DATA_PREFIX):
                payloads.append(line[len(DATA_PREFIX):])
        return payloads


# ---------------------------------------------------------------------------
# Conversation state
# ---------------------------------------------------------------------------


class ConversationStatus(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    ERROR = "error"


@dataclass
class ConversationState:
    messages: list[ChatMessage] = field(default_factory=list)
    streaming_content: str = ""
    status: ConversationStatus = ConversationStatus.IDLE
    connected: bool = True

    @property
    def is_busy(self) -> bool:
        return self.status in (ConversationStatus.SENDING, ConversationStatus.STREAMING)

    def history_window(self, size: int = DEFAULT_HISTORY_WINDOW) -> list[HistoryEntry]:
        """The last `size` committed messages, oldest first."""
        if size <= 0:
            return []
        return [msg.to_history_entry() for msg in self.messages[-size:]]

    def begin_turn(self, text: str) -> ChatMessage | None:
        """Commit the user's message and enter SENDING.

        Returns None (and changes nothing) for blank input or while busy.
        """
        content = text.strip()
        if not content or self.is_busy:
            return None
        user_message = ChatMessage(role="user", content=content)
        self.messages.append(user_message)
        self.streaming_content = ""
        self.connected = True
        self.status = ConversationStatus.SENDING
        return user_message

    def start_streaming(self) -> None:
        self._expect(ConversationStatus.SENDING)
        self.status = ConversationStatus.STREAMING

    def append_delta(self, text: str) -> None:
        self._expect(ConversationStatus.STREAMING)
        if text:
            self.streaming_content += text

    def finalize(self) -> ChatMessage:
        """Freeze the streaming buffer into an assistant message."""
        self._expect(ConversationStatus.STREAMING)
        reply = ChatMessage(role="assistant", content=self.streaming_content)
        self.messages.append(reply)
        self.streaming_content = ""
        self.status = ConversationStatus.IDLE
        return reply

    def fail(self, error: str) -> ChatMessage:
        """Record a failed turn as a visible assistant message."""
        self.connected = False
        error_message = ChatMessage(role="assistant", content=f"Error: {error}")
        self.messages.append(error_message)
        self.streaming_content = ""
        self.status = ConversationStatus.ERROR
        return error_message

    def settle(self) -> None:
        """Leave ERROR once the failure has been shown."""
        if self.status is ConversationStatus.ERROR:
            self.status = ConversationStatus.IDLE

    def abort(self) -> None:
        """Drop the in-progress reply without touching history."""
        self.streaming_content = ""
        self.status = ConversationStatus.IDLE

    def clear(self) -> None:
        self.messages.clear()
        self.streaming_content = ""
        self.status = ConversationStatus.IDLE

    def _expect(self, status: ConversationStatus) -> None:
        if self.status is not status:
            raise InvalidTransition(f"expected {status.value}, was {self.status.value}")


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationSignal:
    """Abort handle for one turn. Firing it stops the read loop at its next await."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ChatClient:
    """Streams chat turns from the relay into a ConversationState.

    Args:
        base_url: Relay root, e.g. "http://localhost:8000".
        http_client: Optional httpx.AsyncClient (tests pass one with a
            custom transport). Closed by `aclose()` only if created here.
        history_window: How many prior messages to send with each turn.
        on_update: Called with the state after every visible change.
    """

    def __init__(
        self,
        base_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        on_update: Callable[[ConversationState], None] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.history_window = history_window
        self.state = ConversationState()
        self._on_update = on_update
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        self._signal: CancellationSignal | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.cancel()
        if self._owns_http:
            await self._http.aclose()

    def cancel(self) -> None:
        """Abort the in-flight turn, if any."""
        if self._signal is not None:
            self._signal.cancel()

    async def clear(self) -> None:
        """Abort any in-flight turn, then drop the whole conversation."""
        self.cancel()
        await self._idle.wait()
        self.state.clear()
        self._notify()

    async def send(
        self, text: str, signal: CancellationSignal | None = None
    ) -> ChatMessage | None:
        """Run one turn. Returns the assistant reply, or None if nothing was committed."""
        if self.state.is_busy:
            return None
        history = self.state.history_window(self.history_window)
        user_message = self.state.begin_turn(text)
        if user_message is None:
            return None

        self._signal = signal or CancellationSignal()
        self._idle.clear()
        self._notify()
        try:
            return await self._run_turn(user_message.content, history, self._signal)
        finally:
            self._signal = None
            self._idle.set()

    async def _run_turn(
        self,
        message: str,
        history: Sequence[HistoryEntry],
        signal: CancellationSignal,
    ) -> ChatMessage | None:
        reader = asyncio.create_task(self._read_stream(message, history))
        waiter = asyncio.create_task(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {reader, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
            self.state.abort()
            self._notify()
            raise
        finally:
            waiter.cancel()

        if reader not in done:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
            logger.info("Request aborted")
            self.state.abort()
            self._notify()
            return None

        try:
            return reader.result()
        except Exception as e:
            logger.warning("Stream error: %s", e)
            self.state.fail(str(e) or type(e).__name__)
            self._notify()
            self.state.settle()
            return None

    async def _read_stream(
        self, message: str, history: Sequence[HistoryEntry]
    ) -> ChatMessage:
        body = {
            "message": message,
            "history": [entry.model_dump() for entry in history],
        }
        parser = RelayFrameParser()
        async with self._http.stream("POST", f"{self.base_url}/api/chat", json=body) as response:
            if response.status_code != 200:
                raise RelayError(f"HTTP error! status: {response.status_code}")

            self.state.start_streaming()
            self._notify()

            async for chunk in response.aiter_text():
                for payload in parser.feed(chunk):
                    reply = self._handle_payload(payload)
                    if reply is not None:
                        return reply
            for payload in parser.flush():
                reply = self._handle_payload(payload)
                if reply is not None:
                    return reply

        logger.warning("Relay stream ended without %s", DONE_SENTINEL)
        reply = self.state.finalize()
        self._notify()
        return reply

    def _handle_payload(self, payload: str) -> ChatMessage | None:
        if payload == DONE_SENTINEL:
            reply = self.state.finalize()
            self._notify()
            return reply

        try:
            frame = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Parse error on relay frame: %r", payload)
            return None

        text = frame.get("text") if isinstance(frame, dict) else None
        if isinstance(text, str) and text:
            self.state.append_delta(text)
            self._notify()
        return None

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update(self.state)
