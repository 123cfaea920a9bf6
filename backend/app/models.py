"""Pydantic models — the shared contract between relay and client.

These models define the request/response shapes and the SSE frame payload.
The relay and the client reassembler both import from here, so the two legs
of the stream can never disagree on field names.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]

# Terminal payload of every relay stream: `data: [DONE]`
DONE_SENTINEL = "[DONE]"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class HistoryEntry(BaseModel):
    """One prior message echoed back to the relay for context."""
    role: Role
    content: str


class ChatRequest(BaseModel):
    """POST /api/chat request body."""
    message: str
    history: list[HistoryEntry] | None = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    """GET /api/health response."""
    status: Literal["ok", "degraded"]
    version: str = "0.1.0"
    gemini_configured: bool
    gemini_model: str


# ---------------------------------------------------------------------------
# SSE frame data shapes (what goes in the `data` field of each SSE frame)
# ---------------------------------------------------------------------------

class TextFrame(BaseModel):
    """data for a text delta (errors are text frames prefixed with `Error: `)"""
    text: str


# Note: the sentinel is the bare literal [DONE], not a JSON value.


# ---------------------------------------------------------------------------
# Client-side conversation models
# ---------------------------------------------------------------------------

class ChatMessage(BaseModel):
    """A committed message in the client's conversation history."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_history_entry(self) -> HistoryEntry:
        return HistoryEntry(role=self.role, content=self.content)
