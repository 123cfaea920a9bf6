"""Prompt construction — flattens a chat turn into a single text prompt.

Gemini is called with one plain-text part, not a structured multi-turn
payload, so prior messages are rendered as `Role: content` lines.
"""

from __future__ import annotations

from collections.abc import Sequence

from app.models import HistoryEntry

_ROLE_LABELS = {"user": "User", "assistant": "Assistant"}


def build_prompt(message: str, history: Sequence[HistoryEntry] | None = None) -> str:
    """Render history plus the new user turn, ending on an `Assistant:` cue.

    >>> build_prompt("Hi")
    '\\nUser: Hi\\nAssistant:'
    """
    prompt = ""
    if history:
        prompt += "Previous conversation:\n"
        for entry in history:
            prompt += f"{_ROLE_LABELS[entry.role]}: {entry.content}\n"
    prompt += f"\nUser: {message}\nAssistant:"
    return prompt
