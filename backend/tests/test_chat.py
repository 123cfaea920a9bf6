"""Tests for chat endpoint — SSE streaming with a mocked Gemini API."""

from __future__ import annotations

import json

from tests.conftest import parse_data_frames


class TestChatEndpoint:
    async def test_chat_returns_sse_stream(self, client, fake_gemini):
        resp = await client.post("/api/chat", json={"message": "Hello"})

        assert resp.status_code == 200
        assert "text/event-stream" in resp.headers.get("content-type", "")
        assert resp.headers["cache-control"] == "no-cache, no-transform"
        assert resp.headers["connection"] == "keep-alive"

    async def test_chat_frames_use_bare_newlines(self, client, fake_gemini):
        fake_gemini.respond_with("Hello", " there")
        resp = await client.post("/api/chat", json={"message": "Hi"})

        assert resp.text == (
            'data: {"text":"Hello"}\n\n'
            'data: {"text":" there"}\n\n'
            "data: [DONE]\n\n"
        )

    async def test_chat_text_reconstructs_message(self, client, fake_gemini):
        fake_gemini.respond_with("Str", "eam", "ing ", "works", chunk_size=9)
        resp = await client.post("/api/chat", json={"message": "Hello"})

        frames = parse_data_frames(resp.text)
        assert frames[-1] == "[DONE]"
        full_text = "".join(json.loads(f)["text"] for f in frames[:-1])
        assert full_text == "Streaming works"

    async def test_chat_done_exactly_once(self, client, fake_gemini):
        resp = await client.post("/api/chat", json={"message": "Hello"})

        frames = parse_data_frames(resp.text)
        assert frames.count("[DONE]") == 1
        assert frames[-1] == "[DONE]"

    async def test_chat_history_is_flattened_into_prompt(self, client, fake_gemini):
        await client.post(
            "/api/chat",
            json={
                "message": "And now?",
                "history": [
                    {"role": "user", "content": "Hi"},
                    {"role": "assistant", "content": "Hello!"},
                ],
            },
        )

        prompt = fake_gemini.last_body["contents"][0]["parts"][0]["text"]
        assert prompt == (
            "Previous conversation:\nUser: Hi\nAssistant: Hello!\n"
            "\nUser: And now?\nAssistant:"
        )

    async def test_chat_empty_message_is_relayed(self, client, fake_gemini):
        fake_gemini.respond_with("Did you mean to say something?")
        resp = await client.post("/api/chat", json={"message": ""})

        assert resp.status_code == 200
        assert parse_data_frames(resp.text)[-1] == "[DONE]"
        prompt = fake_gemini.last_body["contents"][0]["parts"][0]["text"]
        assert prompt == "\nUser: \nAssistant:"


class TestChatBadRequestBody:
    """A body the relay cannot read still gets a 200 stream with an in-band error."""

    async def test_unparseable_json(self, client, fake_gemini):
        resp = await client.post(
            "/api/chat",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert resp.status_code == 200
        assert "text/event-stream" in resp.headers.get("content-type", "")
        frames = parse_data_frames(resp.text)
        assert len(frames) == 2
        assert json.loads(frames[0])["text"].startswith("Error: Invalid request")
        assert frames[1] == "[DONE]"
        assert fake_gemini.requests == []

    async def test_missing_message_field(self, client, fake_gemini):
        resp = await client.post("/api/chat", json={"history": []})

        assert resp.status_code == 200
        frames = parse_data_frames(resp.text)
        assert json.loads(frames[0])["text"].startswith("Error: Invalid request: message")
        assert frames[1:] == ["[DONE]"]
        assert fake_gemini.requests == []

    async def test_bad_history_role(self, client, fake_gemini):
        resp = await client.post(
            "/api/chat",
            json={"message": "Hi", "history": [{"role": "system", "content": "x"}]},
        )

        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-cache, no-transform"
        frames = parse_data_frames(resp.text)
        assert json.loads(frames[0])["text"].startswith("Error: Invalid request: history.0.role")
        assert frames[1:] == ["[DONE]"]

    async def test_chat_error_when_no_api_key(self, client, no_gemini_key):
        resp = await client.post("/api/chat", json={"message": "Hello"})

        assert resp.status_code == 200
        assert resp.text == (
            'data: {"text":"Error: GEMINI_API_KEY missing"}\n\n'
            "data: [DONE]\n\n"
        )

    async def test_chat_upstream_error_stays_200(self, client, fake_gemini):
        fake_gemini.fail_with_status(403, "API key not valid")
        resp = await client.post("/api/chat", json={"message": "Hello"})

        assert resp.status_code == 200
        frames = parse_data_frames(resp.text)
        assert json.loads(frames[0])["text"] == "Error: Gemini API error: 403 - API key not valid"
        assert frames[1:] == ["[DONE]"]
