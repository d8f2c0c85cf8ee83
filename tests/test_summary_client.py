"""Tests for SummaryClient and prompt building."""
from __future__ import annotations

import json

import httpx
import pytest

from callscribe.models import Segment, SessionInfo
from callscribe.summary.client import SummaryClient, build_prompt, extract_message_content

T0 = 1_700_000_000_000


# ── Helpers ──────────────────────────────────────────────────


def _configure(settings, model: str = "") -> None:
    settings.LLM_BASE_URL = "http://llm.test/v1/"
    settings.LLM_API_KEY = "llm-key"
    settings.LLM_MODEL = model


def _completion(content) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class _Server:
    """Minimal OpenAI-compatible server."""

    def __init__(self, content="Key Points:\n- shipped", models=None, fail_chat: bool = False) -> None:
        self.content = content
        self.models = models if models is not None else [{"id": "local-model"}]
        self.fail_chat = fail_chat
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/models"):
            return httpx.Response(200, json={"data": self.models})
        if self.fail_chat:
            return httpx.Response(502, text="upstream down")
        return _completion(self.content)

    def chat_payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith("/chat/completions")]


# ── Tests ────────────────────────────────────────────────────


class TestSummarize:
    @pytest.mark.asyncio
    async def test_discovers_and_caches_model(self, settings) -> None:
        _configure(settings)
        server = _Server()
        client = SummaryClient(settings=settings, transport=httpx.MockTransport(server))

        first = await client.summarize("alice: hello")
        second = await client.summarize("bob: hi")

        assert first.status == "summarized"
        assert first.summary == "Key Points:\n- shipped"
        assert second.status == "summarized"
        paths = [r.url.path for r in server.requests]
        assert paths == ["/v1/models", "/v1/chat/completions", "/v1/chat/completions"]
        payload = server.chat_payloads()[0]
        assert payload["model"] == "local-model"
        assert payload["max_tokens"] == settings.SUMMARY_MAX_TOKENS
        assert server.requests[0].headers["Authorization"] == "Bearer llm-key"

    @pytest.mark.asyncio
    async def test_configured_model_skips_discovery(self, settings) -> None:
        _configure(settings, model="pinned")
        server = _Server()
        client = SummaryClient(settings=settings, transport=httpx.MockTransport(server))
        outcome = await client.summarize("alice: hello")
        assert outcome.status == "summarized"
        assert [r.url.path for r in server.requests] == ["/v1/chat/completions"]
        assert server.chat_payloads()[0]["model"] == "pinned"

    @pytest.mark.asyncio
    async def test_list_content_joined(self, settings) -> None:
        _configure(settings)
        server = _Server(content=[{"type": "text", "text": "part one"}, {"type": "text", "text": "part two"}])
        client = SummaryClient(settings=settings, transport=httpx.MockTransport(server))
        outcome = await client.summarize("alice: hello")
        assert outcome.summary == "part one\npart two"

    @pytest.mark.asyncio
    async def test_not_configured_skipped(self, settings) -> None:
        client = SummaryClient(settings=settings, transport=httpx.MockTransport(_Server()))
        outcome = await client.summarize("alice: hello")
        assert outcome.status == "skipped"

    @pytest.mark.asyncio
    async def test_empty_transcript_skipped(self, settings) -> None:
        _configure(settings)
        server = _Server()
        client = SummaryClient(settings=settings, transport=httpx.MockTransport(server))
        outcome = await client.summarize("   ")
        assert outcome.status == "skipped"
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_failure_clears_cached_model(self, settings) -> None:
        _configure(settings)
        server = _Server(fail_chat=True)
        client = SummaryClient(settings=settings, transport=httpx.MockTransport(server))

        outcome = await client.summarize("alice: hello")
        assert outcome.status == "failed"
        assert "502" in outcome.reason

        server.fail_chat = False
        outcome = await client.summarize("alice: hello")
        assert outcome.status == "summarized"
        assert [r.url.path for r in server.requests].count("/v1/models") == 2

    @pytest.mark.asyncio
    async def test_no_models_failed(self, settings) -> None:
        _configure(settings)
        client = SummaryClient(settings=settings, transport=httpx.MockTransport(_Server(models=[])))
        outcome = await client.summarize("alice: hello")
        assert outcome.status == "failed"

    @pytest.mark.asyncio
    async def test_blank_summary_failed(self, settings) -> None:
        _configure(settings)
        client = SummaryClient(settings=settings, transport=httpx.MockTransport(_Server(content="  ")))
        outcome = await client.summarize("alice: hello")
        assert outcome.status == "failed"


class TestPrompt:
    def test_sections(self) -> None:
        info = SessionInfo(
            context_id="g1",
            context_name="Guild",
            channel_name="General",
            started_at=T0,
            participants={"1": "Alice", "2": ""},
        )
        segments = [Segment("1", "Alice", T0, "x" * 20), Segment("2", "2", T0 + 5, "")]
        prompt = build_prompt("Alice: hi", info, segments, max_excerpts=5, excerpt_chars=10)

        assert "Server: Guild" in prompt
        assert "Channel: General" in prompt
        assert "Participants: Alice, 2" in prompt
        assert "Started At: 2023-11-14T22:13:20.000Z" in prompt
        assert "Recent speaking turns:\n- Alice: xxxxxxxxxx\n" in prompt
        assert prompt.endswith("Full transcript:\nAlice: hi")

    def test_transcript_only(self) -> None:
        assert build_prompt("a: b", None, None) == "Full transcript:\na: b"

    def test_excerpt_limit(self) -> None:
        segments = [Segment("1", "A", T0 + i, f"t{i}") for i in range(20)]
        prompt = build_prompt("t", None, segments, max_excerpts=3)
        assert prompt.count("\n- A: ") == 3
        assert "- A: t3" not in prompt

    def test_extract_message_content(self) -> None:
        assert extract_message_content({"content": " hi "}) == "hi"
        assert extract_message_content({"content": ["a", {"value": "b"}]}) == "a\nb"
        assert extract_message_content(None) == ""
