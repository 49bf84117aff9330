#!/usr/bin/env python3
"""
Tests for the Gemini REST client using httpx.MockTransport.
"""

import json

import httpx
import pytest

from chatrelay.llm.client import GeminiClient
from chatrelay.llm.exceptions import LLMError, ProviderError, StreamingError
from chatrelay.llm.models import LLMMessage

CONFIG = {
    "base_url": "https://generativelanguage.googleapis.com/v1beta",
    "model": "gemini-1.5-flash",
    "temperature": 0.7,
    "max_tokens": 2048,
    "top_p": 0.8,
    "top_k": 40,
    "title_max_length": 50,
}

HISTORY = [
    LLMMessage(role="user", content="Hello"),
    LLMMessage(role="assistant", content="Hi there"),
    LLMMessage(role="user", content="Explain SSE"),
]


def text_response(text, usage=None):
    body = {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    if usage:
        body["usageMetadata"] = usage
    return body


def sse_body(*payloads):
    return "".join(f"data: {json.dumps(p)}\r\n\r\n" for p in payloads).encode()


def make_client(handler, api_key="test-key"):
    return GeminiClient(CONFIG, api_key, transport=httpx.MockTransport(handler))


class TestConfiguration:
    """Constructor validation."""

    def test_missing_parameter_raises(self):
        config = {k: v for k, v in CONFIG.items() if k != "top_k"}
        with pytest.raises(ValueError, match="top_k"):
            GeminiClient(config, "key")


class TestGenerate:
    """Complete generation."""

    @pytest.mark.asyncio
    async def test_request_shape_and_usage(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=text_response(
                "SSE streams events.",
                {"promptTokenCount": 12, "candidatesTokenCount": 4, "totalTokenCount": 16},
            ))

        async with make_client(handler) as client:
            result = await client.generate(HISTORY)

        assert result.success
        assert result.content == "SSE streams events."
        assert result.usage.total_tokens == 16
        assert result.usage.prompt_tokens == 12
        assert seen["path"] == "/v1beta/models/gemini-1.5-flash:generateContent"
        assert seen["key"] == "test-key"
        assert [c["role"] for c in seen["body"]["contents"]] == ["user", "model", "user"]
        assert seen["body"]["generationConfig"] == {
            "temperature": 0.7,
            "maxOutputTokens": 2048,
            "topP": 0.8,
            "topK": 40,
        }

    @pytest.mark.asyncio
    async def test_missing_usage_defaults_to_zero(self):
        def handler(request):
            return httpx.Response(200, json=text_response("ok"))

        async with make_client(handler) as client:
            result = await client.generate(HISTORY)

        assert result.usage.to_dict() == {
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
        }

    @pytest.mark.asyncio
    async def test_missing_api_key_is_a_failure_result(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with make_client(handler, api_key=None) as client:
            result = await client.generate(HISTORY)

        assert not result.success
        assert result.error == "API key not configured"

    @pytest.mark.asyncio
    async def test_http_error_is_a_failure_result(self):
        def handler(request):
            return httpx.Response(
                429, json={"error": {"code": 429, "message": "Quota exceeded"}}
            )

        async with make_client(handler) as client:
            result = await client.generate(HISTORY)

        assert not result.success
        assert "429" in result.error
        assert "Quota exceeded" in result.error

    @pytest.mark.asyncio
    async def test_blocked_prompt_is_a_failure_result(self):
        def handler(request):
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

        async with make_client(handler) as client:
            result = await client.generate(HISTORY)

        assert not result.success
        assert "SAFETY" in result.error

    @pytest.mark.asyncio
    async def test_connection_failure_is_a_failure_result(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            result = await client.generate(HISTORY)

        assert not result.success
        assert "connection refused" in result.error


class TestStream:
    """Streaming generation."""

    @pytest.mark.asyncio
    async def test_fragments_in_order(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["alt"] = request.url.params.get("alt")
            return httpx.Response(200, content=sse_body(
                text_response("Sure, "),
                text_response(""),
                text_response("X is ...", {"totalTokenCount": 9}),
            ))

        async with make_client(handler) as client:
            fragments = [f async for f in client.stream(HISTORY)]

        assert fragments == ["Sure, ", "X is ..."]
        assert seen["path"] == "/v1beta/models/gemini-1.5-flash:streamGenerateContent"
        assert seen["alt"] == "sse"

    @pytest.mark.asyncio
    async def test_model_override(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            return httpx.Response(200, content=sse_body(text_response("ok")))

        async with make_client(handler) as client:
            fragments = [f async for f in client.stream(HISTORY, "gemini-pro")]

        assert fragments == ["ok"]
        assert seen["path"] == "/v1beta/models/gemini-pro:streamGenerateContent"

    @pytest.mark.asyncio
    async def test_http_error_raises_provider_error(self):
        def handler(request):
            return httpx.Response(403, json={"error": {"message": "API key invalid"}})

        async with make_client(handler) as client:
            with pytest.raises(ProviderError, match="API key invalid") as exc_info:
                async for _ in client.stream(HISTORY):
                    pass

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_error_payload_mid_stream_raises(self):
        def handler(request):
            return httpx.Response(200, content=sse_body(
                text_response("partial"),
                {"error": {"code": 500, "message": "Internal error"}},
            ))

        received = []
        async with make_client(handler) as client:
            with pytest.raises(StreamingError, match="Internal error"):
                async for fragment in client.stream(HISTORY):
                    received.append(fragment)

        assert received == ["partial"]

    @pytest.mark.asyncio
    async def test_missing_api_key_raises(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with make_client(handler, api_key=None) as client:
            with pytest.raises(LLMError, match="API key not configured"):
                async for _ in client.stream(HISTORY):
                    pass

    @pytest.mark.asyncio
    async def test_generate_streaming_reports_result(self):
        def handler(request):
            return httpx.Response(200, content=sse_body(
                text_response("a"), text_response("b"),
            ))

        collected = []

        async def on_fragment(fragment):
            collected.append(fragment)

        async with make_client(handler) as client:
            result = await client.generate_streaming(HISTORY, on_fragment)

        assert result.success
        assert collected == ["a", "b"]

    @pytest.mark.asyncio
    async def test_generate_streaming_failure(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        async with make_client(handler) as client:
            result = await client.generate_streaming(HISTORY, lambda f: None)

        assert not result.success
        assert "500" in result.error


class TestGenerateTitle:
    """Title summarization."""

    @pytest.mark.asyncio
    async def test_title_uses_first_three_messages(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=text_response("  SSE basics \n"))

        messages = [*HISTORY, LLMMessage(role="assistant", content="LATE MESSAGE")]
        async with make_client(handler) as client:
            title = await client.generate_title(messages)

        assert title == "SSE basics"
        prompt = seen["body"]["contents"][0]["parts"][0]["text"]
        assert "user: Hello" in prompt
        assert "assistant: Hi there" in prompt
        assert "LATE MESSAGE" not in prompt

    @pytest.mark.asyncio
    async def test_long_title_is_truncated(self):
        def handler(request):
            return httpx.Response(200, json=text_response("x" * 80))

        async with make_client(handler) as client:
            title = await client.generate_title(HISTORY)

        assert len(title) == 50
        assert title == "x" * 47 + "..."

    @pytest.mark.asyncio
    async def test_failure_falls_back(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        async with make_client(handler) as client:
            title = await client.generate_title(HISTORY)

        assert title == "New Chat"
