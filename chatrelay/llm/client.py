"""
Gemini REST client with complete and streaming generation.

Talks to the Generative Language API directly over httpx rather than
through an SDK, which keeps timeouts, streaming and error mapping under
our control.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from typing import Any

import httpx

from .exceptions import LLMError, ProviderError, StreamingError
from .models import (
    GenerationConfig,
    GenerationResult,
    LLMMessage,
    StreamResult,
    TokenUsage,
)
from .streaming.parser import ChunkAccumulator, StreamingParser, extract_candidate_text

logger = logging.getLogger(__name__)

HTTP_OK = 200
DEFAULT_TITLE = "New Chat"
TITLE_PROMPT = (
    "Generate a short, descriptive title (max {max_length} characters) for "
    "this conversation based on the first few messages. Return only the "
    "title, nothing else:\n\n{transcript}"
)

FragmentCallback = Callable[[str], Awaitable[None] | None]


class GeminiClient:
    """HTTP client for the Gemini generateContent endpoints."""

    PROVIDER = "gemini"

    # Gemini calls the assistant side of a conversation "model"
    ROLE_MAP = {"user": "user", "assistant": "model"}

    def __init__(
        self,
        config: dict[str, Any],
        api_key: str | None,
        http_config: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        required_keys = ["base_url", "model", "temperature", "max_tokens", "top_p", "top_k"]
        for key in required_keys:
            if key not in config:
                raise ValueError(
                    f"Required LLM configuration parameter '{key}' not found. "
                    "All LLM parameters must be explicitly configured."
                )

        self.config: dict[str, Any] = config
        self.api_key: str | None = api_key
        self.model: str = config["model"]
        self.generation_config = GenerationConfig.from_config(config)
        self.title_max_length: int = config.get("title_max_length", 50)

        http_config = http_config or {}
        timeout = httpx.Timeout(
            connect=http_config.get("connect_timeout", 10.0),
            read=http_config.get("read_timeout", 60.0),
            write=http_config.get("write_timeout", 10.0),
            pool=http_config.get("pool_timeout", 10.0),
        )
        headers = {"x-goog-api-key": api_key} if api_key else {}
        self.client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=config["base_url"],
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def _build_payload(self, messages: Sequence[LLMMessage]) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "role": self.ROLE_MAP[message.role],
                    "parts": [{"text": message.content}],
                }
                for message in messages
            ],
            "generationConfig": self.generation_config.to_payload(),
        }

    def _error_message(self, response: httpx.Response) -> str:
        """Pull the provider's own error description out of a failed response."""
        try:
            body = response.json()
            message = body.get("error", {}).get("message")
            if message:
                return f"Gemini API error {response.status_code}: {message}"
        except (ValueError, AttributeError):
            pass
        return f"Gemini API error {response.status_code}: {response.text[:200]}"

    async def generate(
        self,
        messages: Sequence[LLMMessage],
        model: str | None = None,
    ) -> GenerationResult:
        """
        Request one complete response for the conversation.

        Never raises for provider problems: failures come back as a result
        with ``success=False`` and a description in ``error``.
        """
        if not self.api_key:
            logger.error("GEMINI_API_KEY is not set in environment variables")
            return GenerationResult(success=False, error="API key not configured")

        model = model or self.model
        try:
            data = await self._post_generate(messages, model)
            text = self._response_text(data, model)
        except LLMError as e:
            logger.error(f"Gemini API error ({model}): {e}")
            return GenerationResult(success=False, error=str(e))

        usage = TokenUsage.from_usage_metadata(data.get("usageMetadata"))
        logger.info(
            f"Gemini response received ({model}): {len(text)} chars, "
            f"{usage.total_tokens} tokens"
        )
        return GenerationResult(success=True, content=text, usage=usage)

    async def _post_generate(
        self, messages: Sequence[LLMMessage], model: str
    ) -> dict[str, Any]:
        try:
            response = await self.client.post(
                f"/models/{model}:generateContent",
                json=self._build_payload(messages),
            )
        except httpx.HTTPError as e:
            raise ProviderError(
                f"HTTP error: {e!s}", provider=self.PROVIDER, model=model
            ) from e

        if response.status_code != HTTP_OK:
            raise ProviderError(
                self._error_message(response),
                provider=self.PROVIDER,
                model=model,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Unexpected response format: {e!s}",
                provider=self.PROVIDER,
                model=model,
            ) from e
        if not isinstance(data, dict):
            raise ProviderError(
                "Unexpected response format: expected a JSON object",
                provider=self.PROVIDER,
                model=model,
            )
        return data

    def _response_text(self, data: dict[str, Any], model: str) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            reason = "No candidates returned"
            if block_reason:
                reason = f"Prompt blocked by provider: {block_reason}"
            raise ProviderError(
                reason, provider=self.PROVIDER, model=model, response_data=data
            )

        text = extract_candidate_text(candidates[0])
        if not text:
            finish_reason = candidates[0].get("finishReason", "unknown")
            raise ProviderError(
                f"Empty response from provider (finish reason: {finish_reason})",
                provider=self.PROVIDER,
                model=model,
                response_data=data,
            )
        return text

    async def stream(
        self,
        messages: Sequence[LLMMessage],
        model: str | None = None,
    ) -> AsyncGenerator[str]:
        """
        Yield non-empty text fragments in the order Gemini produces them.

        Raises:
            LLMError: On missing credentials, HTTP failures, provider error
                payloads or a broken stream.
        """
        model = model or self.model
        if not self.api_key:
            raise ProviderError(
                "API key not configured", provider=self.PROVIDER, model=model
            )

        parser = StreamingParser(enable_recovery=True)
        accumulator = ChunkAccumulator(self.PROVIDER, model)

        try:
            async with self.client.stream(
                "POST",
                f"/models/{model}:streamGenerateContent",
                params={"alt": "sse"},
                json=self._build_payload(messages),
            ) as response:
                if response.status_code != HTTP_OK:
                    await response.aread()
                    raise ProviderError(
                        self._error_message(response),
                        provider=self.PROVIDER,
                        model=model,
                        status_code=response.status_code,
                    )

                async for raw_chunk in parser.parse_sse_stream(response):
                    fragment = accumulator.process_chunk(raw_chunk)
                    if fragment:
                        yield fragment

        except httpx.HTTPError as e:
            raise StreamingError(
                f"HTTP error during streaming: {e!s}",
                provider=self.PROVIDER,
                model=model,
            ) from e

        state = accumulator.state
        logger.info(
            f"Gemini stream finished ({model}): {state.chunk_count} chunks, "
            f"{len(state.content_buffer)} chars, "
            f"finish_reason={state.finish_reason}, "
            f"{state.usage.total_tokens} tokens, "
            f"{state.streaming_duration:.2f}s"
        )

    async def generate_streaming(
        self,
        messages: Sequence[LLMMessage],
        on_fragment: FragmentCallback,
        model: str | None = None,
    ) -> StreamResult:
        """Drive ``stream`` through a callback and report success or failure."""
        try:
            async for fragment in self.stream(messages, model):
                result = on_fragment(fragment)
                if inspect.isawaitable(result):
                    await result
        except LLMError as e:
            logger.error(f"Gemini stream error: {e}")
            return StreamResult(success=False, error=str(e))
        return StreamResult(success=True)

    async def generate_title(
        self,
        messages: Sequence[LLMMessage],
        model: str | None = None,
        context_messages: int = 3,
        fallback: str = DEFAULT_TITLE,
    ) -> str:
        """Summarize the opening of a conversation into a short title."""
        transcript = "\n".join(
            f"{message.role}: {message.content}"
            for message in messages[:context_messages]
        )
        prompt = TITLE_PROMPT.format(
            max_length=self.title_max_length, transcript=transcript
        )

        result = await self.generate([LLMMessage(role="user", content=prompt)], model)
        if not result.success:
            logger.warning(f"Title generation failed: {result.error}")
            return fallback

        title = result.content.strip()
        if not title:
            return fallback
        if len(title) > self.title_max_length:
            return title[: self.title_max_length - 3] + "..."
        return title

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
