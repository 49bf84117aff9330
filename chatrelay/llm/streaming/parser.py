"""
Line-buffered SSE parser with error recovery, plus Gemini chunk accumulation.

The parser is shared by both ends of the relay: the Gemini client reads the
provider's ``alt=sse`` stream with it, and the Python chat client reads the
relay's own ``data: {...}`` frames with it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from ..exceptions import StreamingError
from ..models import TokenUsage
from .models import AccumulatorState, RawSSEChunk, SSEEventType

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
HEARTBEAT_PAYLOADS = ("", "ping", "heartbeat")


class StreamingParser:
    """SSE parser that tolerates lines split across transport reads."""

    def __init__(self, enable_recovery: bool = True):
        self.enable_recovery = enable_recovery
        self._buffer = ""
        self.stats = {
            'total_chunks': 0,
            'malformed_chunks': 0,
            'error_chunks': 0,
        }

    def feed(self, text: str) -> list[RawSSEChunk]:
        """
        Add decoded text and return every event whose line is now complete.

        Text after the last newline stays buffered until a later call (or
        ``flush``) completes it, so a frame split at any offset is parsed
        exactly once.
        """
        self._buffer += text
        chunks: list[RawSSEChunk] = []

        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            chunk = self._parse_line(line)
            if chunk:
                chunks.append(chunk)

        return chunks

    def flush(self) -> list[RawSSEChunk]:
        """Parse whatever is left once the body has ended."""
        remainder, self._buffer = self._buffer, ""
        if not remainder.strip():
            return []
        chunk = self._parse_line(remainder)
        return [chunk] if chunk else []

    async def parse_sse_stream(
        self,
        response: httpx.Response,
    ) -> AsyncGenerator[RawSSEChunk]:
        """
        Parse an SSE response body incrementally.

        Transport failures are reported as a final ERROR chunk instead of
        being raised, so callers decide whether a broken stream is fatal.
        """
        try:
            async for text in response.aiter_text():
                for chunk in self.feed(text):
                    yield chunk

            for chunk in self.flush():
                yield chunk

        except (httpx.StreamError, httpx.TransportError) as e:
            self.stats['error_chunks'] += 1
            yield RawSSEChunk(
                event_type=SSEEventType.ERROR,
                data=None,
                raw_data="",
                error=f"Stream error: {e}"
            )

        except TimeoutError as e:
            self.stats['error_chunks'] += 1
            yield RawSSEChunk(
                event_type=SSEEventType.ERROR,
                data=None,
                raw_data="",
                error=f"Stream timeout: {e}"
            )

    def _parse_line(self, raw_line: str) -> RawSSEChunk | None:
        """Parse one complete SSE line; blank lines and other fields yield None."""
        line = raw_line.rstrip("\r")

        if not line:
            return None  # event boundary

        if line.startswith(":"):
            return RawSSEChunk(
                event_type=SSEEventType.HEARTBEAT,
                data=None,
                raw_data=line,
            )

        if not line.startswith(DATA_PREFIX):
            return None  # event:, id:, retry: carry nothing we use

        data_content = line[len(DATA_PREFIX):]
        if data_content.startswith(" "):
            data_content = data_content[1:]

        if data_content.strip() in HEARTBEAT_PAYLOADS:
            return RawSSEChunk(
                event_type=SSEEventType.HEARTBEAT,
                data=None,
                raw_data=data_content,
            )

        try:
            parsed_data = json.loads(data_content)
            if not isinstance(parsed_data, dict):
                raise ValueError(
                    f"expected a JSON object, got {type(parsed_data).__name__}"
                )
        except ValueError as e:  # JSONDecodeError is a ValueError
            self.stats['malformed_chunks'] += 1
            if not self.enable_recovery:
                raise StreamingError(f"SSE parse error: {e}") from e
            return RawSSEChunk(
                event_type=SSEEventType.MALFORMED,
                data=None,
                raw_data=data_content,
                error=f"JSON decode error: {e}",
            )

        self.stats['total_chunks'] += 1
        return RawSSEChunk(
            event_type=SSEEventType.CHUNK,
            data=parsed_data,
            raw_data=data_content,
        )

    def get_stats(self) -> dict[str, int]:
        """Get streaming statistics for monitoring."""
        return self.stats.copy()


class ChunkAccumulator:
    """
    Turns Gemini ``GenerateContentResponse`` chunks into text fragments.

    Tracks the accumulated text, the latest usage metadata and the finish
    reason so the caller can log a summary once the stream ends.
    """

    def __init__(self, provider: str = "gemini", model: str = "unknown"):
        self.provider = provider
        self.model = model
        self.state = AccumulatorState()

    def process_chunk(self, raw_chunk: RawSSEChunk) -> str | None:
        """
        Return the text fragment carried by ``raw_chunk``, if any.

        Raises:
            StreamingError: For transport errors, provider error payloads,
                and blocked prompts.
        """
        self.state.update_timing(raw_chunk.timestamp)

        if raw_chunk.event_type == SSEEventType.ERROR:
            raise StreamingError(
                raw_chunk.error or "Stream error",
                provider=self.provider,
                model=self.model,
            )

        if raw_chunk.event_type == SSEEventType.MALFORMED:
            logger.warning(f"Skipping malformed stream chunk: {raw_chunk.error}")
            return None

        if raw_chunk.event_type == SSEEventType.HEARTBEAT or not raw_chunk.data:
            return None

        data = raw_chunk.data

        if error := data.get("error"):
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise StreamingError(
                message or "Provider returned an error",
                provider=self.provider,
                model=self.model,
                response_data=data,
            )

        if usage := data.get("usageMetadata"):
            self.state.usage = TokenUsage.from_usage_metadata(usage)

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise StreamingError(
                    f"Prompt blocked by provider: {block_reason}",
                    provider=self.provider,
                    model=self.model,
                    response_data=data,
                )
            return None

        candidate = candidates[0]
        if finish_reason := candidate.get("finishReason"):
            self.state.finish_reason = finish_reason

        text = extract_candidate_text(candidate)
        if not text:
            return None

        self.state.content_buffer += text
        return text

    def reset(self) -> None:
        """Reset accumulator state for new stream."""
        self.state = AccumulatorState()


def extract_candidate_text(candidate: dict[str, Any]) -> str:
    """Concatenate the text parts of one Gemini candidate."""
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))
