"""
LLM integration for the chat relay.

This package provides:
- A Gemini REST client with complete and streaming generation
- Provider-neutral message, usage and result dataclasses
- Line-buffered SSE parsing shared with the chat client
- Provider error types
"""

from __future__ import annotations

from .client import GeminiClient
from .exceptions import LLMError, ProviderError, StreamingError
from .models import (
    GenerationConfig,
    GenerationResult,
    LLMMessage,
    StreamResult,
    TokenUsage,
)

__all__ = [
    # Client
    "GeminiClient",
    # Models
    "GenerationConfig",
    "GenerationResult",
    # Exceptions
    "LLMError",
    "LLMMessage",
    "ProviderError",
    "StreamResult",
    "StreamingError",
    "TokenUsage",
]
