"""
Core LLM dataclasses shared by the provider client and the chat service.

This module provides:
- Provider-neutral message structure
- Generation parameters
- Token usage with explicit zero defaults
- Result records for complete and streaming generations
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class LLMMessage:
    """One conversation turn in the application's own role vocabulary."""
    role: Role
    content: str


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling parameters sent with every generation request."""
    temperature: float = 0.7
    max_output_tokens: int = 2048
    top_p: float = 0.8
    top_k: int = 40

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> GenerationConfig:
        return cls(
            temperature=config["temperature"],
            max_output_tokens=config["max_tokens"],
            top_p=config["top_p"],
            top_k=config["top_k"],
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
            "topP": self.top_p,
            "topK": self.top_k,
        }


@dataclass(frozen=True)
class TokenUsage:
    """Token usage statistics; fields the provider omits stay at zero."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_usage_metadata(cls, metadata: dict[str, Any] | None) -> TokenUsage:
        """Build usage from a Gemini ``usageMetadata`` block."""
        if not metadata:
            return cls()
        return cls(
            prompt_tokens=metadata.get("promptTokenCount", 0),
            completion_tokens=metadata.get("candidatesTokenCount", 0),
            total_tokens=metadata.get("totalTokenCount", 0),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one complete (non-incremental) generation."""
    success: bool
    content: str = ""
    error: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class StreamResult:
    """Outcome of a streaming generation driven through a callback."""
    success: bool
    error: str | None = None
