"""
Error handling for LLM provider operations.

Every provider failure (network, quota, blocked prompt, malformed
response) is raised as one of these, carrying enough context to log it
and to turn it into a user-visible error description.
"""

from __future__ import annotations


class LLMError(Exception):
    """Base LLM error with rich context."""

    def __init__(
        self,
        message: str,
        provider: str,
        model: str,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.response_data = response_data or {}


class StreamingError(LLMError):
    """Streaming-specific errors."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        model: str = "unknown",
        **kwargs,
    ):
        super().__init__(message, provider, model, **kwargs)


class ProviderError(LLMError):
    """Provider-specific configuration or response errors."""
    pass
