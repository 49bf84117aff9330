"""
Domain errors raised by the chat service and its collaborators.

Provider errors live in ``chatrelay.llm.exceptions``; these cover the chat
documents themselves and the caller's identity.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base error for chat operations."""

    def __init__(self, message: str, chat_id: str | None = None):
        super().__init__(message)
        self.chat_id = chat_id


class ChatNotFoundError(ChatError):
    """Chat is absent, owned by someone else, or soft-deleted."""

    def __init__(self, chat_id: str | None = None):
        super().__init__("Chat not found", chat_id)


class UnsupportedModelError(ChatError):
    """Requested model is not one the server is configured to use."""

    def __init__(self, model: str):
        super().__init__(f"Model not supported: {model}")
        self.model = model


class AuthenticationError(Exception):
    """Bearer token missing or not valid."""
    pass
