"""
Local chat state held by a ChatClient.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from chatrelay.history.models import Chat, ChatSummary


@dataclass
class ChatState:
    """
    What a UI renders: the chat list, the open chat, loading flags, and
    the text of an assistant reply that is still streaming in.
    """
    chats: list[ChatSummary] = field(default_factory=list)
    current_chat: Chat | None = None
    is_loading: bool = False
    is_streaming: bool = False
    live_buffer: str = ""
