"""
Chat persistence: domain models and repository implementations.
"""

from .models import Chat, ChatStatus, ChatSummary, Message, MessageRole
from .repositories.base import ChatRepository
from .repositories.sql_repo import AsyncSqlChatRepo

__all__ = [
    "AsyncSqlChatRepo",
    "Chat",
    "ChatRepository",
    "ChatStatus",
    "ChatSummary",
    "Message",
    "MessageRole",
]
