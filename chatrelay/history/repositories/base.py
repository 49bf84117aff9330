# chatrelay/history/repositories/base.py
from __future__ import annotations

from typing import Protocol

from chatrelay.history.models import Chat, ChatStatus, ChatSummary, Message


class ChatRepository(Protocol):
    """
    Interface for storing and retrieving chats and their messages.

    Every write is a single transaction; no operation spans chats.
    """

    async def create_chat(self, chat: Chat) -> Chat:
        """
        Store a new chat together with any messages it already holds.
        """
        ...

    async def find_chats(
        self, user_id: str, status: ChatStatus = ChatStatus.ACTIVE
    ) -> list[ChatSummary]:
        """
        Return summaries of the user's chats in the given status, most
        recently active first.
        """
        ...

    async def find_chat(
        self,
        chat_id: str,
        user_id: str,
        status: ChatStatus = ChatStatus.ACTIVE,
    ) -> Chat | None:
        """
        Return the chat with its messages in append order, or None if it
        does not exist, belongs to someone else, or is in another status.
        """
        ...

    async def append_message(self, chat_id: str, message: Message) -> Message:
        """
        Append a message to an active chat and return it as stored.

        Raises ChatNotFoundError if the chat is missing or not active.
        """
        ...

    async def update_title(
        self, chat_id: str, user_id: str, title: str
    ) -> Chat | None:
        """
        Rename an active chat; returns the updated chat or None.
        """
        ...

    async def set_status(
        self, chat_id: str, user_id: str, status: ChatStatus
    ) -> bool:
        """
        Move an active chat to ``status``. Returns False if no active chat
        matched.
        """
        ...

    async def close(self) -> None:
        """
        Release any held connections.
        """
        ...
