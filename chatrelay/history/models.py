# chatrelay/history/models.py
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

DEFAULT_TITLE = "New Chat"


def utcnow() -> datetime:
    return datetime.now(UTC)


class MessageRole(Enum):
    """Who authored a message."""
    USER = "user"
    ASSISTANT = "assistant"


class ChatStatus(Enum):
    """Lifecycle state of a chat; deletion is soft."""
    ACTIVE = "active"
    DELETED = "deleted"


class Message(BaseModel):
    """
    One turn in a chat. Immutable once appended; its position in the
    chat's message list is its order.
    """
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class Chat(BaseModel):
    """
    A persisted conversation owned by exactly one user.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    title: str = DEFAULT_TITLE
    model: str | None = None
    status: ChatStatus = ChatStatus.ACTIVE
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def last_message_at(self) -> datetime:
        """Timestamp of the most recent message, or creation time if empty."""
        if self.messages:
            return self.messages[-1].timestamp
        return self.created_at

    def to_public_dict(self) -> dict:
        """JSON-ready representation returned by the HTTP API."""
        return self.model_dump(mode="json")


class ChatSummary(BaseModel):
    """Listing entry for a chat, without its messages."""
    id: str
    title: str
    last_message_at: datetime
    created_at: datetime
