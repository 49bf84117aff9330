"""
Chat Service for the chat relay.

This module handles the business logic for chat sessions, including:
- Chat lifecycle (create, list, fetch, rename, soft delete)
- Complete and streaming turns against the Gemini client
- Title generation after the first successful turn
- Per-chat locks so turns on one chat never interleave
"""

from __future__ import annotations

import asyncio
import io
import logging
import weakref
from collections.abc import AsyncGenerator, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from chatrelay.exceptions import ChatError, ChatNotFoundError, UnsupportedModelError
from chatrelay.frames import StreamFrame
from chatrelay.history.models import (
    DEFAULT_TITLE,
    Chat,
    ChatStatus,
    ChatSummary,
    Message,
    MessageRole,
)
from chatrelay.llm.exceptions import LLMError, StreamingError
from chatrelay.llm.models import LLMMessage
from chatrelay.logging_utils import log_operation, operation_context

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------- #
# Utility helpers                                                             #
# --------------------------------------------------------------------------- #


class EfficientStringBuilder:
    """
    Accumulates streamed fragments without building intermediate strings.
    """

    def __init__(self):
        self._buffer = io.StringIO()

    def append(self, text: str) -> None:
        """Append text efficiently."""
        self._buffer.write(text)

    def get_value(self) -> str:
        """Get the final string value."""
        return self._buffer.getvalue()


class TurnResult(BaseModel):
    """
    Outcome of one non-streaming turn.
    """
    success: bool
    content: str = ""
    error: str | None = None
    usage: dict[str, int] = Field(default_factory=dict)


def to_llm_messages(messages: Sequence[Message]) -> list[LLMMessage]:
    """Convert stored messages into the provider client's vocabulary."""
    return [LLMMessage(role=m.role.value, content=m.content) for m in messages]


class ChatService:
    """
    Conversation orchestrator
    1. Persists the user's message
    2. Asks the AI to respond with the chat's full history
    3. Relays or returns the answer
    4. Persists the assistant message once it is complete
    """

    class ChatServiceConfig(BaseModel):
        model_config = ConfigDict(arbitrary_types_allowed=True)

        repo: Any  # ChatRepository
        llm_client: Any  # GeminiClient
        config: dict[str, Any] = Field(default_factory=dict)

    def __init__(
        self,
        service_config: ChatService.ChatServiceConfig,
    ):
        self.repo = service_config.repo
        self.llm_client = service_config.llm_client
        self.config = service_config.config

        self.chat_conf = self.config.get("chat", {}).get("service", {})
        self.default_title: str = self.chat_conf.get("default_title", DEFAULT_TITLE)
        self.title_context_messages: int = self.chat_conf.get(
            "title_context_messages", 3
        )

        llm_conf = self.config.get("llm", {})
        provider_conf = llm_conf.get("providers", {}).get(
            llm_conf.get("active", "gemini"), {}
        )
        self.allowed_models: list[str] = [
            self.llm_client.model,
            *provider_conf.get("allowed_models", []),
        ]

        # Per-chat locks to serialize turns. An entry lives only while some
        # turn holds or waits on it.
        self._chat_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # helper - returns the lock object (same instance while any turn uses it)
    def _chat_lock(self, chat_id: str) -> asyncio.Lock:
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._chat_locks[chat_id] = lock
        return lock

    def get_active_chat_locks_count(self) -> int:
        """
        Get the current number of per-chat locks.

        Returns:
            int: Number of chats with a turn running or waiting
        """
        return len(self._chat_locks)

    def _resolve_model(self, model: str | None) -> str:
        if model is None:
            return self.llm_client.model
        if model not in self.allowed_models:
            raise UnsupportedModelError(model)
        return model

    async def _require_chat(self, user_id: str, chat_id: str) -> Chat:
        chat = await self.repo.find_chat(chat_id, user_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    # ------------------------------------------------------------------ #
    # Chat documents                                                     #
    # ------------------------------------------------------------------ #

    async def list_chats(self, user_id: str) -> list[ChatSummary]:
        """Active chats of the user, most recently active first."""
        return await self.repo.find_chats(user_id)

    async def get_chat(self, user_id: str, chat_id: str) -> Chat:
        """
        Raises:
            ChatNotFoundError: If the chat is missing, foreign or deleted.
        """
        return await self._require_chat(user_id, chat_id)

    async def update_title(self, user_id: str, chat_id: str, title: str) -> Chat:
        chat = await self.repo.update_title(chat_id, user_id, title)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    async def delete_chat(self, user_id: str, chat_id: str) -> None:
        """Soft delete; the chat disappears from every other operation."""
        if not await self.repo.set_status(chat_id, user_id, ChatStatus.DELETED):
            raise ChatNotFoundError(chat_id)

    # ------------------------------------------------------------------ #
    # Complete turns                                                     #
    # ------------------------------------------------------------------ #

    @log_operation("create_chat")
    async def create_chat(
        self, user_id: str, message: str, model: str | None = None
    ) -> tuple[Chat, TurnResult]:
        """
        Create a chat from its first message and answer it.

        The chat is stored before the provider is called, so it exists even
        when generation fails. On success the assistant reply is appended
        and the chat gets a generated title.

        Raises:
            UnsupportedModelError: If ``model`` is not in ``allowed_models``.
        """
        chat = Chat(
            user_id=user_id,
            title=self.default_title,
            model=self._resolve_model(model),
            messages=[Message(role=MessageRole.USER, content=message)],
        )
        chat = await self.repo.create_chat(chat)

        async with self._chat_lock(chat.id):
            result = await self.llm_client.generate(
                to_llm_messages(chat.messages), chat.model
            )
            if not result.success:
                logger.warning(
                    f"First turn of chat {chat.id[:8]}... failed: {result.error}"
                )
                return chat, TurnResult(success=False, error=result.error)

            await self.repo.append_message(
                chat.id,
                Message(role=MessageRole.ASSISTANT, content=result.content),
            )
            chat = await self._require_chat(user_id, chat.id)

            title = await self.llm_client.generate_title(
                to_llm_messages(chat.messages),
                chat.model,
                context_messages=self.title_context_messages,
                fallback=self.default_title,
            )
            updated = await self.repo.update_title(chat.id, user_id, title)
            if updated is None:
                raise ChatNotFoundError(chat.id)

        return updated, TurnResult(
            success=True, content=result.content, usage=result.usage.to_dict()
        )

    @log_operation("send_message")
    async def send_message(
        self, user_id: str, chat_id: str, message: str
    ) -> TurnResult:
        """
        Append a user message and answer it with one complete response.

        A provider failure leaves the user message persisted and no
        assistant message.

        Raises:
            ChatNotFoundError: If the chat is missing, foreign or deleted.
        """
        # No lock for a chat the caller cannot see
        await self._require_chat(user_id, chat_id)

        async with self._chat_lock(chat_id):
            # history as of lock acquisition
            chat = await self._require_chat(user_id, chat_id)
            user_msg = await self.repo.append_message(
                chat_id, Message(role=MessageRole.USER, content=message)
            )

            result = await self.llm_client.generate(
                to_llm_messages([*chat.messages, user_msg]), chat.model
            )
            if not result.success:
                return TurnResult(success=False, error=result.error)

            await self.repo.append_message(
                chat_id,
                Message(role=MessageRole.ASSISTANT, content=result.content),
            )

        return TurnResult(
            success=True, content=result.content, usage=result.usage.to_dict()
        )

    @log_operation("public_chat")
    async def public_chat(self, message: str) -> TurnResult:
        """Single stateless turn; nothing is persisted."""
        result = await self.llm_client.generate(
            [LLMMessage(role="user", content=message)]
        )
        if not result.success:
            return TurnResult(success=False, error=result.error)
        return TurnResult(
            success=True, content=result.content, usage=result.usage.to_dict()
        )

    # ------------------------------------------------------------------ #
    # Streaming turns                                                    #
    # ------------------------------------------------------------------ #

    async def open_stream(
        self, user_id: str, chat_id: str, message: str
    ) -> AsyncGenerator[StreamFrame]:
        """
        Start a streaming turn.

        Ownership is checked here, before any frame exists, so a missing
        chat surfaces as ChatNotFoundError rather than as a stream.
        The returned generator yields chunk frames followed by exactly one
        terminal frame.
        """
        await self._require_chat(user_id, chat_id)
        return self._relay(user_id, chat_id, message)

    async def _relay(
        self, user_id: str, chat_id: str, message: str
    ) -> AsyncGenerator[StreamFrame]:
        """
        Streaming turn, serialized per chat.

        Cancellation (client disconnect) propagates out of the generator
        without another frame and without persisting partial output.
        """
        async with (
            self._chat_lock(chat_id),
            operation_context("stream_turn", context={"chat_id": chat_id}) as op_log,
        ):
            builder = EfficientStringBuilder()
            fragments = 0
            try:
                chat = await self._require_chat(user_id, chat_id)
                user_msg = await self.repo.append_message(
                    chat_id, Message(role=MessageRole.USER, content=message)
                )

                async for fragment in self.llm_client.stream(
                    to_llm_messages([*chat.messages, user_msg]), chat.model
                ):
                    if not fragment:
                        continue
                    builder.append(fragment)
                    fragments += 1
                    yield StreamFrame.chunk_frame(fragment)

                content = builder.get_value()
                if not content:
                    raise StreamingError(
                        "Empty response from provider",
                        provider="gemini",
                        model=chat.model or "unknown",
                    )

                await self.repo.append_message(
                    chat_id, Message(role=MessageRole.ASSISTANT, content=content)
                )

            except LLMError as e:
                op_log.warning("Provider stream failed", error_message=str(e))
                yield StreamFrame.failure(str(e))
                return
            except ChatError as e:
                op_log.warning("Chat unavailable during stream", error_message=str(e))
                yield StreamFrame.failure(str(e))
                return
            except Exception as e:
                op_log.error(
                    "Stream turn failed",
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                yield StreamFrame.failure("Failed to generate response")
                return

            op_log.info("Stream relayed", fragments=fragments, chars=len(content))
            yield StreamFrame.completed()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    async def close(self) -> None:
        """
        Close the LLM client and the repository.
        """
        # Close LLM HTTP client to prevent dangling connections
        try:
            await self.llm_client.close()
            logger.info("LLM client closed successfully")
        except Exception as e:
            logger.warning(f"Error closing LLM client: {e}")

        # Close repository connection to prevent dangling database connections
        try:
            await self.repo.close()
            logger.info("Repository connection closed successfully")
        except Exception as e:
            logger.warning(f"Error closing repository: {e}")
