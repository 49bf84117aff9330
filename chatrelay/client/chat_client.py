"""
Async Python client for the chat relay API.

Mirrors what a browser front end does: every call talks to the server
and then updates an explicit ``ChatState`` so a UI can render from it.
``stream_message`` consumes the SSE relay incrementally, exposing the
partial reply in ``state.live_buffer`` while it arrives.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing, asynccontextmanager
from typing import Any

import httpx
from pydantic import ValidationError

from chatrelay.frames import StreamFrame
from chatrelay.history.models import Chat, ChatSummary, Message, MessageRole
from chatrelay.llm.streaming import RawSSEChunk, SSEEventType, StreamingParser

from .state import ChatState

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_BAD_REQUEST = 400

ChunkCallback = Callable[[str], Awaitable[None] | None]


class ChatClientError(Exception):
    """A request to the chat API failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StreamFailedError(ChatClientError):
    """A stream ended with an error frame, broke off, or never completed."""
    pass


class ChatClient:
    """HTTP client for ``/api/chat`` that keeps a ChatState current."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        state: ChatState | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.state = state if state is not None else ChatState()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    # ------------------------------------------------------------------ #
    # Plumbing                                                           #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _error_from(response: httpx.Response) -> ChatClientError:
        """Build a ChatClientError from the server's error body."""
        message = f"Request failed with status {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            if body.get("error"):
                message = str(body["error"])
                if body.get("detail"):
                    message = f"{message}: {body['detail']}"
            elif body.get("errors"):
                message = "; ".join(
                    str(err.get("message", err)) if isinstance(err, dict) else str(err)
                    for err in body["errors"]
                )
        return ChatClientError(message, status_code=response.status_code)

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise ChatClientError(f"Request failed: {e}") from e

        if response.status_code >= HTTP_BAD_REQUEST:
            raise self._error_from(response)
        return response.json()

    @asynccontextmanager
    async def _loading(self) -> AsyncIterator[None]:
        self.state.is_loading = True
        try:
            yield
        finally:
            self.state.is_loading = False

    def _append_to_current(self, chat_id: str, message: Message) -> None:
        current = self.state.current_chat
        if current is None or current.id != chat_id:
            return
        self.state.current_chat = current.model_copy(
            update={"messages": [*current.messages, message]}
        )

    # ------------------------------------------------------------------ #
    # Chat documents                                                     #
    # ------------------------------------------------------------------ #

    async def fetch_chats(self) -> list[ChatSummary]:
        async with self._loading():
            data = await self._request("GET", "/api/chat")
        self.state.chats = [ChatSummary.model_validate(c) for c in data["chats"]]
        return self.state.chats

    async def fetch_chat(self, chat_id: str) -> Chat:
        async with self._loading():
            data = await self._request("GET", f"/api/chat/{chat_id}")
        chat = Chat.model_validate(data["chat"])
        self.state.current_chat = chat
        return chat

    async def create_chat(self, message: str, model: str | None = None) -> Chat:
        """
        Start a chat with its first message; the new chat becomes current
        and is put at the top of the list.
        """
        payload: dict[str, Any] = {"message": message}
        if model:
            payload["model"] = model

        async with self._loading():
            data = await self._request("POST", "/api/chat", json=payload)

        chat = Chat.model_validate(data["chat"])
        summary = ChatSummary(
            id=chat.id,
            title=chat.title,
            last_message_at=chat.last_message_at,
            created_at=chat.created_at,
        )
        self.state.chats = [summary, *self.state.chats]
        self.state.current_chat = chat
        return chat

    async def send_message(self, chat_id: str, message: str) -> dict[str, Any]:
        """Non-streaming turn; both messages land in the current chat."""
        data = await self._request(
            "POST", f"/api/chat/{chat_id}/messages", json={"message": message}
        )
        self._append_to_current(
            chat_id, Message(role=MessageRole.USER, content=message)
        )
        self._append_to_current(
            chat_id, Message(role=MessageRole.ASSISTANT, content=data["message"])
        )
        return data

    async def update_chat_title(self, chat_id: str, title: str) -> dict[str, Any]:
        data = await self._request(
            "PUT", f"/api/chat/{chat_id}/title", json={"title": title}
        )
        self.state.chats = [
            chat.model_copy(update={"title": title}) if chat.id == chat_id else chat
            for chat in self.state.chats
        ]
        current = self.state.current_chat
        if current is not None and current.id == chat_id:
            self.state.current_chat = current.model_copy(update={"title": title})
        return data

    async def delete_chat(self, chat_id: str) -> None:
        await self._request("DELETE", f"/api/chat/{chat_id}")
        self.state.chats = [c for c in self.state.chats if c.id != chat_id]
        current = self.state.current_chat
        if current is not None and current.id == chat_id:
            self.state.current_chat = None

    async def public_chat(self, message: str) -> dict[str, Any]:
        async with self._loading():
            return await self._request(
                "POST", "/api/chat/public/chat", json={"message": message}
            )

    def set_current_chat(self, chat: Chat | None) -> None:
        self.state.current_chat = chat

    def clear_current_chat(self) -> None:
        self.state.current_chat = None

    # ------------------------------------------------------------------ #
    # Streaming                                                          #
    # ------------------------------------------------------------------ #

    def _frame_from(self, raw_chunk: RawSSEChunk) -> StreamFrame | None:
        """Decode one parsed SSE event; anything unusable is skipped."""
        if raw_chunk.event_type == SSEEventType.ERROR:
            raise StreamFailedError(raw_chunk.error or "Stream interrupted")

        if raw_chunk.event_type == SSEEventType.MALFORMED:
            logger.warning(f"Skipping malformed frame: {raw_chunk.error}")
            return None

        if raw_chunk.event_type != SSEEventType.CHUNK or raw_chunk.data is None:
            return None

        try:
            return StreamFrame.from_data(raw_chunk.data)
        except ValidationError as e:
            logger.warning(f"Skipping malformed frame: {e}")
            return None

    async def stream_message(
        self,
        chat_id: str,
        message: str,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        """
        Send a message and consume the streamed reply.

        The user message is added to the current chat once the server
        accepts the request. Each chunk grows ``state.live_buffer`` and is
        passed to ``on_chunk``; the completion frame commits the buffer as
        the assistant message.

        Returns:
            The complete assistant reply.

        Raises:
            ChatClientError: If the server refuses the request.
            StreamFailedError: On an error frame, a broken connection, or a
                stream that ends without completing. Nothing is committed.
        """
        self.state.is_streaming = True
        self.state.live_buffer = ""

        parser = StreamingParser(enable_recovery=True)
        try:
            async with self.client.stream(
                "POST",
                f"/api/chat/{chat_id}/stream",
                json={"message": message},
            ) as response:
                if response.status_code != HTTP_OK:
                    await response.aread()
                    raise self._error_from(response)

                self._append_to_current(
                    chat_id, Message(role=MessageRole.USER, content=message)
                )

                async with aclosing(parser.parse_sse_stream(response)) as events:
                    async for raw_chunk in events:
                        frame = self._frame_from(raw_chunk)
                        if frame is None:
                            continue

                        if frame.error is not None:
                            raise StreamFailedError(frame.error)

                        if frame.chunk:
                            self.state.live_buffer += frame.chunk
                            if on_chunk is not None:
                                result = on_chunk(frame.chunk)
                                if inspect.isawaitable(result):
                                    await result

                        if frame.is_terminal:
                            content = self.state.live_buffer
                            self._append_to_current(
                                chat_id,
                                Message(role=MessageRole.ASSISTANT, content=content),
                            )
                            return content

        except httpx.HTTPError as e:
            raise StreamFailedError(f"Stream interrupted: {e}") from e
        finally:
            self.state.live_buffer = ""
            self.state.is_streaming = False

        raise StreamFailedError("Stream ended before completion")

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
