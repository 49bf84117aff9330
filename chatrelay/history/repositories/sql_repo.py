# chatrelay/history/repositories/sql_repo.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import aiosqlite

from chatrelay.exceptions import ChatNotFoundError
from chatrelay.history.models import (
    Chat,
    ChatStatus,
    ChatSummary,
    Message,
    MessageRole,
    utcnow,
)
from chatrelay.history.repositories.base import ChatRepository

logger = logging.getLogger(__name__)


def _ts(value: datetime) -> str:
    # Fixed-width ISO strings so ORDER BY on the text column is chronological
    return value.isoformat(timespec="microseconds")


class AsyncSqlChatRepo(ChatRepository):
    """
    SQL implementation of ChatRepository.
    Uses SQLite for simplicity; swap aiosqlite with asyncpg or other drivers
    when moving to another database.

    Messages are rows keyed by (chat_id, seq), so appending never rewrites
    the rest of the chat and concurrent appends cannot drop each other.
    """

    def __init__(self, db_path: str = "chats.db"):
        self.db_path = db_path
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._connection_lock = asyncio.Lock()  # Serialize database access
        self._connection: aiosqlite.Connection | None = None

    async def _initialize(self) -> None:
        """
        Lazily create tables and indices on first use.
        """
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return

            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row

            # Configure SQLite for better concurrency
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute("PRAGMA foreign_keys=ON")
            # 30 second timeout
            await self._connection.execute("PRAGMA busy_timeout=30000")

            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS chats (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    model TEXT,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    last_message_at TEXT NOT NULL
                )
            """)
            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS chat_messages (
                    chat_id TEXT NOT NULL REFERENCES chats(id),
                    seq INTEGER NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    PRIMARY KEY (chat_id, seq)
                )
            """)
            await self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_chats_owner
                ON chats(user_id, status, last_message_at)
            """)
            await self._connection.commit()

            logger.info(f"Chat store ready at {self.db_path}")
            self._initialized = True

    async def close(self) -> None:
        """
        Close the persistent database connection.
        """
        if self._connection:
            await self._connection.close()
            self._connection = None
            self._initialized = False

    async def __aenter__(self) -> AsyncSqlChatRepo:
        """Async context manager entry."""
        await self._initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[aiosqlite.Connection]:
        """
        Serialized write transaction; takes SQLite's write lock up front so
        the sequence number read inside it cannot go stale.
        """
        await self._initialize()
        if not self._connection:
            raise RuntimeError("Database connection not available")

        async with self._connection_lock:
            await self._connection.execute("BEGIN IMMEDIATE")
            try:
                yield self._connection
            except BaseException:
                await self._connection.rollback()
                raise
            await self._connection.commit()

    async def _read_connection(self) -> aiosqlite.Connection:
        await self._initialize()
        if not self._connection:
            raise RuntimeError("Database connection not available")
        return self._connection

    async def create_chat(self, chat: Chat) -> Chat:
        messages: list[Message] = []
        previous: datetime | None = None
        for message in chat.messages:
            if previous is not None and message.timestamp < previous:
                message = message.model_copy(update={"timestamp": previous})
            messages.append(message)
            previous = message.timestamp
        stored = chat.model_copy(update={"messages": messages})

        async with self._transaction() as conn:
            await conn.execute("""
                INSERT INTO chats (
                    id, user_id, title, model, status,
                    created_at, updated_at, last_message_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                stored.id,
                stored.user_id,
                stored.title,
                stored.model,
                stored.status.value,
                _ts(stored.created_at),
                _ts(stored.updated_at),
                _ts(stored.last_message_at),
            ))
            await conn.executemany("""
                INSERT INTO chat_messages (chat_id, seq, role, content, timestamp)
                VALUES (?, ?, ?, ?, ?)
            """, [
                (stored.id, seq, m.role.value, m.content, _ts(m.timestamp))
                for seq, m in enumerate(messages, start=1)
            ])

        return stored

    async def find_chats(
        self, user_id: str, status: ChatStatus = ChatStatus.ACTIVE
    ) -> list[ChatSummary]:
        conn = await self._read_connection()

        async with self._connection_lock:
            cursor = await conn.execute("""
                SELECT id, title, last_message_at, created_at FROM chats
                WHERE user_id = ? AND status = ?
                ORDER BY last_message_at DESC
            """, (user_id, status.value))
            rows = await cursor.fetchall()
            await cursor.close()

        return [
            ChatSummary(
                id=row["id"],
                title=row["title"],
                last_message_at=datetime.fromisoformat(row["last_message_at"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    async def find_chat(
        self,
        chat_id: str,
        user_id: str,
        status: ChatStatus = ChatStatus.ACTIVE,
    ) -> Chat | None:
        conn = await self._read_connection()

        async with self._connection_lock:
            cursor = await conn.execute(
                "SELECT * FROM chats WHERE id = ? AND user_id = ? AND status = ?",
                (chat_id, user_id, status.value),
            )
            chat_row = await cursor.fetchone()
            await cursor.close()
            if chat_row is None:
                return None

            cursor = await conn.execute(
                "SELECT role, content, timestamp FROM chat_messages "
                "WHERE chat_id = ? ORDER BY seq",
                (chat_id,),
            )
            message_rows = await cursor.fetchall()
            await cursor.close()

        return self._row_to_chat(chat_row, message_rows)

    async def append_message(self, chat_id: str, message: Message) -> Message:
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "SELECT status FROM chats WHERE id = ?", (chat_id,)
            )
            chat_row = await cursor.fetchone()
            await cursor.close()
            if chat_row is None or chat_row["status"] != ChatStatus.ACTIVE.value:
                raise ChatNotFoundError(chat_id)

            cursor = await conn.execute("""
                SELECT seq, timestamp FROM chat_messages
                WHERE chat_id = ? ORDER BY seq DESC LIMIT 1
            """, (chat_id,))
            last = await cursor.fetchone()
            await cursor.close()

            next_seq = 1
            if last is not None:
                next_seq = last["seq"] + 1
                previous = datetime.fromisoformat(last["timestamp"])
                if message.timestamp < previous:
                    message = message.model_copy(update={"timestamp": previous})

            await conn.execute("""
                INSERT INTO chat_messages (chat_id, seq, role, content, timestamp)
                VALUES (?, ?, ?, ?, ?)
            """, (
                chat_id,
                next_seq,
                message.role.value,
                message.content,
                _ts(message.timestamp),
            ))
            await conn.execute(
                "UPDATE chats SET last_message_at = ?, updated_at = ? WHERE id = ?",
                (_ts(message.timestamp), _ts(utcnow()), chat_id),
            )

        return message

    async def update_title(
        self, chat_id: str, user_id: str, title: str
    ) -> Chat | None:
        async with self._transaction() as conn:
            cursor = await conn.execute("""
                UPDATE chats SET title = ?, updated_at = ?
                WHERE id = ? AND user_id = ? AND status = ?
            """, (title, _ts(utcnow()), chat_id, user_id, ChatStatus.ACTIVE.value))
            updated = cursor.rowcount
            await cursor.close()

        if not updated:
            return None
        return await self.find_chat(chat_id, user_id)

    async def set_status(
        self, chat_id: str, user_id: str, status: ChatStatus
    ) -> bool:
        async with self._transaction() as conn:
            cursor = await conn.execute("""
                UPDATE chats SET status = ?, updated_at = ?
                WHERE id = ? AND user_id = ? AND status = ?
            """, (
                status.value,
                _ts(utcnow()),
                chat_id,
                user_id,
                ChatStatus.ACTIVE.value,
            ))
            updated = cursor.rowcount
            await cursor.close()

        if updated:
            logger.info(f"Chat {chat_id[:8]}... moved to {status.value}")
        return bool(updated)

    def _row_to_chat(self, chat_row: Any, message_rows: list[Any]) -> Chat:
        """
        Convert a chat row and its message rows into a Chat instance.
        """
        return Chat(
            id=chat_row["id"],
            user_id=chat_row["user_id"],
            title=chat_row["title"],
            model=chat_row["model"],
            status=ChatStatus(chat_row["status"]),
            created_at=datetime.fromisoformat(chat_row["created_at"]),
            updated_at=datetime.fromisoformat(chat_row["updated_at"]),
            messages=[
                Message(
                    role=MessageRole(row["role"]),
                    content=row["content"],
                    timestamp=datetime.fromisoformat(row["timestamp"]),
                )
                for row in message_rows
            ],
        )
