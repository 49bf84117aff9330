#!/usr/bin/env python3
"""
Tests for the SQLite chat repository.
"""

import asyncio
import os
import tempfile
from datetime import UTC, datetime, timedelta

import pytest

from chatrelay.exceptions import ChatNotFoundError
from chatrelay.history.models import Chat, ChatStatus, Message, MessageRole
from chatrelay.history.repositories.sql_repo import AsyncSqlChatRepo

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


def user_message(content, at):
    return Message(role=MessageRole.USER, content=content, timestamp=at)


class TestChatDocuments:
    """Create, read, rename and soft delete."""

    @pytest.mark.asyncio
    async def test_create_and_find_round_trip(self):
        async with AsyncSqlChatRepo(":memory:") as repo:
            chat = await repo.create_chat(
                Chat(user_id="alice", messages=[user_message("Hello", T0)])
            )

            found = await repo.find_chat(chat.id, "alice")

            assert found == chat
            assert found.last_message_at == T0

    @pytest.mark.asyncio
    async def test_reads_are_idempotent(self):
        """Two reads with no write in between return identical messages."""
        async with AsyncSqlChatRepo(":memory:") as repo:
            chat = await repo.create_chat(Chat(user_id="alice"))
            await repo.append_message(chat.id, user_message("one", T0))
            await repo.append_message(chat.id, user_message("two", T0))

            first = await repo.find_chat(chat.id, "alice")
            second = await repo.find_chat(chat.id, "alice")

            assert first.messages == second.messages
            assert [m.content for m in first.messages] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_other_users_cannot_see_chat(self):
        async with AsyncSqlChatRepo(":memory:") as repo:
            chat = await repo.create_chat(Chat(user_id="alice"))

            assert await repo.find_chat(chat.id, "bob") is None
            assert await repo.find_chats("bob") == []
            assert await repo.update_title(chat.id, "bob", "Mine now") is None
            assert not await repo.set_status(chat.id, "bob", ChatStatus.DELETED)

    @pytest.mark.asyncio
    async def test_soft_delete_hides_chat_everywhere(self):
        async with AsyncSqlChatRepo(":memory:") as repo:
            chat = await repo.create_chat(Chat(user_id="alice"))

            assert await repo.set_status(chat.id, "alice", ChatStatus.DELETED)

            assert await repo.find_chat(chat.id, "alice") is None
            assert await repo.find_chats("alice") == []
            assert await repo.update_title(chat.id, "alice", "New") is None
            assert not await repo.set_status(chat.id, "alice", ChatStatus.DELETED)
            with pytest.raises(ChatNotFoundError):
                await repo.append_message(chat.id, user_message("hi", T0))

            deleted = await repo.find_chat(chat.id, "alice", ChatStatus.DELETED)
            assert deleted.status == ChatStatus.DELETED

    @pytest.mark.asyncio
    async def test_update_title(self):
        async with AsyncSqlChatRepo(":memory:") as repo:
            chat = await repo.create_chat(Chat(user_id="alice"))

            updated = await repo.update_title(chat.id, "alice", "Trip planning")

            assert updated.title == "Trip planning"
            assert updated.updated_at >= chat.updated_at

    @pytest.mark.asyncio
    async def test_listing_is_most_recent_first(self):
        async with AsyncSqlChatRepo(":memory:") as repo:
            older = await repo.create_chat(
                Chat(user_id="alice", title="A", messages=[user_message("a", T0)])
            )
            newer = await repo.create_chat(
                Chat(
                    user_id="alice",
                    title="B",
                    messages=[user_message("b", T0 + timedelta(minutes=1))],
                )
            )
            assert [c.id for c in await repo.find_chats("alice")] == [
                newer.id, older.id,
            ]

            await repo.append_message(
                older.id, user_message("again", T0 + timedelta(minutes=2))
            )

            summaries = await repo.find_chats("alice")
            assert [c.id for c in summaries] == [older.id, newer.id]
            assert summaries[0].last_message_at == T0 + timedelta(minutes=2)


class TestMessageOrdering:
    """Append order and timestamps."""

    @pytest.mark.asyncio
    async def test_timestamps_never_decrease(self):
        """An earlier timestamp is raised to the previous message's."""
        async with AsyncSqlChatRepo(":memory:") as repo:
            chat = await repo.create_chat(
                Chat(user_id="alice", messages=[user_message("first", T0)])
            )

            stored = await repo.append_message(
                chat.id, user_message("second", T0 - timedelta(seconds=5))
            )

            assert stored.timestamp == T0
            found = await repo.find_chat(chat.id, "alice")
            stamps = [m.timestamp for m in found.messages]
            assert stamps == sorted(stamps)

    @pytest.mark.asyncio
    async def test_create_clamps_out_of_order_messages(self):
        async with AsyncSqlChatRepo(":memory:") as repo:
            chat = await repo.create_chat(
                Chat(
                    user_id="alice",
                    messages=[
                        user_message("first", T0),
                        user_message("second", T0 - timedelta(minutes=1)),
                    ],
                )
            )

            assert [m.timestamp for m in chat.messages] == [T0, T0]

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_all_kept(self):
        async with AsyncSqlChatRepo(":memory:") as repo:
            chat = await repo.create_chat(Chat(user_id="alice"))

            await asyncio.gather(*(
                repo.append_message(chat.id, user_message(f"m{i}", T0))
                for i in range(10)
            ))

            found = await repo.find_chat(chat.id, "alice")
            assert sorted(m.content for m in found.messages) == sorted(
                f"m{i}" for i in range(10)
            )

    @pytest.mark.asyncio
    async def test_append_to_unknown_chat_raises(self):
        async with AsyncSqlChatRepo(":memory:") as repo:
            with pytest.raises(ChatNotFoundError):
                await repo.append_message("missing", user_message("hi", T0))


class TestPersistence:
    """Data survives reconnecting to a file database."""

    @pytest.mark.asyncio
    async def test_reopen_file_database(self):
        with tempfile.TemporaryDirectory() as tmp:
            db_path = os.path.join(tmp, "chats.db")

            async with AsyncSqlChatRepo(db_path) as repo:
                chat = await repo.create_chat(
                    Chat(user_id="alice", messages=[user_message("Hello", T0)])
                )

            async with AsyncSqlChatRepo(db_path) as repo:
                found = await repo.find_chat(chat.id, "alice")

            assert found is not None
            assert [m.content for m in found.messages] == ["Hello"]
