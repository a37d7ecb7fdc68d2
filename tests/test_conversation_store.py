"""Tests for the conversation store."""

import asyncio
from datetime import timedelta

import pytest
from chatshared import ConversationSettings, ConversationUpdate, utcnow
from conftest import make_message
from streamrelay.config import Settings
from streamrelay.db import (
    MemoryConversationRepository,
    PostgresConversationRepository,
    create_repository,
)


class TestConversationCrud:
    """Create, read, update and delete."""

    @pytest.mark.asyncio
    async def test_create_conversation(self, store, chat_settings):
        """A new conversation is empty and stamped with matching timestamps."""
        conv = await store.create_conversation("Hello", chat_settings, "user-a")

        assert conv.title == "Hello"
        assert conv.messages == []
        assert conv.created_at == conv.updated_at
        assert conv.settings == chat_settings
        assert await store.get_conversation(conv.id, "user-a") == conv

    @pytest.mark.asyncio
    async def test_conversations_are_scoped_to_owner(self, store, chat_settings):
        """Another user can neither see nor modify a conversation."""
        conv = await store.create_conversation("Private", chat_settings, "user-a")

        assert await store.get_conversation(conv.id, "user-b") is None
        assert await store.list_conversations("user-b") == []
        assert await store.delete_conversation(conv.id, "user-b") is False
        assert await store.add_message(conv.id, make_message("m1"), "user-b") is False

    @pytest.mark.asyncio
    async def test_list_sorted_by_updated_at_descending(self, store, chat_settings):
        """The most recently touched conversation comes first."""
        first = await store.create_conversation("First", chat_settings, "user-a")
        second = await store.create_conversation("Second", chat_settings, "user-a")
        await store.add_message(first.id, make_message("m1", conversation_id=first.id), "user-a")

        listed = await store.list_conversations("user-a")
        assert [c.id for c in listed] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_update_changes_fields_and_bumps_version(self, store, chat_settings):
        """A partial update keeps unspecified fields and advances updated_at."""
        conv = await store.create_conversation("Old", chat_settings, "user-a")

        updated = await store.update_conversation(
            conv.id, ConversationUpdate(title="New"), "user-a"
        )

        assert updated.title == "New"
        assert updated.settings == chat_settings
        assert updated.updated_at > conv.updated_at

    @pytest.mark.asyncio
    async def test_update_settings(self, store, chat_settings):
        """Settings are replaced as a whole."""
        conv = await store.create_conversation("Chat", chat_settings, "user-a")
        new_settings = ConversationSettings(model="claude-3-opus", temperature=0.3, max_tokens=2000)

        updated = await store.update_conversation(
            conv.id, ConversationUpdate(settings=new_settings), "user-a"
        )

        assert updated.settings == new_settings
        assert updated.title == "Chat"

    @pytest.mark.asyncio
    async def test_update_unknown_returns_none(self, store):
        """Updating a missing conversation reports not-found."""
        assert await store.update_conversation("missing", ConversationUpdate(title="x"), "user-a") is None

    @pytest.mark.asyncio
    async def test_delete_conversation(self, store, chat_settings):
        """Deleted conversations are gone; a second delete reports False."""
        conv = await store.create_conversation("Bye", chat_settings, "user-a")

        assert await store.delete_conversation(conv.id, "user-a") is True
        assert await store.get_conversation(conv.id, "user-a") is None
        assert await store.delete_conversation(conv.id, "user-a") is False


class TestMessages:
    """Appending messages and deriving history."""

    @pytest.mark.asyncio
    async def test_add_message_appends_and_bumps_updated_at(self, store, chat_settings):
        """After add_message the message is present and updated_at strictly increased."""
        conv = await store.create_conversation("Chat", chat_settings, "user-a")
        previous = conv.updated_at

        for index in range(3):
            message = make_message(f"m{index}", conversation_id=conv.id)
            assert await store.add_message(conv.id, message, "user-a") is True

            stored = await store.get_conversation(conv.id, "user-a")
            assert stored.messages[-1] == message
            assert stored.updated_at > previous
            previous = stored.updated_at

    @pytest.mark.asyncio
    async def test_add_message_with_future_timestamp(self, store, chat_settings):
        """updated_at never falls behind the newest message."""
        conv = await store.create_conversation("Chat", chat_settings, "user-a")
        message = make_message("m1", conversation_id=conv.id).model_copy(
            update={"timestamp": utcnow() + timedelta(hours=1)}
        )

        await store.add_message(conv.id, message, "user-a")

        stored = await store.get_conversation(conv.id, "user-a")
        assert stored.updated_at > message.timestamp

    @pytest.mark.asyncio
    async def test_add_message_to_unknown_conversation(self, store):
        """Appending to a missing conversation reports False."""
        assert await store.add_message("missing", make_message("m1"), "user-a") is False

    @pytest.mark.asyncio
    async def test_concurrent_appends_all_land(self, store, chat_settings):
        """Concurrent appends to one conversation never drop a message."""
        conv = await store.create_conversation("Busy", chat_settings, "user-a")

        results = await asyncio.gather(
            *(
                store.add_message(conv.id, make_message(f"m{i}", conversation_id=conv.id), "user-a")
                for i in range(20)
            )
        )

        assert all(results)
        messages = await store.get_messages(conv.id, "user-a")
        assert sorted(m.id for m in messages) == sorted(f"m{i}" for i in range(20))

    @pytest.mark.asyncio
    async def test_history_excludes_streaming_messages(self, store, chat_settings):
        """History never includes a message that is still streaming."""
        conv = await store.create_conversation("Chat", chat_settings, "user-a")
        await store.add_message(conv.id, make_message("u1", "user", conversation_id=conv.id, content="Hi"), "user-a")
        await store.add_message(
            conv.id,
            make_message("a1", "assistant", conversation_id=conv.id, content="Hel", is_streaming=True),
            "user-a",
        )
        await store.add_message(
            conv.id, make_message("a2", "assistant", conversation_id=conv.id, content="Hello!"), "user-a"
        )

        history = await store.get_history(conv.id, "user-a")

        assert [(t.role, t.content) for t in history] == [("user", "Hi"), ("assistant", "Hello!")]

    @pytest.mark.asyncio
    async def test_history_of_unknown_conversation(self, store):
        """Missing conversations have no history."""
        assert await store.get_history("missing", "user-a") is None
        assert await store.get_messages("missing", "user-a") is None


class TestMaintenance:
    """Pruning, reset and stats."""

    @pytest.mark.asyncio
    async def test_not_found_writes_leave_no_locks(self, store, chat_settings):
        """Writes to unknown or foreign conversations keep no lock entries."""
        owned = await store.create_conversation("Mine", chat_settings, "user-a")

        for i in range(3):
            assert await store.update_conversation(f"missing-{i}", ConversationUpdate(title="x"), "user-a") is None
            assert await store.add_message(f"missing-{i}", make_message(f"m{i}"), "user-a") is False
            assert await store.delete_conversation(owned.id, "user-b") is False

        assert store._locks == {}
        assert store._lock_users == {}

    @pytest.mark.asyncio
    async def test_lock_released_after_concurrent_writes(self, store, chat_settings):
        """The per-conversation lock is dropped once every writer is done."""
        conv = await store.create_conversation("Busy", chat_settings, "user-a")

        await asyncio.gather(
            *(
                store.add_message(conv.id, make_message(f"m{i}", conversation_id=conv.id), "user-a")
                for i in range(5)
            )
        )

        assert len((await store.get_conversation(conv.id, "user-a")).messages) == 5
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_prune_removes_stale_conversations(self, store, repository, chat_settings):
        """Conversations older than max_age are deleted across all users."""
        stale = await store.create_conversation("Stale", chat_settings, "user-a")
        other_stale = await store.create_conversation("Stale too", chat_settings, "user-b")
        fresh = await store.create_conversation("Fresh", chat_settings, "user-a")

        old = utcnow() - timedelta(days=40)
        for conv in (stale, other_stale):
            await repository.update_conversation(conv.model_copy(update={"updated_at": old}))

        pruned = await store.prune_conversations(timedelta(days=30))

        assert pruned == 2
        assert await store.get_conversation(stale.id, "user-a") is None
        assert await store.get_conversation(other_stale.id, "user-b") is None
        assert await store.get_conversation(fresh.id, "user-a") is not None

    @pytest.mark.asyncio
    async def test_reset_all(self, store, chat_settings):
        """reset_all removes every conversation."""
        await store.create_conversation("One", chat_settings, "user-a")
        await store.create_conversation("Two", chat_settings, "user-b")

        assert await store.reset_all() == 2
        assert await store.list_conversations("user-a") == []

    @pytest.mark.asyncio
    async def test_stats(self, store, chat_settings):
        """Stats count a user's conversations and messages."""
        first = await store.create_conversation("One", chat_settings, "user-a")
        await store.create_conversation("Two", chat_settings, "user-a")
        for i in range(3):
            await store.add_message(first.id, make_message(f"m{i}", conversation_id=first.id), "user-a")

        stats = await store.get_stats("user-a")

        assert stats.total_conversations == 2
        assert stats.total_messages == 3
        assert stats.average_messages_per_conversation == 1.5

    @pytest.mark.asyncio
    async def test_stats_empty(self, store):
        """No conversations means zero averages, not a division error."""
        stats = await store.get_stats("nobody")
        assert stats.total_conversations == 0
        assert stats.average_messages_per_conversation == 0


class TestRepositorySelection:
    """Choosing the storage backend from settings."""

    def test_memory_backend(self):
        """The in-process repository is the default."""
        repo = create_repository(Settings(storage_backend="memory"))
        assert isinstance(repo, MemoryConversationRepository)

    def test_postgres_backend(self):
        """The PostgreSQL repository is built from the database settings."""
        repo = create_repository(
            Settings(storage_backend="postgres", db_host="db", db_password="secret", db_name="relay")
        )

        assert isinstance(repo, PostgresConversationRepository)
        assert repo.database_url.endswith(":secret@db:5432/relay")

    @pytest.mark.asyncio
    async def test_postgres_requires_connect(self):
        """Queries before connect fail loudly."""
        repo = PostgresConversationRepository("postgresql://u:p@localhost/x")

        with pytest.raises(RuntimeError, match="not connected"):
            await repo.get_conversation("conv-1")
