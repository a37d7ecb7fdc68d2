"""Conversation store: canonical conversation records and derived views."""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator

from pydantic import Field

from chatshared import (
    CamelModel,
    ChatTurn,
    Conversation,
    ConversationSettings,
    ConversationUpdate,
    Message,
    utcnow,
)
from streamrelay.db import ConversationRepository, repository

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(days=30)


class ConversationStats(CamelModel):
    """Per-user conversation totals."""

    total_conversations: int
    total_messages: int
    average_messages_per_conversation: float = Field(0.0)


def _next_version(previous: datetime) -> datetime:
    """A timestamp strictly after `previous`, normally just "now"."""
    now = utcnow()
    floor = previous + timedelta(microseconds=1)
    return now if now >= floor else floor


class ConversationStore:
    """CRUD over conversations plus history, pruning and stats.

    Every write goes through the injected repository. Writes to a single
    conversation are serialized so concurrent appends both land and the last
    one's `updated_at` wins.
    """

    def __init__(self, repository: ConversationRepository):
        self.repository = repository
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _conversation_lock(self, conversation_id: str) -> AsyncIterator[None]:
        """Hold the write lock of one conversation.

        A lock entry exists only while some call holds or awaits it, so ids
        that are never found leave nothing behind.
        """
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[conversation_id] -= 1
            if not self._lock_users[conversation_id]:
                del self._lock_users[conversation_id]
                del self._locks[conversation_id]

    async def create_conversation(
        self,
        title: str,
        settings: ConversationSettings,
        user_id: str,
    ) -> Conversation:
        """Create a new, empty conversation."""
        now = utcnow()
        conversation = Conversation(
            id=str(uuid.uuid4()),
            title=title,
            created_at=now,
            updated_at=now,
            messages=[],
            settings=settings,
        )
        conversation = await self.repository.create_conversation(conversation, user_id)
        logger.info(f"Created conversation {conversation.id} for user {user_id}")
        return conversation

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        """List a user's conversations, most recently updated first."""
        conversations = await self.repository.list_conversations(user_id)
        return sorted(conversations, key=lambda c: c.updated_at, reverse=True)

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None:
        return await self.repository.get_conversation(conversation_id, user_id)

    async def update_conversation(
        self,
        conversation_id: str,
        update: ConversationUpdate,
        user_id: str,
    ) -> Conversation | None:
        """Apply a partial update. `updated_at` is refreshed even if nothing changed."""
        async with self._conversation_lock(conversation_id):
            conversation = await self.repository.get_conversation(conversation_id, user_id)
            if not conversation:
                return None

            changes = update.model_dump(exclude_unset=True, exclude_none=True)
            if update.settings is not None:
                changes["settings"] = update.settings
            changes["updated_at"] = _next_version(conversation.updated_at)

            return await self.repository.update_conversation(
                conversation.model_copy(update=changes)
            )

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        async with self._conversation_lock(conversation_id):
            conversation = await self.repository.get_conversation(conversation_id, user_id)
            if not conversation:
                return False
            return await self.repository.delete_conversation(conversation_id)

    async def add_message(self, conversation_id: str, message: Message, user_id: str) -> bool:
        """Append a message and bump the conversation's `updated_at`.

        Returns False when the conversation does not exist for this user.
        """
        async with self._conversation_lock(conversation_id):
            conversation = await self.repository.get_conversation(conversation_id, user_id)
            if not conversation:
                logger.warning(f"Dropping message {message.id}: conversation {conversation_id} not found")
                return False

            updated_at = _next_version(max(conversation.updated_at, message.timestamp))
            return await self.repository.append_message(conversation_id, message, updated_at)

    async def get_messages(self, conversation_id: str, user_id: str) -> list[Message] | None:
        conversation = await self.repository.get_conversation(conversation_id, user_id)
        if not conversation:
            return None
        return conversation.messages

    async def get_history(self, conversation_id: str, user_id: str) -> list[ChatTurn] | None:
        """Conversation history formatted for the model provider.

        Messages still streaming are left out so partial output is never
        replayed as context.
        """
        conversation = await self.repository.get_conversation(conversation_id, user_id)
        if not conversation:
            return None
        return [
            ChatTurn(role=msg.role, content=msg.content)
            for msg in conversation.messages
            if not msg.is_streaming
        ]

    async def prune_conversations(self, max_age: timedelta = DEFAULT_MAX_AGE) -> int:
        """Delete conversations (of any user) not updated within `max_age`."""
        cutoff = utcnow() - max_age
        pruned = 0

        for conversation in await self.repository.list_conversations():
            if conversation.updated_at < cutoff:
                if await self.repository.delete_conversation(conversation.id):
                    pruned += 1

        if pruned:
            logger.info(f"Pruned {pruned} conversations older than {max_age}")
        return pruned

    async def reset_all(self) -> int:
        """Remove every conversation (testing/debugging)."""
        count = await self.repository.delete_all()
        logger.info(f"Reset {count} conversations")
        return count

    async def get_stats(self, user_id: str) -> ConversationStats:
        conversations = await self.repository.list_conversations(user_id)
        total_conversations = len(conversations)
        total_messages = sum(len(c.messages) for c in conversations)

        return ConversationStats(
            total_conversations=total_conversations,
            total_messages=total_messages,
            average_messages_per_conversation=(
                total_messages / total_conversations if total_conversations > 0 else 0
            ),
        )


# Global store instance
conversation_store = ConversationStore(repository)
