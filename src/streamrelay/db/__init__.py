"""Conversation persistence backends."""

from datetime import datetime
from typing import Protocol

from chatshared import Conversation, Message
from streamrelay.config import Settings, settings
from streamrelay.db.memory import MemoryConversationRepository
from streamrelay.db.postgres import PostgresConversationRepository


class ConversationRepository(Protocol):
    """Storage engine behind the conversation store.

    `user_id=None` on reads means "any owner". Not-found is reported as
    `None`/`False`, never raised.
    """

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def create_conversation(self, conversation: Conversation, user_id: str) -> Conversation: ...

    async def get_conversation(
        self, conversation_id: str, user_id: str | None = None
    ) -> Conversation | None: ...

    async def list_conversations(self, user_id: str | None = None) -> list[Conversation]: ...

    async def update_conversation(self, conversation: Conversation) -> Conversation | None: ...

    async def delete_conversation(self, conversation_id: str) -> bool: ...

    async def append_message(
        self, conversation_id: str, message: Message, updated_at: datetime
    ) -> bool: ...

    async def delete_all(self) -> int: ...


def create_repository(config: Settings = settings) -> ConversationRepository:
    """Build the repository selected by `storage_backend`."""
    if config.storage_backend == "postgres":
        return PostgresConversationRepository(config.database_url)
    return MemoryConversationRepository()


# Global repository instance
repository = create_repository()

__all__ = [
    "ConversationRepository",
    "MemoryConversationRepository",
    "PostgresConversationRepository",
    "create_repository",
    "repository",
]
