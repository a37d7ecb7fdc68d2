"""PostgreSQL conversation repository."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime

import asyncpg

from chatshared import Conversation, ConversationSettings, Message

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
-- Conversations
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    settings JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_conversations_user_id ON conversations(user_id);
CREATE INDEX IF NOT EXISTS idx_conversations_updated_at ON conversations(updated_at);

-- Messages (seq preserves append order)
CREATE TABLE IF NOT EXISTS messages (
    seq BIGSERIAL PRIMARY KEY,
    id TEXT NOT NULL,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    is_streaming BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, seq);
"""


class PostgresConversationRepository:
    """PostgreSQL-backed repository using an asyncpg pool."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._pool: asyncpg.Pool | None = None

    async def connect(self):
        """Create connection pool and ensure the schema exists."""
        if not self.database_url:
            return
        self._pool = await asyncpg.create_pool(
            self.database_url,
            min_size=2,
            max_size=10,
        )
        async with self.connection() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Connected to PostgreSQL conversation store")

    async def disconnect(self):
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self):
        """Get a connection from the pool."""
        if not self._pool:
            raise RuntimeError("Database not connected")
        async with self._pool.acquire() as conn:
            yield conn

    async def create_conversation(self, conversation: Conversation, user_id: str) -> Conversation:
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO conversations (id, user_id, title, settings, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                conversation.id,
                user_id,
                conversation.title,
                conversation.settings.model_dump_json(by_alias=True),
                conversation.created_at,
                conversation.updated_at,
            )
        return conversation

    async def get_conversation(
        self, conversation_id: str, user_id: str | None = None
    ) -> Conversation | None:
        async with self.connection() as conn:
            if user_id is None:
                row = await conn.fetchrow(
                    "SELECT * FROM conversations WHERE id = $1", conversation_id
                )
            else:
                row = await conn.fetchrow(
                    "SELECT * FROM conversations WHERE id = $1 AND user_id = $2",
                    conversation_id,
                    user_id,
                )
            if not row:
                return None
            messages = await self._fetch_messages(conn, conversation_id)
        return self._row_to_conversation(row, messages)

    async def list_conversations(self, user_id: str | None = None) -> list[Conversation]:
        async with self.connection() as conn:
            if user_id is None:
                rows = await conn.fetch("SELECT * FROM conversations")
            else:
                rows = await conn.fetch(
                    "SELECT * FROM conversations WHERE user_id = $1", user_id
                )
            conversations = []
            for row in rows:
                messages = await self._fetch_messages(conn, row["id"])
                conversations.append(self._row_to_conversation(row, messages))
        return conversations

    async def update_conversation(self, conversation: Conversation) -> Conversation | None:
        async with self.connection() as conn:
            result = await conn.execute(
                """
                UPDATE conversations
                SET title = $1, settings = $2, updated_at = $3
                WHERE id = $4
                """,
                conversation.title,
                conversation.settings.model_dump_json(by_alias=True),
                conversation.updated_at,
                conversation.id,
            )
        if result.endswith(" 0"):
            return None
        return await self.get_conversation(conversation.id)

    async def delete_conversation(self, conversation_id: str) -> bool:
        async with self.connection() as conn:
            result = await conn.execute(
                "DELETE FROM conversations WHERE id = $1", conversation_id
            )
        return not result.endswith(" 0")

    async def append_message(
        self, conversation_id: str, message: Message, updated_at: datetime
    ) -> bool:
        async with self.connection() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    "UPDATE conversations SET updated_at = $1 WHERE id = $2",
                    updated_at,
                    conversation_id,
                )
                if result.endswith(" 0"):
                    return False
                await conn.execute(
                    """
                    INSERT INTO messages (id, conversation_id, role, content, is_streaming, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    message.id,
                    conversation_id,
                    message.role,
                    message.content,
                    message.is_streaming,
                    message.timestamp,
                )
        return True

    async def delete_all(self) -> int:
        async with self.connection() as conn:
            result = await conn.execute("DELETE FROM conversations")
        return int(result.split()[-1])

    async def _fetch_messages(self, conn: asyncpg.Connection, conversation_id: str) -> list[Message]:
        rows = await conn.fetch(
            "SELECT * FROM messages WHERE conversation_id = $1 ORDER BY seq",
            conversation_id,
        )
        return [
            Message(
                id=row["id"],
                conversation_id=row["conversation_id"],
                role=row["role"],
                content=row["content"],
                is_streaming=row["is_streaming"],
                timestamp=row["created_at"],
            )
            for row in rows
        ]

    def _row_to_conversation(self, row: asyncpg.Record, messages: list[Message]) -> Conversation:
        settings = row["settings"]
        return Conversation(
            id=row["id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            messages=messages,
            settings=ConversationSettings.model_validate(
                settings if isinstance(settings, dict) else json.loads(settings)
            ),
        )
