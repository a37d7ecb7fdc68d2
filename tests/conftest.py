"""Shared fixtures and fakes."""

from datetime import datetime, timezone

import pytest
from chatshared import ConversationSettings, Message
from streamrelay.db.memory import MemoryConversationRepository
from streamrelay.services.conversation_store import ConversationStore
from streamrelay_client.persistence import ClientPersistence, MemoryStorage


class FakeProvider:
    """Scripted stand-in for the upstream model provider."""

    base_url = "https://provider.test/v1"

    def __init__(
        self,
        deltas: list[str] | None = None,
        error: Exception | None = None,
        fail_after: int = 0,
        response: dict | None = None,
        models: list[dict] | None = None,
        has_credentials: bool = True,
    ):
        self.deltas = deltas or []
        self.error = error
        self.fail_after = fail_after
        self.response = response or {"choices": []}
        self.models = models if models is not None else [{"id": "gpt-4"}]
        self.has_credentials = has_credentials
        self.payloads: list[dict] = []

    async def stream_chat(self, payload):
        self.payloads.append(payload)
        for index, delta in enumerate(self.deltas):
            if self.error is not None and index == self.fail_after:
                raise self.error
            yield delta
        if self.error is not None and self.fail_after >= len(self.deltas):
            raise self.error

    async def create_chat(self, payload):
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.response

    async def list_models(self):
        if self.error is not None:
            raise self.error
        return self.models


def at(minute: int) -> datetime:
    """A fixed UTC timestamp, `minute` minutes past noon."""
    return datetime(2024, 5, 1, 12, minute, tzinfo=timezone.utc)


def make_message(
    message_id: str,
    role: str = "user",
    minute: int = 0,
    conversation_id: str = "conv-1",
    content: str | None = None,
    is_streaming: bool = False,
) -> Message:
    return Message(
        id=message_id,
        content=content if content is not None else f"content of {message_id}",
        role=role,
        timestamp=at(minute),
        conversation_id=conversation_id,
        is_streaming=is_streaming,
    )


@pytest.fixture
def chat_settings() -> ConversationSettings:
    return ConversationSettings(model="gpt-4", temperature=0.7, max_tokens=1000)


@pytest.fixture
def repository() -> MemoryConversationRepository:
    return MemoryConversationRepository()


@pytest.fixture
def store(repository) -> ConversationStore:
    return ConversationStore(repository)


@pytest.fixture
def persistence() -> ClientPersistence:
    return ClientPersistence(MemoryStorage())
