"""Conversation and message models."""

import time
from datetime import datetime, timezone
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Role = Literal["user", "assistant", "system"]

_last_id_ms = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _assume_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# Naive timestamps from the wire are read as UTC
Timestamp = Annotated[datetime, AfterValidator(_assume_utc)]


def new_message_id(prefix: str) -> str:
    """Generate a `<prefix>-<ms>` id whose timestamp part never repeats in-process.

    The prefix is cosmetic; the message role is carried separately.
    """
    global _last_id_ms
    now_ms = int(time.time() * 1000)
    _last_id_ms = max(now_ms, _last_id_ms + 1)
    return f"{prefix}-{_last_id_ms}"


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationSettings(CamelModel):
    """Per-conversation model settings."""

    model: str = Field(..., min_length=1, description="Model ID")
    temperature: float = Field(..., ge=0, le=2, description="Sampling temperature")
    max_tokens: int = Field(..., ge=1, le=32000, description="Completion token limit")


class Message(CamelModel):
    """A single message in a conversation."""

    id: str = Field(..., description="Unique message ID")
    content: str = Field(..., description="Message content")
    role: Role = Field(..., description="Message role")
    timestamp: Timestamp = Field(default_factory=utcnow, description="Creation timestamp")
    conversation_id: str = Field(..., description="Parent conversation ID")
    is_streaming: bool = Field(False, description="True while the content is still arriving")


class Conversation(CamelModel):
    """A conversation thread."""

    id: str = Field(..., description="Unique conversation ID")
    title: str = Field(..., description="Conversation title")
    created_at: Timestamp = Field(default_factory=utcnow, description="Creation timestamp")
    updated_at: Timestamp = Field(default_factory=utcnow, description="Version marker, bumped on every write")
    messages: list[Message] = Field(default_factory=list)
    settings: ConversationSettings


class ConversationUpdate(CamelModel):
    """Partial update for a conversation's editable fields."""

    title: str | None = Field(None, min_length=1, max_length=200)
    settings: ConversationSettings | None = None


class ChatTurn(BaseModel):
    """One `{role, content}` entry of the history sent to the model."""

    role: Role
    content: str


class UnsentMessage(CamelModel):
    """A message composed while offline, waiting to be replayed."""

    id: str
    conversation_id: str
    content: str
    timestamp: Timestamp = Field(default_factory=utcnow)


class Model(CamelModel):
    """A model offered by the catalog."""

    id: str
    name: str
    description: str | None = None
    max_tokens: int
    deterministic: bool = Field(False, description="Prefers a low default temperature")


def upsert_message(messages: list[Message], message: Message) -> None:
    """Replace the message with the same id in place, or append it."""
    for index, existing in enumerate(messages):
        if existing.id == message.id:
            messages[index] = message
            return
    messages.append(message)
