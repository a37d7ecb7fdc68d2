"""API-specific request and response models."""

from pydantic import Field

from chatshared import CamelModel, ChatTurn, Conversation, ConversationSettings
from streamrelay.services.chat_relay import HealthStatus


class ConversationCreateRequest(CamelModel):
    """Request model for creating a conversation."""

    title: str = Field(..., min_length=1, max_length=200)
    settings: ConversationSettings


class ConversationHistoryResponse(CamelModel):
    """A conversation together with its provider-facing history."""

    conversation: Conversation
    history: list[ChatTurn]


class HealthResponse(HealthStatus):
    """Health endpoint payload."""

    version: str
