"""Shared Pydantic models for streamrelay."""

from chatshared.conversation import (
    CamelModel,
    ChatTurn,
    Conversation,
    ConversationSettings,
    ConversationUpdate,
    Message,
    Model,
    Role,
    UnsentMessage,
    new_message_id,
    upsert_message,
    utcnow,
)
from chatshared.chat import ChatRequest, ChatResponse, ChunkCallback, emit
from chatshared.errors import ApiErrorCode, ApiResponse, ErrorDetail

__all__ = [
    # Conversations
    "CamelModel",
    "ChatTurn",
    "Conversation",
    "ConversationSettings",
    "ConversationUpdate",
    "Message",
    "Model",
    "Role",
    "UnsentMessage",
    "new_message_id",
    "upsert_message",
    "utcnow",
    # Chat
    "ChatRequest",
    "ChatResponse",
    "ChunkCallback",
    "emit",
    # Errors
    "ApiErrorCode",
    "ApiResponse",
    "ErrorDetail",
]
