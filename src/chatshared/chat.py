"""Chat request and streamed response models."""

import inspect
from typing import Awaitable, Callable

from pydantic import Field

from chatshared.conversation import CamelModel, ConversationSettings


class ChatRequest(CamelModel):
    """A user turn to relay to the model."""

    message: str = Field(..., min_length=1, max_length=10000, description="User message")
    conversation_id: str | None = Field(None, description="Existing conversation ID")
    settings: ConversationSettings


class ChatResponse(CamelModel):
    """One streamed increment: full accumulated content plus a completion flag."""

    id: str
    content: str
    conversation_id: str
    is_complete: bool


ChunkCallback = Callable[[ChatResponse], Awaitable[None] | None]


async def emit(callback: ChunkCallback, chunk: ChatResponse) -> None:
    """Deliver a chunk to a sync or async callback."""
    result = callback(chunk)
    if inspect.isawaitable(result):
        await result
