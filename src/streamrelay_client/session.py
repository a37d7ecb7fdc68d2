"""Per-conversation chat session state machine."""

import logging
from enum import Enum
from typing import Awaitable, Callable

from chatshared import (
    ChatRequest,
    ChatResponse,
    ChunkCallback,
    ConversationSettings,
    Message,
    new_message_id,
    upsert_message,
    utcnow,
)
from streamrelay_client.observers import ObserverRegistry
from streamrelay_client.offline import OfflineQueue, new_unsent_message

logger = logging.getLogger(__name__)

SendFunction = Callable[[ChatRequest, ChunkCallback], Awaitable[None]]


class SessionState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"


class SendStatus(str, Enum):
    SENT = "sent"
    QUEUED = "queued"
    FAILED = "failed"
    IGNORED = "ignored"


class ChatSession:
    """One conversation's message list and its in-flight send.

    Only one send runs at a time; a send requested meanwhile is ignored.
    A failed send leaves any partial assistant reply in place and records
    the error message.
    """

    def __init__(
        self,
        conversation_id: str,
        send: SendFunction,
        offline_queue: OfflineQueue | None = None,
        messages: list[Message] | None = None,
    ):
        self.conversation_id = conversation_id
        self._send = send
        self.offline_queue = offline_queue
        self.messages: list[Message] = list(messages or [])
        self.state = SessionState.IDLE
        self.error: str | None = None

        # on_message(message) fires for every appended or replaced message
        self.on_message = ObserverRegistry("session messages")

    @property
    def is_sending(self) -> bool:
        return self.state != SessionState.IDLE

    @property
    def is_streaming(self) -> bool:
        return self.state == SessionState.STREAMING

    def _apply(self, message: Message) -> None:
        upsert_message(self.messages, message)
        self.on_message.notify(message)

    def apply_chunk(self, chunk: ChatResponse) -> None:
        """Append or replace the assistant message for a streamed chunk."""
        existing = next((m for m in self.messages if m.id == chunk.id), None)
        self._apply(
            Message(
                id=chunk.id,
                content=chunk.content,
                role="assistant",
                timestamp=existing.timestamp if existing else utcnow(),
                conversation_id=self.conversation_id,
                is_streaming=not chunk.is_complete,
            )
        )
        self.state = SessionState.SENDING if chunk.is_complete else SessionState.STREAMING

    async def send_message(self, content: str, settings: ConversationSettings) -> SendStatus:
        if self.is_sending:
            return SendStatus.IGNORED

        content = content.strip()
        if not content:
            return SendStatus.IGNORED

        self.error = None

        if self.offline_queue is not None and not self.offline_queue.is_online:
            unsent = new_unsent_message(self.conversation_id, content)
            if not self.offline_queue.queue_message(unsent):
                self.error = "Failed to save message for sending later"
                return SendStatus.FAILED
            self._apply(
                Message(
                    id=unsent.id,
                    content=content,
                    role="user",
                    timestamp=unsent.timestamp,
                    conversation_id=self.conversation_id,
                )
            )
            return SendStatus.QUEUED

        self.state = SessionState.SENDING
        try:
            self._apply(
                Message(
                    id=new_message_id("user"),
                    content=content,
                    role="user",
                    conversation_id=self.conversation_id,
                )
            )
            request = ChatRequest(
                message=content,
                conversation_id=self.conversation_id,
                settings=settings,
            )
            await self._send(request, self.apply_chunk)
        except Exception as e:
            logger.warning(f"Send failed in conversation {self.conversation_id}: {e}")
            self.error = getattr(e, "message", None) or str(e) or "Failed to send message"
            return SendStatus.FAILED
        finally:
            self.state = SessionState.IDLE

        return SendStatus.SENT

    def clear_error(self) -> None:
        self.error = None
