"""Streaming relay between chat requests and the model provider."""

import logging
import time
from typing import Any, AsyncGenerator, AsyncIterator, Literal, Protocol

from pydantic import BaseModel, Field

from chatshared import (
    ChatRequest,
    ChatResponse,
    ChatTurn,
    ChunkCallback,
    emit,
    new_message_id,
)
from streamrelay.config import settings
from streamrelay.errors import classify_provider_error
from streamrelay.services.conversation_store import ConversationStore, conversation_store
from streamrelay.services.provider_client import MISSING_KEY_MESSAGE, get_provider_client

logger = logging.getLogger(__name__)


class Provider(Protocol):
    """What the relay needs from an upstream model provider."""

    base_url: str

    @property
    def has_credentials(self) -> bool: ...

    def stream_chat(self, payload: dict[str, Any]) -> AsyncIterator[str]: ...

    async def create_chat(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def list_models(self) -> list[dict[str, Any]]: ...


class HealthStatus(BaseModel):
    status: Literal["healthy", "unhealthy"]
    details: dict[str, Any] = Field(default_factory=dict)


def sanitize_for_logging(payload: dict[str, Any]) -> dict[str, Any]:
    """Copy of a provider payload safe to log: no secrets, truncated bodies."""
    sanitized = dict(payload)
    for key in ("api_key", "apiKey", "authorization", "Authorization"):
        if key in sanitized:
            sanitized[key] = "[REDACTED]"
    if isinstance(sanitized.get("messages"), list):
        sanitized["messages"] = [
            {
                **msg,
                "content": msg["content"][:100] + ("..." if len(msg["content"]) > 100 else ""),
            }
            for msg in sanitized["messages"]
        ]
    return sanitized


class ChatRelay:
    """Turns one chat request into an ordered stream of `ChatResponse` chunks."""

    def __init__(
        self,
        store: ConversationStore,
        provider: Provider,
        default_user_id: str = "default-user",
    ):
        self.store = store
        self.provider = provider
        self.default_user_id = default_user_id

    async def resolve_messages(
        self, request: ChatRequest, user_id: str | None = None
    ) -> list[ChatTurn]:
        """History for the conversation (if any) followed by the new user turn."""
        history: list[ChatTurn] = []
        if request.conversation_id:
            history = await self.store.get_history(
                request.conversation_id, user_id or self.default_user_id
            ) or []
        return [*history, ChatTurn(role="user", content=request.message)]

    def _build_payload(
        self, request: ChatRequest, messages: list[ChatTurn], stream: bool
    ) -> dict[str, Any]:
        return {
            "model": request.settings.model,
            "messages": [m.model_dump() for m in messages],
            "temperature": request.settings.temperature,
            "max_tokens": request.settings.max_tokens,
            "stream": stream,
        }

    async def stream_message(
        self,
        request: ChatRequest,
        messages: list[ChatTurn] | None = None,
        user_id: str | None = None,
    ) -> AsyncGenerator[ChatResponse, None]:
        """Relay a request, yielding accumulated content after every delta.

        The last chunk always has `is_complete=True`, even when the provider
        sent no content. Any failure is raised as a `RelayError` and ends the
        stream; nothing is yielded after it.

        Args:
            messages: Pre-resolved provider messages. Resolved from the store
                when omitted.
        """
        start_time = time.monotonic()
        conversation_id = request.conversation_id or ""

        logger.info(
            f"Sending chat request: conversation={conversation_id or '-'} "
            f"model={request.settings.model} temperature={request.settings.temperature} "
            f"max_tokens={request.settings.max_tokens} message_length={len(request.message)}"
        )

        message_id = new_message_id("assistant")
        accumulated = ""

        try:
            if messages is None:
                messages = await self.resolve_messages(request, user_id)
            payload = self._build_payload(request, messages, stream=True)
            logger.debug(f"Provider request: {sanitize_for_logging(payload)}")

            async for delta in self.provider.stream_chat(payload):
                if not delta:
                    continue
                accumulated += delta
                yield ChatResponse(
                    id=message_id,
                    content=accumulated,
                    conversation_id=conversation_id,
                    is_complete=False,
                )
        except Exception as e:
            error = classify_provider_error(e)
            logger.error(
                f"Chat relay failed: code={error.code.value} status={getattr(e, 'status_code', None)} "
                f"message={error.message}"
            )
            if error is e:
                raise
            raise error from e

        yield ChatResponse(
            id=message_id,
            content=accumulated,
            conversation_id=conversation_id,
            is_complete=True,
        )

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            f"Chat request completed: duration={duration_ms}ms "
            f"response_length={len(accumulated)} conversation={conversation_id or '-'}"
        )

    async def send_message(
        self,
        request: ChatRequest,
        on_chunk: ChunkCallback,
        user_id: str | None = None,
    ) -> None:
        """Callback form of `stream_message`."""
        async for chunk in self.stream_message(request, user_id=user_id):
            await emit(on_chunk, chunk)

    async def complete_message(
        self, request: ChatRequest, user_id: str | None = None
    ) -> ChatResponse:
        """Non-streaming variant; returns a single complete response."""
        start_time = time.monotonic()
        try:
            messages = await self.resolve_messages(request, user_id)
            payload = self._build_payload(request, messages, stream=False)
            logger.debug(f"Provider request (non-streaming): {sanitize_for_logging(payload)}")
            response = await self.provider.create_chat(payload)
        except Exception as e:
            error = classify_provider_error(e)
            logger.error(f"Non-streaming chat failed: code={error.code.value} message={error.message}")
            if error is e:
                raise
            raise error from e

        choices = response.get("choices") or []
        content = ""
        if choices:
            content = (choices[0].get("message") or {}).get("content") or ""

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            f"Non-streaming chat completed: duration={duration_ms}ms "
            f"response_length={len(content)} usage={response.get('usage')}"
        )

        return ChatResponse(
            id=new_message_id("assistant"),
            content=content,
            conversation_id=request.conversation_id or "",
            is_complete=True,
        )

    async def health_check(self) -> HealthStatus:
        """Check credential presence and provider reachability. Never raises."""
        if not self.provider.has_credentials:
            return HealthStatus(status="unhealthy", details={"error": MISSING_KEY_MESSAGE})

        try:
            models = await self.provider.list_models()
        except Exception as e:
            logger.error(f"Provider health check failed: {e}")
            return HealthStatus(
                status="unhealthy",
                details={"error": str(e), "status": getattr(e, "status_code", None)},
            )

        return HealthStatus(
            status="healthy",
            details={"modelsCount": len(models), "baseURL": self.provider.base_url},
        )


# Singleton relay instance
_relay: ChatRelay | None = None


def get_chat_relay() -> ChatRelay:
    """Get the singleton chat relay."""
    global _relay
    if _relay is None:
        _relay = ChatRelay(
            conversation_store,
            get_provider_client(),
            default_user_id=settings.default_user_id,
        )
    return _relay

