"""HTTP client for the streamrelay API."""

import logging
from typing import Any

import httpx
from pydantic import TypeAdapter

from chatshared import (
    ChatRequest,
    ChatResponse,
    ChunkCallback,
    Conversation,
    ConversationSettings,
    ConversationUpdate,
    Model,
    emit,
)
from chatshared.sse import decode_sse_stream
from streamrelay_client.config import client_settings

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."

_conversation_list = TypeAdapter(list[Conversation])
_model_list = TypeAdapter(list[Model])


class ApiError(Exception):
    """An error reported by the API, or a failure to reach it."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


def _error_from_payload(payload: Any, status: int | None = None) -> ApiError:
    """Build an ApiError from an error envelope or stream error frame."""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return ApiError(
                error.get("message") or f"HTTP {status}",
                status=status,
                code=error.get("code"),
            )
        if payload.get("message"):
            return ApiError(str(payload["message"]), status=status, code=payload.get("code"))
    return ApiError(f"HTTP {status}" if status else "An unexpected error occurred.", status=status)


def _error_from_response(response: httpx.Response) -> ApiError:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    error = _error_from_payload(payload, response.status_code)
    if error.message == f"HTTP {response.status_code}" and response.reason_phrase:
        error.message = f"HTTP {response.status_code}: {response.reason_phrase}"
    return error


class ChatApiClient:
    """Async client for conversations, models and streamed chat."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        user_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or client_settings.api_base_url).rstrip("/")
        self.timeout = timeout or client_settings.request_timeout
        self.user_id = user_id if user_id is not None else client_settings.user_id
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.user_id:
            headers["X-User-ID"] = self.user_id
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        async with self._client() as client:
            try:
                response = await client.request(method, path, json=json)
            except httpx.RequestError as e:
                logger.warning(f"API request {method} {path} failed: {e}")
                raise ApiError(NETWORK_ERROR_MESSAGE) from e

        if response.is_error:
            raise _error_from_response(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ============= Conversations =============

    async def get_conversations(self) -> list[Conversation]:
        return _conversation_list.validate_python(await self._request("GET", "/api/conversations"))

    async def get_conversation(self, conversation_id: str) -> Conversation:
        data = await self._request("GET", f"/api/conversations/{conversation_id}")
        return Conversation.model_validate(data)

    async def create_conversation(
        self, title: str, settings: ConversationSettings
    ) -> Conversation:
        data = await self._request(
            "POST",
            "/api/conversations",
            json={"title": title, "settings": settings.model_dump(mode="json", by_alias=True)},
        )
        return Conversation.model_validate(data)

    async def update_conversation(
        self, conversation_id: str, update: ConversationUpdate
    ) -> Conversation:
        data = await self._request(
            "PATCH",
            f"/api/conversations/{conversation_id}",
            json=update.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        return Conversation.model_validate(data)

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request("DELETE", f"/api/conversations/{conversation_id}")

    # ============= Models & health =============

    async def get_models(self) -> list[Model]:
        return _model_list.validate_python(await self._request("GET", "/api/models"))

    async def health_check(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def is_reachable(self) -> bool:
        """True when the server answers at all, whatever its health status."""
        async with self._client() as client:
            try:
                await client.get("/health")
            except httpx.RequestError:
                return False
        return True

    # ============= Chat =============

    async def send_message(self, request: ChatRequest, on_chunk: ChunkCallback) -> None:
        """POST a chat turn and deliver each streamed chunk to `on_chunk` in order.

        Raises:
            ApiError: on an error status, an error frame in the stream, or a
                network failure
        """
        async with self._client() as client:
            try:
                async with client.stream(
                    "POST",
                    "/api/chat",
                    json=request.model_dump(mode="json", by_alias=True, exclude_none=True),
                    headers={"Accept": "text/event-stream"},
                ) as response:
                    if response.is_error:
                        await response.aread()
                        raise _error_from_response(response)

                    async for payload in decode_sse_stream(response.aiter_text()):
                        if isinstance(payload, dict) and payload.get("error"):
                            raise _error_from_payload(payload)
                        await emit(on_chunk, ChatResponse.model_validate(payload))
            except httpx.RequestError as e:
                logger.warning(f"Chat stream failed: {e}")
                raise ApiError(NETWORK_ERROR_MESSAGE) from e
