"""Tests for the client HTTP API wrapper."""

import json

import httpx
import pytest
from chatshared import ChatRequest, ConversationUpdate
from conftest import FakeProvider
from streamrelay.api import app, get_relay, get_store
from streamrelay.services.chat_relay import ChatRelay
from streamrelay_client.api_client import NETWORK_ERROR_MESSAGE, ApiError, ChatApiClient

CONVERSATION = {
    "id": "conv-1",
    "title": "Chat",
    "createdAt": "2024-05-01T12:00:00Z",
    "updatedAt": "2024-05-01T12:05:00Z",
    "messages": [
        {
            "id": "user-1",
            "content": "Hi",
            "role": "user",
            "timestamp": "2024-05-01T12:01:00Z",
            "conversationId": "conv-1",
        }
    ],
    "settings": {"model": "gpt-4", "temperature": 0.7, "maxTokens": 1000},
}


def make_client(handler, user_id=None) -> ChatApiClient:
    return ChatApiClient(
        base_url="http://relay.test",
        timeout=5.0,
        user_id=user_id,
        transport=httpx.MockTransport(handler),
    )


def sse(*payloads) -> str:
    return "".join(f"data: {json.dumps(p)}\n\n" for p in payloads) + "data: [DONE]\n\n"


class TestRequests:
    """Plain JSON endpoints."""

    @pytest.mark.asyncio
    async def test_get_conversations(self):
        """Conversations are parsed from camelCase with aware timestamps."""

        def handler(request):
            assert request.url.path == "/api/conversations"
            return httpx.Response(200, json=[CONVERSATION])

        conversations = await make_client(handler).get_conversations()

        assert conversations[0].id == "conv-1"
        assert conversations[0].settings.max_tokens == 1000
        assert conversations[0].messages[0].timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_user_header(self):
        """The configured user id is sent as X-User-ID."""
        seen = {}

        def handler(request):
            seen["user"] = request.headers.get("X-User-ID")
            return httpx.Response(200, json=[])

        await make_client(handler, user_id="alice").get_models()

        assert seen["user"] == "alice"

    @pytest.mark.asyncio
    async def test_update_sends_only_set_fields(self):
        """PATCH bodies omit unset fields."""
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=CONVERSATION)

        await make_client(handler).update_conversation("conv-1", ConversationUpdate(title="New"))

        assert seen == {"method": "PATCH", "body": {"title": "New"}}

    @pytest.mark.asyncio
    async def test_delete_no_content(self):
        """204 responses return None."""
        client = make_client(lambda request: httpx.Response(204))
        assert await client.delete_conversation("conv-1") is None

    @pytest.mark.asyncio
    async def test_error_envelope(self):
        """Error envelopes become ApiError with status and code."""

        def handler(request):
            return httpx.Response(
                404,
                json={
                    "success": False,
                    "error": {"code": "CONVERSATION_NOT_FOUND", "message": "Conversation not found"},
                },
            )

        with pytest.raises(ApiError) as exc_info:
            await make_client(handler).get_conversation("missing")

        assert exc_info.value.message == "Conversation not found"
        assert exc_info.value.status == 404
        assert exc_info.value.code == "CONVERSATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_error_without_body(self):
        """Errors without a JSON body fall back to the status line."""
        client = make_client(lambda request: httpx.Response(502, text="bad gateway"))

        with pytest.raises(ApiError) as exc_info:
            await client.get_models()

        assert exc_info.value.message == "HTTP 502: Bad Gateway"

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Connection failures get the network error message."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ApiError) as exc_info:
            await make_client(handler).get_conversations()

        assert exc_info.value.message == NETWORK_ERROR_MESSAGE
        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_is_reachable(self):
        """Any response counts as reachable; connection errors do not."""
        assert await make_client(lambda request: httpx.Response(503)).is_reachable() is True

        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        assert await make_client(refuse).is_reachable() is False


class TestSendMessage:
    """Streamed chat."""

    @pytest.mark.asyncio
    async def test_chunks_delivered_in_order(self, chat_settings):
        """Each frame is parsed into a ChatResponse and passed on."""
        frames = sse(
            {"id": "assistant-1", "content": "He", "conversationId": "conv-1", "isComplete": False},
            {"id": "assistant-1", "content": "Hey", "conversationId": "conv-1", "isComplete": True},
        )
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, text=frames, headers={"Content-Type": "text/event-stream"})

        received = []
        request = ChatRequest(message="Hi", conversation_id="conv-1", settings=chat_settings)
        await make_client(handler).send_message(request, received.append)

        assert [(c.content, c.is_complete) for c in received] == [("He", False), ("Hey", True)]
        assert seen["body"] == {
            "message": "Hi",
            "conversationId": "conv-1",
            "settings": {"model": "gpt-4", "temperature": 0.7, "maxTokens": 1000},
        }

    @pytest.mark.asyncio
    async def test_error_frame_raises(self, chat_settings):
        """An error frame raises ApiError after earlier chunks were delivered."""
        frames = sse(
            {"id": "assistant-1", "content": "He", "conversationId": "conv-1", "isComplete": False},
            {"error": True, "code": "RATE_LIMIT_EXCEEDED", "message": "Slow down", "timestamp": "now"},
        )
        received = []

        with pytest.raises(ApiError) as exc_info:
            await make_client(lambda request: httpx.Response(200, text=frames)).send_message(
                ChatRequest(message="Hi", settings=chat_settings), received.append
            )

        assert exc_info.value.code == "RATE_LIMIT_EXCEEDED"
        assert exc_info.value.message == "Slow down"
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_http_error(self, chat_settings):
        """Non-2xx chat responses raise with the envelope's code."""

        def handler(request):
            return httpx.Response(
                404, json={"success": False, "error": {"code": "CONVERSATION_NOT_FOUND", "message": "Conversation not found"}}
            )

        with pytest.raises(ApiError) as exc_info:
            await make_client(handler).send_message(
                ChatRequest(message="Hi", conversation_id="missing", settings=chat_settings), lambda c: None
            )

        assert exc_info.value.status == 404
        assert exc_info.value.code == "CONVERSATION_NOT_FOUND"


class TestAgainstServer:
    """The client talking to the real app in-process."""

    @pytest.fixture
    def api(self, store):
        relay = ChatRelay(store, FakeProvider(deltas=["Hi", " back"]))
        app.dependency_overrides[get_store] = lambda: store
        app.dependency_overrides[get_relay] = lambda: relay
        yield ChatApiClient(
            base_url="http://relay.test",
            user_id="alice",
            transport=httpx.ASGITransport(app=app),
        )
        app.dependency_overrides.clear()

    @pytest.mark.asyncio
    async def test_create_chat_and_fetch(self, api, chat_settings):
        """A conversation created and chatted in is returned with both turns."""
        conversation = await api.create_conversation("Round trip", chat_settings)
        received = []

        await api.send_message(
            ChatRequest(message="Hello", conversation_id=conversation.id, settings=chat_settings),
            received.append,
        )

        assert received[-1].is_complete is True
        assert received[-1].content == "Hi back"

        fetched = await api.get_conversation(conversation.id)
        assert [(m.role, m.content) for m in fetched.messages] == [
            ("user", "Hello"),
            ("assistant", "Hi back"),
        ]
        assert [c.id for c in await api.get_conversations()] == [conversation.id]

    @pytest.mark.asyncio
    async def test_not_found(self, api):
        """Server errors surface as ApiError."""
        with pytest.raises(ApiError) as exc_info:
            await api.get_conversation("missing")

        assert exc_info.value.code == "CONVERSATION_NOT_FOUND"
