"""Server-Sent Events support for streamed chat turns."""

import logging
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi.responses import StreamingResponse

from chatshared import ApiErrorCode, ChatRequest, ChatTurn, Message
from chatshared.sse import encode_data, encode_done
from streamrelay.errors import RelayError
from streamrelay.services.chat_relay import ChatRelay
from streamrelay.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


def error_frame(error: BaseException) -> str:
    """Encode any exception as a terminal `{error: true, ...}` frame."""
    if isinstance(error, RelayError):
        code, message = error.code.value, error.message
    else:
        code = ApiErrorCode.INTERNAL_ERROR.value
        message = str(error) or "An unexpected error occurred"
    return encode_data(
        {
            "error": True,
            "code": code,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


async def chat_event_stream(
    relay: ChatRelay,
    store: ConversationStore,
    request: ChatRequest,
    messages: list[ChatTurn],
    user_id: str,
) -> AsyncGenerator[str, None]:
    """Generate SSE frames for one chat turn, ending with `[DONE]`.

    The completed assistant message is written to the store as soon as its
    final chunk has been sent; this is the only place assistant content is
    persisted.
    """
    conversation_id = request.conversation_id or ""
    try:
        async for chunk in relay.stream_message(request, messages=messages, user_id=user_id):
            yield encode_data(chunk.model_dump(mode="json", by_alias=True))

            if chunk.is_complete:
                await store.add_message(
                    conversation_id,
                    Message(
                        id=chunk.id,
                        content=chunk.content,
                        role="assistant",
                        conversation_id=conversation_id,
                    ),
                    user_id,
                )
    except Exception as e:
        logger.error(f"Chat stream error for conversation {conversation_id}: {e}")
        yield error_frame(e)

    yield encode_done()


def create_sse_response(generator: AsyncGenerator[str, None]) -> StreamingResponse:
    """Create an SSE StreamingResponse."""
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
