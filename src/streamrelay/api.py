"""FastAPI application for the streaming chat relay."""

import asyncio
import logging
from datetime import timedelta

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatshared import (
    ApiErrorCode,
    ApiResponse,
    ChatRequest,
    Conversation,
    ConversationSettings,
    ConversationUpdate,
    ErrorDetail,
    Message,
    Model,
    new_message_id,
)
from streamrelay import __version__
from streamrelay.config import settings
from streamrelay.db import repository
from streamrelay.errors import ApiError, conversation_not_found
from streamrelay.models import (
    ConversationCreateRequest,
    ConversationHistoryResponse,
    HealthResponse,
)
from streamrelay.services.chat_relay import ChatRelay, get_chat_relay
from streamrelay.services.conversation_store import (
    ConversationStats,
    ConversationStore,
    conversation_store,
)
from streamrelay.services.model_catalog import ModelCatalog, model_catalog
from streamrelay.sse import chat_event_stream, create_sse_response

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50

app = FastAPI(
    title="Streamrelay API",
    description="Streaming chat relay with durable conversations",
    version=__version__,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_prune_task: asyncio.Task | None = None


async def _prune_periodically(interval: int):
    """Delete stale conversations every `interval` seconds."""
    max_age = timedelta(days=settings.prune_max_age_days)
    while True:
        await asyncio.sleep(interval)
        try:
            await conversation_store.prune_conversations(max_age)
        except Exception as e:
            logger.error(f"Conversation prune failed: {e}")


@app.on_event("startup")
async def startup_event():
    """Configure logging, connect storage and start background pruning."""
    global _prune_task
    logging.basicConfig(level=settings.log_level.upper())

    await repository.connect()

    if settings.prune_interval_seconds > 0:
        _prune_task = asyncio.create_task(_prune_periodically(settings.prune_interval_seconds))

    logger.info(f"Streamrelay API started (storage={settings.storage_backend})")


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on shutdown."""
    global _prune_task
    if _prune_task:
        _prune_task.cancel()
        _prune_task = None
    await repository.disconnect()


# ============= Dependencies =============


def get_user_id(user_id: str | None = Header(alias="X-User-ID", default=None)) -> str:
    """Resolve the caller's user ID from the X-User-ID header."""
    return user_id or settings.default_user_id


def get_store() -> ConversationStore:
    return conversation_store


def get_relay() -> ChatRelay:
    return get_chat_relay()


def get_catalog() -> ModelCatalog:
    return model_catalog


# ============= Error Handling =============


def _error_response(
    status_code: int,
    code: ApiErrorCode,
    message: str,
    details=None,
) -> JSONResponse:
    body = ApiResponse(
        success=False,
        error=ErrorDetail(code=code, message=message, details=details),
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return _error_response(exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"][1:]),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return _error_response(400, ApiErrorCode.VALIDATION_ERROR, "Validation error", details)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(500, ApiErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


# ============= Health & Info =============


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Streamrelay API", "version": __version__}


@app.get("/health", response_model=HealthResponse)
async def health(relay: ChatRelay = Depends(get_relay)):
    """Health check. Reports provider status; the server itself answers 200."""
    status = await relay.health_check()
    return HealthResponse(status=status.status, details=status.details, version=__version__)


@app.get("/api")
async def api_index():
    return {
        "message": "Streamrelay API",
        "version": __version__,
        "endpoints": {
            "chat": "/api/chat - Send messages and get streaming responses",
            "conversations": "/api/conversations - Manage conversations",
            "models": "/api/models - Get available AI models",
        },
    }


# ============= Chat Endpoints =============


@app.post("/api/chat")
async def chat(
    request: ChatRequest,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
    relay: ChatRelay = Depends(get_relay),
):
    """Send a message and stream the assistant's reply as SSE."""
    if request.conversation_id:
        conversation = await store.get_conversation(request.conversation_id, user_id)
        if not conversation:
            raise conversation_not_found()
    else:
        title = request.message
        if len(title) > TITLE_LENGTH:
            title = title[:TITLE_LENGTH] + "..."
        conversation = await store.create_conversation(title, request.settings, user_id)
        request = request.model_copy(update={"conversation_id": conversation.id})

    # History is resolved before the user turn is stored so it is sent once
    messages = await relay.resolve_messages(request, user_id)

    await store.add_message(
        conversation.id,
        Message(
            id=new_message_id("user"),
            content=request.message,
            role="user",
            conversation_id=conversation.id,
        ),
        user_id,
    )

    return create_sse_response(
        chat_event_stream(relay, store, request, messages, user_id)
    )


# ============= Conversation Endpoints =============


@app.get("/api/conversations", response_model=list[Conversation])
async def list_conversations(
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
):
    """List user's conversations, most recently updated first."""
    return await store.list_conversations(user_id)


@app.post("/api/conversations", response_model=Conversation, status_code=201)
async def create_conversation(
    body: ConversationCreateRequest,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
):
    """Create a new conversation."""
    return await store.create_conversation(body.title, body.settings, user_id)


@app.get("/api/conversations/stats", response_model=ConversationStats)
async def conversation_stats(
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
):
    """Get conversation statistics for the user."""
    return await store.get_stats(user_id)


@app.get("/api/conversations/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
):
    """Get a conversation with its messages."""
    conversation = await store.get_conversation(conversation_id, user_id)
    if not conversation:
        raise conversation_not_found()
    return conversation


@app.patch("/api/conversations/{conversation_id}", response_model=Conversation)
async def update_conversation(
    conversation_id: str,
    update: ConversationUpdate,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
):
    """Update a conversation's title and/or settings."""
    conversation = await store.update_conversation(conversation_id, update, user_id)
    if not conversation:
        raise conversation_not_found()
    return conversation


@app.delete("/api/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
):
    """Delete a conversation."""
    if not await store.delete_conversation(conversation_id, user_id):
        raise conversation_not_found()
    return Response(status_code=204)


@app.get(
    "/api/conversations/{conversation_id}/history",
    response_model=ConversationHistoryResponse,
)
async def get_conversation_history(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
):
    """Get a conversation along with the history the model would see."""
    conversation = await store.get_conversation(conversation_id, user_id)
    if not conversation:
        raise conversation_not_found()
    history = await store.get_history(conversation_id, user_id) or []
    return ConversationHistoryResponse(conversation=conversation, history=history)


# ============= Model Endpoints =============


@app.get("/api/models", response_model=list[Model])
async def list_models(catalog: ModelCatalog = Depends(get_catalog)):
    """List available models."""
    return await catalog.get_models()


@app.get("/api/models/{model_id}", response_model=Model)
async def get_model(model_id: str, catalog: ModelCatalog = Depends(get_catalog)):
    """Get a specific model."""
    model = await catalog.get_model(model_id)
    if not model:
        raise ApiError(404, ApiErrorCode.MODEL_NOT_FOUND, "Model not found")
    return model


@app.get("/api/models/{model_id}/defaults", response_model=ConversationSettings)
async def get_model_defaults(model_id: str, catalog: ModelCatalog = Depends(get_catalog)):
    """Default conversation settings for a model (conservative for unknown ids)."""
    return await catalog.default_settings(model_id)


def main():
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
