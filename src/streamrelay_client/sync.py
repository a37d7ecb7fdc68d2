"""Reconciling locally held conversations with the server's copy."""

import logging
from typing import Awaitable, Callable

from pydantic import BaseModel

from chatshared import Conversation, UnsentMessage
from streamrelay_client.persistence import ClientPersistence

logger = logging.getLogger(__name__)

PERSIST_FAILED_MESSAGE = "Failed to persist merged conversations"


class SyncResult(BaseModel):
    """Outcome of a sync or replay; failures are reported, never raised."""

    success: bool
    merged_conversations: list[Conversation] | None = None
    failed_messages: list[UnsentMessage] | None = None
    error: str | None = None


def merge_conversation(local: Conversation, backend: Conversation) -> Conversation:
    """Resolve one conversation held on both sides.

    The backend wins unless the local copy is strictly newer. Even then the
    backend's fields are kept; only messages it has not seen are carried
    over from the local copy.
    """
    if backend.updated_at >= local.updated_at:
        return backend

    backend_ids = {m.id for m in backend.messages}
    local_only = [m for m in local.messages if m.id not in backend_ids]
    if not local_only:
        return backend

    messages = sorted([*backend.messages, *local_only], key=lambda m: m.timestamp)
    return backend.model_copy(update={"messages": messages})


def merge_conversations(
    local: list[Conversation], backend: list[Conversation]
) -> list[Conversation]:
    """Merge two conversation lists, newest first.

    Conversations only present locally are kept; they have not been synced
    yet rather than deleted on the server.
    """
    local_by_id = {c.id: c for c in local}
    backend_ids = {c.id for c in backend}

    merged = [
        merge_conversation(local_by_id[conv.id], conv) if conv.id in local_by_id else conv
        for conv in backend
    ]
    merged.extend(conv for conv in local if conv.id not in backend_ids)

    return sorted(merged, key=lambda c: c.updated_at, reverse=True)


async def sync_with_backend(
    local: list[Conversation],
    fetch_backend: Callable[[], Awaitable[list[Conversation]]],
    persistence: ClientPersistence,
) -> SyncResult:
    """Fetch, merge and persist.

    A failed fetch leaves durable state untouched. A failed write is reported
    as a failure that still carries the merged list.
    """
    try:
        backend = await fetch_backend()
        merged = merge_conversations(local, backend)
    except Exception as e:
        logger.error(f"Sync failed: {e}")
        return SyncResult(success=False, error=str(e) or "Unknown error")

    if not persistence.save_conversations(merged):
        logger.error("Sync merged conversations but could not persist them")
        return SyncResult(
            success=False,
            merged_conversations=merged,
            error=PERSIST_FAILED_MESSAGE,
        )

    logger.info(f"Synced {len(merged)} conversations")
    return SyncResult(success=True, merged_conversations=merged)
