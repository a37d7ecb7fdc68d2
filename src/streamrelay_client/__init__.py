"""Client runtime for streamrelay: chat sessions, offline queue and sync."""

from streamrelay_client.api_client import ApiError, ChatApiClient
from streamrelay_client.offline import ConnectivityMonitor, OfflineQueue
from streamrelay_client.persistence import (
    ClientPersistence,
    JsonFileStorage,
    MemoryStorage,
)
from streamrelay_client.runtime import ClientRuntime
from streamrelay_client.session import ChatSession, SendStatus, SessionState
from streamrelay_client.sync import SyncResult, merge_conversation, merge_conversations

__all__ = [
    "ApiError",
    "ChatApiClient",
    "ChatSession",
    "ClientPersistence",
    "ClientRuntime",
    "ConnectivityMonitor",
    "JsonFileStorage",
    "MemoryStorage",
    "OfflineQueue",
    "SendStatus",
    "SessionState",
    "SyncResult",
    "merge_conversation",
    "merge_conversations",
]
