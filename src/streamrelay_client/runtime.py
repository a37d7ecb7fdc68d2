"""Client runtime wiring the API client, durable state, queue and sessions."""

import asyncio
import logging
from pathlib import Path

from chatshared import (
    ChatRequest,
    ChatResponse,
    Conversation,
    ConversationSettings,
    Message,
    upsert_message,
)
from streamrelay_client.api_client import ChatApiClient
from streamrelay_client.config import ClientSettings, client_settings
from streamrelay_client.offline import ConnectivityMonitor, OfflineQueue
from streamrelay_client.persistence import ClientPersistence, JsonFileStorage
from streamrelay_client.session import ChatSession
from streamrelay_client.sync import SyncResult, sync_with_backend

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = ConversationSettings(model="gpt-3.5-turbo", temperature=0.7, max_tokens=4096)
STATE_FILE = "state.json"


class ClientRuntime:
    """Holds the client's conversation list and keeps it durable.

    Each offline -> online transition schedules `reconnect()` on the running
    event loop: queued messages are replayed first, then the conversation
    list is reconciled with the server.
    """

    def __init__(
        self,
        api: ChatApiClient,
        persistence: ClientPersistence,
        offline_queue: OfflineQueue | None = None,
    ):
        self.api = api
        self.persistence = persistence
        self.offline_queue = offline_queue or OfflineQueue(persistence)
        self.conversations: list[Conversation] = []
        self.current_conversation_id: str | None = None
        self._sessions: dict[str, ChatSession] = {}
        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_pending = False
        self.connectivity_interval = client_settings.connectivity_interval

        self.offline_queue.on_reconnect.subscribe(self._schedule_reconnect)

    @classmethod
    def from_settings(cls, config: ClientSettings = client_settings) -> "ClientRuntime":
        """Build a runtime with file-backed state under `config.data_dir`."""
        storage = JsonFileStorage(Path(config.data_dir).expanduser() / STATE_FILE)
        api = ChatApiClient(
            base_url=config.api_base_url,
            timeout=config.request_timeout,
            user_id=config.user_id,
        )
        runtime = cls(api, ClientPersistence(storage))
        runtime.connectivity_interval = config.connectivity_interval
        return runtime

    def connectivity_monitor(self) -> ConnectivityMonitor:
        """A monitor that checks the server and drives the offline queue."""
        return ConnectivityMonitor(
            self.offline_queue, self.api.is_reachable, self.connectivity_interval
        )

    def start(self) -> bool:
        """Hydrate from durable storage. Returns False on a first run."""
        current = self.persistence.check_version()
        self.conversations = sorted(
            self.persistence.load_conversations(), key=lambda c: c.updated_at, reverse=True
        )
        self.current_conversation_id = self.persistence.load_current_conversation_id()
        self.offline_queue.reload()
        logger.info(
            f"Client started with {len(self.conversations)} conversations, "
            f"{len(self.offline_queue.unsent_messages)} queued messages"
        )
        return current

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return next((c for c in self.conversations if c.id == conversation_id), None)

    def set_current_conversation(self, conversation_id: str | None) -> None:
        self.current_conversation_id = conversation_id
        self.persistence.save_current_conversation_id(conversation_id)

    def session_for(self, conversation_id: str) -> ChatSession:
        """The chat session for a conversation, created on first use."""
        session = self._sessions.get(conversation_id)
        if session is None:
            conversation = self.get_conversation(conversation_id)
            session = ChatSession(
                conversation_id,
                self.api.send_message,
                offline_queue=self.offline_queue,
                messages=conversation.messages if conversation else None,
            )
            session.on_message.subscribe(
                lambda message: self.add_message(conversation_id, message)
            )
            self._sessions[conversation_id] = session
        return session

    def add_message(self, conversation_id: str, message: Message) -> bool:
        """Upsert a message into the local conversation list."""
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return False

        upsert_message(conversation.messages, message)
        conversation.updated_at = max(conversation.updated_at, message.timestamp)
        self.conversations.sort(key=lambda c: c.updated_at, reverse=True)

        # Streaming replies are persisted once complete
        if not message.is_streaming:
            self.persistence.save_conversations(self.conversations)
        return True

    async def create_conversation(
        self, title: str, settings: ConversationSettings = DEFAULT_SETTINGS
    ) -> Conversation:
        conversation = await self.api.create_conversation(title, settings)
        self.conversations.insert(0, conversation)
        self.persistence.save_conversations(self.conversations)
        self.set_current_conversation(conversation.id)
        return conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        await self.api.delete_conversation(conversation_id)
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        self._sessions.pop(conversation_id, None)
        self.persistence.save_conversations(self.conversations)
        if self.current_conversation_id == conversation_id:
            self.set_current_conversation(self.conversations[0].id if self.conversations else None)

    async def _replay(self, conversation_id: str, content: str) -> None:
        conversation = self.get_conversation(conversation_id)
        request = ChatRequest(
            message=content,
            conversation_id=conversation_id,
            settings=conversation.settings if conversation else DEFAULT_SETTINGS,
        )

        def on_chunk(chunk: ChatResponse) -> None:
            if chunk.is_complete:
                self.add_message(
                    conversation_id,
                    Message(
                        id=chunk.id,
                        content=chunk.content,
                        role="assistant",
                        conversation_id=conversation_id,
                    ),
                )

        await self.api.send_message(request, on_chunk)

    async def sync(self) -> SyncResult:
        result = await sync_with_backend(
            self.conversations, self.api.get_conversations, self.persistence
        )
        # A merge that could not be persisted is still the freshest view
        if result.merged_conversations is not None:
            self.conversations = result.merged_conversations
            for conversation_id, session in self._sessions.items():
                conversation = self.get_conversation(conversation_id)
                if conversation and not session.is_sending:
                    session.messages = list(conversation.messages)
        return result

    async def reconnect(self) -> SyncResult:
        """Replay queued messages, then reconcile with the server."""
        replay = await self.offline_queue.send_unsent_messages(self._replay)
        synced = await self.sync()
        return SyncResult(
            success=replay.success and synced.success,
            merged_conversations=synced.merged_conversations,
            failed_messages=replay.failed_messages,
            error=synced.error,
        )

    async def _reconnect_until_settled(self) -> SyncResult:
        """Reconnect, then again for each transition that arrived meanwhile."""
        result = await self.reconnect()
        while self._reconnect_pending and self.offline_queue.is_online:
            self._reconnect_pending = False
            result = await self.reconnect()
        self._reconnect_pending = False
        return result

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_pending = True
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Reconnected outside an event loop; call reconnect() manually")
            return
        self._reconnect_task = loop.create_task(self._reconnect_until_settled())

    async def close(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        self._reconnect_pending = False
