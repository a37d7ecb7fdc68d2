"""Offline queue and connectivity tracking."""

import asyncio
import logging
from typing import Awaitable, Callable

from chatshared import UnsentMessage, new_message_id
from streamrelay_client.observers import ObserverRegistry
from streamrelay_client.persistence import ClientPersistence
from streamrelay_client.sync import SyncResult

logger = logging.getLogger(__name__)

ReplayFunction = Callable[[str, str], Awaitable[None]]


def new_unsent_message(conversation_id: str, content: str) -> UnsentMessage:
    return UnsentMessage(
        id=new_message_id("temp"),
        conversation_id=conversation_id,
        content=content,
    )


class OfflineQueue:
    """Connectivity state plus a durable queue of messages to replay.

    The in-memory mirror is only changed after the durable write succeeds,
    so the two agree at rest.
    """

    def __init__(self, persistence: ClientPersistence, online: bool = True):
        self.persistence = persistence
        self._online = online
        self._unsent: list[UnsentMessage] = persistence.load_unsent_messages()

        # on_reconnect() fires once per offline -> online transition
        self.on_reconnect = ObserverRegistry("reconnect")
        # on_status_change(is_online) fires on every transition
        self.on_status_change = ObserverRegistry("connectivity")

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def unsent_messages(self) -> list[UnsentMessage]:
        return list(self._unsent)

    def reload(self) -> None:
        """Re-read the queue from durable storage."""
        self._unsent = self.persistence.load_unsent_messages()

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return

        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self.on_status_change.notify(online)
        if online:
            self.on_reconnect.notify()

    def handle_online(self) -> None:
        self.set_online(True)

    def handle_offline(self) -> None:
        self.set_online(False)

    def queue_message(self, message: UnsentMessage) -> bool:
        """Durably append a message; no network is attempted."""
        if not self.persistence.save_unsent_message(message):
            return False
        self._unsent.append(message)
        logger.info(f"Queued message {message.id} for conversation {message.conversation_id}")
        return True

    def remove_from_queue(self, message_id: str) -> bool:
        if not self.persistence.remove_unsent_message(message_id):
            return False
        self._unsent = [m for m in self._unsent if m.id != message_id]
        return True

    def clear_queue(self) -> bool:
        if not self.persistence.clear_unsent_messages():
            return False
        self._unsent = []
        return True

    async def send_unsent_messages(self, send: ReplayFunction) -> SyncResult:
        """Replay queued messages in insertion order.

        A failed send leaves that message queued and moves on to the next one.
        """
        failed: list[UnsentMessage] = []

        for message in list(self._unsent):
            try:
                await send(message.conversation_id, message.content)
            except Exception as e:
                logger.error(f"Failed to send queued message {message.id}: {e}")
                failed.append(message)
                continue

            if not self.remove_from_queue(message.id):
                logger.warning(f"Sent queued message {message.id} but could not dequeue it")

        logger.info(f"Replay finished: {len(failed)} messages still queued")
        return SyncResult(success=not failed, failed_messages=failed)


class ConnectivityMonitor:
    """Polls a reachability check and feeds transitions into an OfflineQueue."""

    def __init__(
        self,
        queue: OfflineQueue,
        check: Callable[[], Awaitable[bool]],
        interval: float = 15.0,
    ):
        self.queue = queue
        self.check = check
        self.interval = interval

    async def check_once(self) -> bool:
        try:
            online = await self.check()
        except Exception as e:
            logger.debug(f"Connectivity check failed: {e}")
            online = False
        self.queue.set_online(online)
        return online

    async def run(self) -> None:
        """Check forever; cancel the task to stop."""
        while True:
            await self.check_once()
            await asyncio.sleep(self.interval)
