"""Durable client-side storage for conversations and the unsent queue."""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter

from chatshared import Conversation, UnsentMessage, utcnow

logger = logging.getLogger(__name__)

STORAGE_VERSION = "1.0"


class StorageKeys:
    VERSION = "streamrelay_version"
    CONVERSATIONS = "streamrelay_conversations"
    CURRENT_CONVERSATION_ID = "streamrelay_current_conversation_id"
    UNSENT_MESSAGES = "streamrelay_unsent_messages"
    LAST_SYNC = "streamrelay_last_sync"

    ALL = (VERSION, CONVERSATIONS, CURRENT_CONVERSATION_ID, UNSENT_MESSAGES, LAST_SYNC)


_conversation_list = TypeAdapter(list[Conversation])
_unsent_list = TypeAdapter(list[UnsentMessage])


class KeyValueStorage(Protocol):
    """String key/value store. Implementations may raise OSError."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """In-process storage, used for tests and ephemeral clients."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStorage:
    """All keys in one JSON document, rewritten atomically on every change."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".streamrelay-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class ClientPersistence:
    """Typed access to the client's durable state.

    Reads never raise: unreadable or corrupt data is logged and read as empty.
    Writes report failure by returning False.
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def check_version(self) -> bool:
        """Return True when stored data matches the current layout.

        On a mismatch or missing marker, legacy data is dropped without being
        parsed and the current marker is written.
        """
        try:
            stored = self.storage.get(StorageKeys.VERSION)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read storage version: {e}")
            stored = None

        if stored == STORAGE_VERSION:
            return True

        logger.info(f"Storage version {stored!r} != {STORAGE_VERSION!r}; starting fresh")
        self.clear_all()
        try:
            self.storage.set(StorageKeys.VERSION, STORAGE_VERSION)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to write storage version: {e}")
        return False

    # ============= Conversations =============

    def save_conversations(self, conversations: list[Conversation]) -> bool:
        """Persist the conversation list and stamp the last-sync time."""
        try:
            self.storage.set(
                StorageKeys.CONVERSATIONS,
                _conversation_list.dump_json(conversations, by_alias=True).decode(),
            )
            self.storage.set(StorageKeys.LAST_SYNC, utcnow().isoformat())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save conversations: {e}")
            return False
        return True

    def load_conversations(self) -> list[Conversation]:
        try:
            data = self.storage.get(StorageKeys.CONVERSATIONS)
            if not data:
                return []
            return _conversation_list.validate_json(data)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load conversations: {e}")
            return []

    def save_current_conversation_id(self, conversation_id: str | None) -> bool:
        try:
            if conversation_id is None:
                self.storage.remove(StorageKeys.CURRENT_CONVERSATION_ID)
            else:
                self.storage.set(StorageKeys.CURRENT_CONVERSATION_ID, conversation_id)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save current conversation ID: {e}")
            return False
        return True

    def load_current_conversation_id(self) -> str | None:
        try:
            return self.storage.get(StorageKeys.CURRENT_CONVERSATION_ID)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load current conversation ID: {e}")
            return None

    # ============= Unsent messages =============

    def load_unsent_messages(self) -> list[UnsentMessage]:
        try:
            data = self.storage.get(StorageKeys.UNSENT_MESSAGES)
            if not data:
                return []
            return _unsent_list.validate_json(data)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load unsent messages: {e}")
            return []

    def _write_unsent(self, messages: list[UnsentMessage]) -> bool:
        try:
            self.storage.set(
                StorageKeys.UNSENT_MESSAGES,
                _unsent_list.dump_json(messages, by_alias=True).decode(),
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save unsent messages: {e}")
            return False
        return True

    def save_unsent_message(self, message: UnsentMessage) -> bool:
        return self._write_unsent([*self.load_unsent_messages(), message])

    def remove_unsent_message(self, message_id: str) -> bool:
        remaining = [m for m in self.load_unsent_messages() if m.id != message_id]
        return self._write_unsent(remaining)

    def clear_unsent_messages(self) -> bool:
        try:
            self.storage.remove(StorageKeys.UNSENT_MESSAGES)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to clear unsent messages: {e}")
            return False
        return True

    # ============= Misc =============

    def get_last_sync_time(self) -> datetime | None:
        try:
            value = self.storage.get(StorageKeys.LAST_SYNC)
            return datetime.fromisoformat(value) if value else None
        except (OSError, ValueError) as e:
            logger.error(f"Failed to get last sync time: {e}")
            return None

    def clear_all(self) -> bool:
        try:
            for key in StorageKeys.ALL:
                self.storage.remove(key)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to clear storage: {e}")
            return False
        return True
