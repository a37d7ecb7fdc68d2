"""In-process conversation repository."""

from dataclasses import dataclass
from datetime import datetime

from chatshared import Conversation, Message


@dataclass
class _Record:
    user_id: str
    conversation: Conversation


class MemoryConversationRepository:
    """Dict-backed repository. Returned models are copies, never live state."""

    def __init__(self):
        self._records: dict[str, _Record] = {}

    async def connect(self):
        pass

    async def disconnect(self):
        pass

    async def create_conversation(self, conversation: Conversation, user_id: str) -> Conversation:
        self._records[conversation.id] = _Record(
            user_id=user_id, conversation=conversation.model_copy(deep=True)
        )
        return conversation.model_copy(deep=True)

    async def get_conversation(
        self, conversation_id: str, user_id: str | None = None
    ) -> Conversation | None:
        record = self._records.get(conversation_id)
        if not record or (user_id is not None and record.user_id != user_id):
            return None
        return record.conversation.model_copy(deep=True)

    async def list_conversations(self, user_id: str | None = None) -> list[Conversation]:
        return [
            record.conversation.model_copy(deep=True)
            for record in self._records.values()
            if user_id is None or record.user_id == user_id
        ]

    async def update_conversation(self, conversation: Conversation) -> Conversation | None:
        """Write title, settings and updated_at; messages are left untouched."""
        record = self._records.get(conversation.id)
        if not record:
            return None
        record.conversation = record.conversation.model_copy(
            update={
                "title": conversation.title,
                "settings": conversation.settings.model_copy(),
                "updated_at": conversation.updated_at,
            }
        )
        return record.conversation.model_copy(deep=True)

    async def delete_conversation(self, conversation_id: str) -> bool:
        return self._records.pop(conversation_id, None) is not None

    async def append_message(
        self, conversation_id: str, message: Message, updated_at: datetime
    ) -> bool:
        record = self._records.get(conversation_id)
        if not record:
            return False
        record.conversation.messages.append(message.model_copy())
        record.conversation.updated_at = updated_at
        return True

    async def delete_all(self) -> int:
        count = len(self._records)
        self._records.clear()
        return count
