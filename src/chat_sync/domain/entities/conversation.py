from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.presence import PresenceStatus, TypingStatus
from chat_sync.domain.value_objects.ids import ConversationId, MessageId, UserId


@dataclass(frozen=True, slots=True)
class ConversationState:
    """Merged in-memory view of one conversation.

    ``messages`` is kept in ascending order; ``message_ids`` mirrors it for
    constant-time existence checks. Reducers never mutate an instance, they
    return a new one.
    """

    conversation_id: ConversationId
    messages: tuple[Message, ...] = ()
    message_ids: frozenset[MessageId] = frozenset()
    typing: Mapping[UserId, TypingStatus] = field(default_factory=dict)
    online: Mapping[UserId, PresenceStatus] = field(default_factory=dict)

    def get_message(self, message_id: MessageId) -> Message | None:
        if message_id not in self.message_ids:
            return None
        for msg in self.messages:
            if msg.id == message_id:
                return msg
        return None
