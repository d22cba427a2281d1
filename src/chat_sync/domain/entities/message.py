from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.user import UserInfo
from chat_sync.domain.value_objects.ids import MessageId


@dataclass(frozen=True, slots=True)
class Reaction:
    id: str | None
    emoji: str
    user: UserInfo
    created_at: str | None = None

    def is_equivalent(self, other: Reaction) -> bool:
        """Same reaction by id, or by (emoji, user) when either id is missing."""
        if self.id is not None and other.id is not None and self.id == other.id:
            return True
        return self.emoji == other.emoji and self.user.id == other.user.id


@dataclass(frozen=True, slots=True)
class Message:
    id: MessageId
    user: UserInfo | None  # None for system messages
    content: str
    created_at: str
    reply_to_message_id: MessageId | None = None
    reactions: tuple[Reaction, ...] = ()

    @property
    def is_system(self) -> bool:
        return self.user is None

    @property
    def sort_key(self) -> tuple[str, str]:
        return self.created_at, self.id
