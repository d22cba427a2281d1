from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.user import UserInfo
from chat_sync.domain.value_objects.ids import UserId


@dataclass(frozen=True, slots=True)
class TypingStatus:
    user_id: UserId
    user: UserInfo | None
    is_typing: bool


@dataclass(frozen=True, slots=True)
class PresenceStatus:
    user_id: UserId
    user: UserInfo | None
    is_online: bool
