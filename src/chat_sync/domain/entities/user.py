from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.ids import UserId


@dataclass(frozen=True, slots=True)
class UserInfo:
    id: UserId
    full_name: str = ""
    email: str | None = None
    avatar_url: str | None = None
