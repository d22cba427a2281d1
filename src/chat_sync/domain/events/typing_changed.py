from __future__ import annotations

from dataclasses import dataclass, field

from chat_sync.domain.entities.presence import TypingStatus
from chat_sync.domain.value_objects.enums import EventKind


@dataclass(frozen=True, slots=True)
class TypingNotice:
    status: TypingStatus
    kind: EventKind = field(default=EventKind.TYPING_NOTICE, init=False)
