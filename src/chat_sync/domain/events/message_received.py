from __future__ import annotations

from dataclasses import dataclass, field

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import EventKind


@dataclass(frozen=True, slots=True)
class NewMessage:
    message: Message
    kind: EventKind = field(default=EventKind.NEW_MESSAGE, init=False)
