"""Tagged union of everything the conversation topic can carry."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from chat_sync.domain.events.message_received import NewMessage
from chat_sync.domain.events.presence_changed import PresenceSnapshot, PresenceUpdate
from chat_sync.domain.events.reaction_changed import ReactionDelta
from chat_sync.domain.events.typing_changed import TypingNotice
from chat_sync.domain.value_objects.enums import EventKind


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    reason: str = ""
    kind: EventKind = field(default=EventKind.UNKNOWN, init=False)


InboundEvent = Union[
    NewMessage,
    ReactionDelta,
    TypingNotice,
    PresenceUpdate,
    PresenceSnapshot,
    UnknownEvent,
]
