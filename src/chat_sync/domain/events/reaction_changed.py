from __future__ import annotations

from dataclasses import dataclass, field

from chat_sync.domain.entities.message import Reaction
from chat_sync.domain.value_objects.enums import EventKind
from chat_sync.domain.value_objects.ids import MessageId


@dataclass(frozen=True, slots=True)
class ReactionDelta:
    message_id: MessageId
    reaction: Reaction | None
    action: str  # "added" | "removed"; anything but "added" removes
    kind: EventKind = field(default=EventKind.REACTION_DELTA, init=False)
