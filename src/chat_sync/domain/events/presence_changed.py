from __future__ import annotations

from dataclasses import dataclass, field

from chat_sync.domain.entities.presence import PresenceStatus
from chat_sync.domain.value_objects.enums import EventKind


@dataclass(frozen=True, slots=True)
class PresenceUpdate:
    status: PresenceStatus
    kind: EventKind = field(default=EventKind.PRESENCE_UPDATE, init=False)


@dataclass(frozen=True, slots=True)
class PresenceSnapshot:
    statuses: tuple[PresenceStatus, ...]
    kind: EventKind = field(default=EventKind.PRESENCE_SNAPSHOT, init=False)
