from __future__ import annotations

from enum import StrEnum


class EngineState(StrEnum):
    IDLE = "idle"
    LOADING_HISTORY = "loading_history"
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    LIVE = "live"
    CLOSING = "closing"


class EventKind(StrEnum):
    NEW_MESSAGE = "new_message"
    REACTION_DELTA = "reaction_delta"
    TYPING_NOTICE = "typing_notice"
    PRESENCE_UPDATE = "presence_update"
    PRESENCE_SNAPSHOT = "presence_snapshot"
    UNKNOWN = "unknown"


class ReactionAction(StrEnum):
    ADDED = "added"
    REMOVED = "removed"
