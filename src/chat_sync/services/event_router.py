"""Decode topic payloads into tagged events and feed them to the store.

The conversation topic carries several payload kinds with no type tag, so
the decoder tells them apart by shape. First match wins:

1. new message       -> ``id`` and ``content``
2. reaction delta    -> ``messageId`` and ``reaction``
3. typing notice     -> ``userId`` and boolean ``isTyping``
4. presence update   -> ``userId`` and boolean ``isOnline``
5. presence snapshot -> non-empty array of presence-update objects
"""
from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from chat_sync.domain.events.inbound import InboundEvent, UnknownEvent
from chat_sync.domain.events.message_received import NewMessage
from chat_sync.domain.events.presence_changed import PresenceSnapshot, PresenceUpdate
from chat_sync.domain.events.reaction_changed import ReactionDelta
from chat_sync.domain.events.typing_changed import TypingNotice
from chat_sync.domain.value_objects.enums import EventKind
from chat_sync.domain.value_objects.ids import MessageId
from chat_sync.infrastructure.transport import mappers
from chat_sync.infrastructure.transport.protocol import (
    MessagePayload,
    PresencePayload,
    ReactionUpdatePayload,
    TypingPayload,
)
from chat_sync.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


def _is_presence_shaped(entry: Any) -> bool:
    return (
        isinstance(entry, dict)
        and bool(entry.get("userId"))
        and isinstance(entry.get("isOnline"), bool)
    )


def classify_payload(data: Any) -> InboundEvent:
    try:
        if isinstance(data, dict):
            if data.get("id") and data.get("content"):
                payload = MessagePayload.model_validate(data)
                return NewMessage(message=mappers.message_to_entity(payload))

            if data.get("messageId") and data.get("reaction"):
                delta = ReactionUpdatePayload.model_validate(data)
                return ReactionDelta(
                    message_id=MessageId(delta.message_id),
                    reaction=mappers.reaction_to_entity(delta.reaction) if delta.reaction else None,
                    action=delta.action,
                )

            if data.get("userId") and isinstance(data.get("isTyping"), bool):
                typing = TypingPayload.model_validate(data)
                return TypingNotice(status=mappers.typing_to_entity(typing))

            if _is_presence_shaped(data):
                presence = PresencePayload.model_validate(data)
                return PresenceUpdate(status=mappers.presence_to_entity(presence))

            return UnknownEvent(reason="unrecognised object shape")

        if isinstance(data, list) and data and all(_is_presence_shaped(e) for e in data):
            statuses = tuple(
                mappers.presence_to_entity(PresencePayload.model_validate(e)) for e in data
            )
            return PresenceSnapshot(statuses=statuses)
    except ValidationError as exc:
        return UnknownEvent(reason=f"invalid payload: {exc.error_count()} errors")

    return UnknownEvent(reason=f"unrecognised {type(data).__name__} payload")


def classify(raw: str | bytes) -> InboundEvent:
    try:
        data = json.loads(raw)
    except ValueError:
        return UnknownEvent(reason="payload is not JSON")
    return classify_payload(data)


class EventRouter:
    """Routes each raw topic payload to exactly one store dispatch."""

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    def route(self, raw: str | bytes) -> InboundEvent:
        event = classify(raw)
        if event.kind == EventKind.UNKNOWN:
            logger.debug("Dropping topic payload: %s", event.reason)
            return event
        self._store.dispatch(event)
        return event
