"""Pure merge functions: (state, event) -> state.

None of these mutate their input. When an event changes nothing the same
state object is returned, which lets the store skip listener notification.
"""
from __future__ import annotations

import heapq
from dataclasses import replace
from typing import Iterable

from chat_sync.domain.entities.conversation import ConversationState
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.inbound import InboundEvent
from chat_sync.domain.events.presence_changed import PresenceSnapshot, PresenceUpdate
from chat_sync.domain.events.reaction_changed import ReactionDelta
from chat_sync.domain.events.typing_changed import TypingNotice
from chat_sync.domain.value_objects.enums import EventKind, ReactionAction
from chat_sync.domain.value_objects.ids import ConversationId


def empty_state(conversation_id: str) -> ConversationState:
    return ConversationState(conversation_id=ConversationId(conversation_id))


def merge_history(state: ConversationState, messages: Iterable[Message]) -> ConversationState:
    """Backfill path: splice an ascending page into place.

    Ids already present are ignored (first seen wins). The merge is stable,
    so the relative order of messages already in the state is never changed.
    """
    seen = set(state.message_ids)
    fresh: list[Message] = []
    for msg in messages:
        if msg.id in seen:
            continue
        seen.add(msg.id)
        fresh.append(msg)
    if not fresh:
        return state

    fresh.sort(key=lambda m: m.sort_key)
    merged = tuple(heapq.merge(state.messages, fresh, key=lambda m: m.sort_key))
    return replace(state, messages=merged, message_ids=frozenset(seen))


def apply_new_message(state: ConversationState, message: Message) -> ConversationState:
    """Realtime path: append to the tail in delivery order."""
    if message.id in state.message_ids:
        return state
    return replace(
        state,
        messages=state.messages + (message,),
        message_ids=state.message_ids | {message.id},
    )


def apply_reaction(state: ConversationState, delta: ReactionDelta) -> ConversationState:
    reaction = delta.reaction
    if reaction is None or delta.message_id not in state.message_ids:
        return state

    messages = list(state.messages)
    for idx, msg in enumerate(messages):
        if msg.id != delta.message_id:
            continue
        existing = next(
            (i for i, r in enumerate(msg.reactions) if r.is_equivalent(reaction)),
            None,
        )
        if delta.action == ReactionAction.ADDED:
            if existing is not None:
                return state
            reactions = msg.reactions + (reaction,)
        else:
            if existing is None:
                return state
            reactions = msg.reactions[:existing] + msg.reactions[existing + 1:]
        messages[idx] = replace(msg, reactions=reactions)
        return replace(state, messages=tuple(messages))
    return state


def apply_typing(state: ConversationState, notice: TypingNotice) -> ConversationState:
    status = notice.status
    typing = dict(state.typing)
    if status.is_typing:
        typing[status.user_id] = status
    elif typing.pop(status.user_id, None) is None:
        return state
    return replace(state, typing=typing)


def apply_presence(state: ConversationState, update: PresenceUpdate) -> ConversationState:
    status = update.status
    online = dict(state.online)
    if status.is_online:
        online[status.user_id] = status
    elif online.pop(status.user_id, None) is None:
        return state
    return replace(state, online=online)


def apply_presence_snapshot(
    state: ConversationState, snapshot: PresenceSnapshot,
) -> ConversationState:
    """Replace the online set; anyone not listed as online is now offline."""
    online = {s.user_id: s for s in snapshot.statuses if s.is_online}
    return replace(state, online=online)


def reduce(state: ConversationState, event: InboundEvent) -> ConversationState:
    if event.kind == EventKind.NEW_MESSAGE:
        return apply_new_message(state, event.message)
    if event.kind == EventKind.REACTION_DELTA:
        return apply_reaction(state, event)
    if event.kind == EventKind.TYPING_NOTICE:
        return apply_typing(state, event)
    if event.kind == EventKind.PRESENCE_UPDATE:
        return apply_presence(state, event)
    if event.kind == EventKind.PRESENCE_SNAPSHOT:
        return apply_presence_snapshot(state, event)
    return state
