from __future__ import annotations

from chat_sync.domain.entities.message import Message, Reaction
from chat_sync.domain.entities.presence import PresenceStatus, TypingStatus
from chat_sync.domain.entities.user import UserInfo
from chat_sync.domain.value_objects.ids import MessageId, UserId
from chat_sync.infrastructure.transport.protocol import (
    MessagePayload,
    PresencePayload,
    ReactionPayload,
    TypingPayload,
    UserPayload,
)


def user_to_entity(payload: UserPayload | None) -> UserInfo | None:
    if payload is None:
        return None
    return UserInfo(
        id=UserId(payload.id),
        full_name=payload.full_name,
        email=payload.email,
        avatar_url=payload.avatar_url,
    )


def reaction_to_entity(payload: ReactionPayload) -> Reaction:
    return Reaction(
        id=payload.id,
        emoji=payload.emoji,
        user=UserInfo(
            id=UserId(payload.user.id),
            full_name=payload.user.full_name,
            email=payload.user.email,
            avatar_url=payload.user.avatar_url,
        ),
        created_at=payload.created_at,
    )


def message_to_entity(payload: MessagePayload) -> Message:
    return Message(
        id=MessageId(payload.id),
        user=user_to_entity(payload.user),
        content=payload.content,
        created_at=payload.created_at,
        reply_to_message_id=MessageId(payload.reply_to_message_id) if payload.reply_to_message_id else None,
        reactions=tuple(reaction_to_entity(r) for r in payload.reactions),
    )


def typing_to_entity(payload: TypingPayload) -> TypingStatus:
    return TypingStatus(
        user_id=UserId(payload.user_id),
        user=user_to_entity(payload.user),
        is_typing=payload.is_typing,
    )


def presence_to_entity(payload: PresencePayload) -> PresenceStatus:
    return PresenceStatus(
        user_id=UserId(payload.user_id),
        user=user_to_entity(payload.user),
        is_online=payload.is_online,
    )
