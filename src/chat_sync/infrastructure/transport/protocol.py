"""Wire models for the chat topic and its outbound destinations."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator

_WIRE_CONFIG = ConfigDict(
    populate_by_name=True,
    coerce_numbers_to_str=True,
    extra="ignore",
)


class UserPayload(BaseModel):
    model_config = _WIRE_CONFIG

    id: str
    full_name: str = Field(default="", alias="fullName")
    email: str | None = None
    avatar_url: str | None = Field(default=None, alias="avatarUrl")

    @field_validator("full_name", mode="before")
    @classmethod
    def _null_name(cls, value):
        return "" if value is None else value


class ReactionPayload(BaseModel):
    model_config = _WIRE_CONFIG

    id: str | None = None
    emoji: str
    user: UserPayload
    created_at: str | None = Field(default=None, alias="createdAt")


class MessagePayload(BaseModel):
    model_config = _WIRE_CONFIG

    id: str
    user: UserPayload | None = None
    content: str = ""
    created_at: str = Field(default="", alias="createdAt")
    reply_to_message_id: str | None = Field(default=None, alias="replyToMessageId")
    reactions: list[ReactionPayload] = Field(default_factory=list)

    @field_validator("content", "created_at", mode="before")
    @classmethod
    def _null_text(cls, value):
        return "" if value is None else value

    @field_validator("reactions", mode="before")
    @classmethod
    def _null_reactions(cls, value):
        return [] if value is None else value


class ReactionUpdatePayload(BaseModel):
    model_config = _WIRE_CONFIG

    message_id: str = Field(alias="messageId")
    reaction: ReactionPayload | None = None
    action: str = "added"


class TypingPayload(BaseModel):
    model_config = _WIRE_CONFIG

    user_id: str = Field(alias="userId")
    user: UserPayload | None = None
    is_typing: StrictBool = Field(alias="isTyping")


class PresencePayload(BaseModel):
    model_config = _WIRE_CONFIG

    user_id: str = Field(alias="userId")
    user: UserPayload | None = None
    is_online: StrictBool = Field(alias="isOnline")


# Outbound (client -> server)


class SendMessageRequest(BaseModel):
    model_config = _WIRE_CONFIG

    content: str
    reply_to_message_id: str | None = Field(default=None, alias="replyToMessageId")


class ReactRequest(BaseModel):
    model_config = _WIRE_CONFIG

    message_id: str = Field(alias="messageId")
    emoji: str


class TypingRequest(BaseModel):
    model_config = _WIRE_CONFIG

    is_typing: bool = Field(alias="isTyping")
