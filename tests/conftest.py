"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
import pytest

from chat_sync.application.dto.credential import Credential
from chat_sync.application.exceptions import AuthError, NotConnectedError
from chat_sync.config import settings
from chat_sync.domain.entities.message import Message, Reaction
from chat_sync.domain.entities.user import UserInfo
from chat_sync.infrastructure.http.history_loader import HistoryLoader

BASE_URL = "http://testserver"


@pytest.fixture
def credential() -> Credential:
    return Credential(token="test-token", role="STUDENT", subject_id="42")


def make_user(user_id: str = "42", full_name: str = "Test User") -> UserInfo:
    return UserInfo(id=user_id, full_name=full_name)


def make_reaction(
    *,
    reaction_id: str | None = "r1",
    emoji: str = "👍",
    user_id: str = "42",
) -> Reaction:
    return Reaction(id=reaction_id, emoji=emoji, user=make_user(user_id))


def make_message(
    message_id: str,
    *,
    created_at: str = "2024-01-01T10:00:00",
    content: str = "hello",
    user_id: str | None = "42",
    reactions: tuple[Reaction, ...] = (),
) -> Message:
    return Message(
        id=message_id,
        user=make_user(user_id) if user_id is not None else None,
        content=content,
        created_at=created_at,
        reactions=reactions,
    )


def message_payload(
    message_id: str,
    *,
    created_at: str = "2024-01-01T10:00:00",
    content: str = "hello",
    user_id: str = "42",
) -> dict[str, Any]:
    """Wire shape of a chat message as the server sends it."""
    return {
        "id": message_id,
        "user": {"id": user_id, "fullName": f"User {user_id}"},
        "content": content,
        "createdAt": created_at,
        "replyToMessageId": None,
        "reactions": [],
    }


@dataclass
class FakeHistoryServer:
    """Serves Spring-style history pages, newest first."""

    messages: dict[str, list[dict[str, Any]]] = field(default_factory=dict)  # ascending
    page_size: int = 50
    fail_status: int | None = None
    gate: asyncio.Event | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"detail": "boom"})

        conversation_id = request.url.path.split("/")[3]
        page = int(request.url.params.get("page", "0"))
        size = int(request.url.params.get("size", str(self.page_size)))
        newest_first = list(reversed(self.messages.get(conversation_id, [])))
        chunk = newest_first[page * size:(page + 1) * size]
        last = (page + 1) * size >= len(newest_first)
        return httpx.Response(200, json={"content": chunk, "last": last, "number": page})

    def pages_requested(self) -> list[int]:
        return [int(r.url.params.get("page", "0")) for r in self.requests]


def make_history_loader(
    server: FakeHistoryServer | Callable[[httpx.Request], Any],
    *,
    page_size: int = 50,
    history_path: str = settings.HISTORY_PATH,
) -> HistoryLoader:
    handler = server.handler if isinstance(server, FakeHistoryServer) else server
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return HistoryLoader(http, page_size=page_size, history_path=history_path)


@dataclass
class FakeSubscription:
    transport: FakeTransport
    topic: str
    handler: Callable[[str], None]
    active: bool = True

    async def unsubscribe(self) -> None:
        self.active = False
        self.transport.unsubscribed.append(self.topic)


@dataclass
class FakeTransport:
    connect_error: Exception | None = None
    subscribe_error: Exception | None = None
    connect_gate: asyncio.Event | None = None
    send_gate: asyncio.Event | None = None
    connected: bool = False
    credentials: list[Credential] = field(default_factory=list)
    subscriptions: list[FakeSubscription] = field(default_factory=list)
    unsubscribed: list[str] = field(default_factory=list)
    sent: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    disconnect_calls: int = 0
    on_close: Callable[[Exception | None], None] | None = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self, credential: Credential) -> None:
        self.credentials.append(credential)
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def subscribe(self, topic: str, handler: Callable[[str], None]) -> FakeSubscription:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        if not self.connected:
            raise NotConnectedError(f"Cannot subscribe to {topic} while disconnected")
        subscription = FakeSubscription(self, topic, handler)
        self.subscriptions.append(subscription)
        return subscription

    async def send(self, destination: str, payload: dict[str, Any]) -> None:
        if not self.connected:
            raise NotConnectedError(f"Cannot send to {destination} while disconnected")
        if self.send_gate is not None:
            await self.send_gate.wait()
        self.sent.append((destination, payload))

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False
        for subscription in self.subscriptions:
            subscription.active = False

    def set_on_close(self, callback: Callable[[Exception | None], None] | None) -> None:
        self.on_close = callback

    def deliver(self, body: str) -> None:
        """Push a frame body to every active subscription."""
        for subscription in self.subscriptions:
            if subscription.active:
                subscription.handler(body)

    def drop(self, error: Exception | None = None) -> None:
        self.connected = False
        for subscription in self.subscriptions:
            subscription.active = False
        if self.on_close is not None:
            self.on_close(error)


@dataclass
class FakeCredentialProvider:
    credential: Credential = field(default_factory=lambda: Credential(token="test-token"))
    error: AuthError | None = None
    calls: int = 0

    async def resolve(self) -> Credential:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.credential
