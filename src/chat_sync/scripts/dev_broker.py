"""Development broker: history endpoint, token exchange and a minimal STOMP relay.

Run with ``python -m chat_sync.scripts.dev_broker`` and point the client at
it (the default settings already do). Everything is kept in memory.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
import uvicorn
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect

from chat_sync.application.exceptions import FrameError
from chat_sync.config import settings
from chat_sync.infrastructure.auth.token_resolver import inspect_token
from chat_sync.infrastructure.transport.frames import Frame, decode_frames, encode_frame

logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "dev-broker-secret-not-for-production-use"
DEMO_CONVERSATION = "demo"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_dev_token(sub: str = "1", role: str = "STUDENT") -> str:
    exp = datetime.now(timezone.utc) + timedelta(hours=12)
    return jwt.encode({"sub": sub, "role": role, "exp": exp}, DEV_JWT_SECRET, algorithm="HS256")


@dataclass
class _Client:
    ws: WebSocket
    user: dict[str, Any]
    subscriptions: dict[str, str] = field(default_factory=dict)  # sub id -> topic


class BrokerState:
    """Conversations plus the STOMP subscription registry."""

    def __init__(self) -> None:
        self.messages: dict[str, list[dict[str, Any]]] = {}
        self.online: dict[str, dict[str, dict[str, Any]]] = {}
        self.clients: dict[int, _Client] = {}

    def add_message(
        self,
        conversation_id: str,
        user: dict[str, Any] | None,
        content: str,
        reply_to: str | None = None,
    ) -> dict[str, Any]:
        msg = {
            "id": uuid.uuid4().hex,
            "user": user,
            "content": content,
            "createdAt": _now(),
            "replyToMessageId": reply_to,
            "reactions": [],
        }
        self.messages.setdefault(conversation_id, []).append(msg)
        return msg

    def toggle_reaction(
        self, conversation_id: str, message_id: str, emoji: str, user: dict[str, Any],
    ) -> dict[str, Any] | None:
        for msg in self.messages.get(conversation_id, []):
            if msg["id"] != message_id:
                continue
            for reaction in msg["reactions"]:
                if reaction["emoji"] == emoji and reaction["user"]["id"] == user["id"]:
                    msg["reactions"].remove(reaction)
                    return {"messageId": message_id, "reaction": reaction, "action": "removed"}
            reaction = {"id": uuid.uuid4().hex, "emoji": emoji, "user": user, "createdAt": _now()}
            msg["reactions"].append(reaction)
            return {"messageId": message_id, "reaction": reaction, "action": "added"}
        return None

    def page(self, conversation_id: str, page: int, size: int) -> dict[str, Any]:
        """Spring-style page, newest first."""
        newest_first = list(reversed(self.messages.get(conversation_id, [])))
        total = len(newest_first)
        chunk = newest_first[page * size:(page + 1) * size]
        total_pages = (total + size - 1) // size if size else 0
        return {
            "content": chunk,
            "totalElements": total,
            "totalPages": total_pages,
            "size": size,
            "number": page,
            "first": page == 0,
            "last": page >= total_pages - 1,
        }

    async def broadcast(self, topic: str, body: dict[str, Any] | list[Any]) -> None:
        raw_body = json.dumps(body)
        dead: list[int] = []
        for key, client in list(self.clients.items()):
            for sub_id, sub_topic in list(client.subscriptions.items()):
                if sub_topic != topic:
                    continue
                frame = encode_frame("MESSAGE", {
                    "subscription": sub_id,
                    "destination": topic,
                    "message-id": uuid.uuid4().hex,
                    "content-type": "application/json",
                }, raw_body)
                try:
                    await client.ws.send_text(frame)
                except Exception:
                    dead.append(key)
        for key in dead:
            self.clients.pop(key, None)


def _conversation_of(destination: str) -> tuple[str, str] | None:
    """``/app/notebooks/<id>/chat.<action>`` -> (id, action)."""
    prefix, sep, action = destination.rpartition("/chat.")
    if not sep:
        return None
    return prefix.rsplit("/", 1)[-1], action


def _user_from_token(token: str) -> dict[str, Any] | None:
    credential = inspect_token(token)
    if credential is None:
        return None
    user_id = credential.subject_id or "anonymous"
    return {"id": user_id, "fullName": f"User {user_id}", "email": None, "avatarUrl": None}


def create_app(seed: bool = True) -> FastAPI:
    app = FastAPI(title="chat-sync dev broker", version="0.1.0")
    state = BrokerState()
    app.state.broker = state

    if seed:
        system = None
        alice = {"id": "1", "fullName": "Alice", "email": None, "avatarUrl": None}
        bob = {"id": "2", "fullName": "Bob", "email": None, "avatarUrl": None}
        state.add_message(DEMO_CONVERSATION, system, "Notebook chat created")
        state.add_message(DEMO_CONVERSATION, alice, "Has anyone read chapter 3?")
        state.add_message(DEMO_CONVERSATION, bob, "Yes, the flashcards helped")

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok", "clients": str(len(state.clients))}

    @app.get("/api/auth/token")
    async def token(request: Request) -> dict[str, str]:
        return {"token": request.cookies.get(settings.AUTH_COOKIE_NAME) or make_dev_token()}

    @app.get("/api/notebooks/{conversation_id}/chat/history")
    async def history(
        conversation_id: str,
        page: int = Query(0, ge=0),
        size: int = Query(settings.HISTORY_PAGE_SIZE, ge=1, le=200),
    ) -> dict[str, Any]:
        return state.page(conversation_id, page, size)

    @app.websocket(settings.WS_ENDPOINT)
    async def stomp(websocket: WebSocket, access_token: str = Query("")) -> None:
        user = _user_from_token(access_token)
        if user is None:
            await websocket.close(code=4001, reason="Authentication failed")
            return
        await websocket.accept()
        key = id(websocket)
        client = _Client(ws=websocket, user=user)
        state.clients[key] = client
        try:
            await _read_loop(state, client)
        except WebSocketDisconnect:
            pass
        finally:
            state.clients.pop(key, None)
            await _mark_offline(state, client)

    return app


async def _read_loop(state: BrokerState, client: _Client) -> None:
    while True:
        raw = await client.ws.receive_text()
        try:
            frames = decode_frames(raw)
        except FrameError as exc:
            await client.ws.send_text(encode_frame("ERROR", {"message": exc.detail}))
            continue
        for frame in frames:
            if not await _handle_frame(state, client, frame):
                return


async def _handle_frame(state: BrokerState, client: _Client, frame: Frame) -> bool:
    cmd = frame.command
    if cmd in ("CONNECT", "STOMP"):
        await client.ws.send_text(encode_frame("CONNECTED", {
            "version": "1.2",
            "heart-beat": "0,0",
            "server": "chat-sync-dev-broker",
        }))
    elif cmd == "SUBSCRIBE":
        topic = frame.headers.get("destination", "")
        client.subscriptions[frame.headers.get("id", "")] = topic
        await _mark_online(state, client, topic)
    elif cmd == "UNSUBSCRIBE":
        client.subscriptions.pop(frame.headers.get("id", ""), None)
    elif cmd == "SEND":
        await _handle_send(state, client, frame)
    elif cmd == "DISCONNECT":
        receipt = frame.headers.get("receipt")
        if receipt:
            await client.ws.send_text(encode_frame("RECEIPT", {"receipt-id": receipt}))
        await client.ws.close()
        return False
    else:
        await client.ws.send_text(encode_frame("ERROR", {"message": f"Unsupported command {cmd}"}))
    return True


async def _handle_send(state: BrokerState, client: _Client, frame: Frame) -> None:
    target = _conversation_of(frame.headers.get("destination", ""))
    try:
        body = json.loads(frame.body or "{}")
    except ValueError:
        body = None
    if target is None or not isinstance(body, dict):
        await client.ws.send_text(encode_frame("ERROR", {"message": "Invalid SEND frame"}))
        return

    conversation_id, action = target
    topic = settings.topic(conversation_id)
    if action == "send":
        msg = state.add_message(
            conversation_id, client.user, str(body.get("content", "")), body.get("replyToMessageId"),
        )
        await state.broadcast(topic, msg)
    elif action == "react":
        update = state.toggle_reaction(
            conversation_id, str(body.get("messageId", "")), str(body.get("emoji", "")), client.user,
        )
        if update is not None:
            await state.broadcast(topic, update)
    elif action == "typing":
        await state.broadcast(topic, {
            "userId": client.user["id"],
            "user": client.user,
            "isTyping": bool(body.get("isTyping")),
        })
    else:
        logger.debug("Ignoring unknown action %s", action)


async def _mark_online(state: BrokerState, client: _Client, topic: str) -> None:
    online = state.online.setdefault(topic, {})
    online[client.user["id"]] = client.user
    snapshot = [{"userId": uid, "user": user, "isOnline": True} for uid, user in online.items()]
    await state.broadcast(topic, snapshot)


async def _mark_offline(state: BrokerState, client: _Client) -> None:
    for topic in set(client.subscriptions.values()):
        online = state.online.get(topic, {})
        if online.pop(client.user["id"], None) is not None:
            await state.broadcast(topic, {
                "userId": client.user["id"], "user": client.user, "isOnline": False,
            })


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "chat_sync.scripts.dev_broker:create_app",
        factory=True,
        host=settings.DEV_BROKER_HOST,
        port=settings.DEV_BROKER_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
