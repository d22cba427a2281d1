"""STOMP-over-WebSocket transport: one physical connection per instance."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode, urlparse

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from chat_sync.application.dto.credential import Credential
from chat_sync.application.exceptions import (
    AuthError,
    ChatConnectionError,
    FrameError,
    NotConnectedError,
)
from chat_sync.application.ports.transport import FrameHandler, OnCloseCallback
from chat_sync.infrastructure.transport.frames import (
    HEARTBEAT,
    Frame,
    decode_frames,
    encode_frame,
)

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]

_AUTH_MARKERS = ("auth", "token", "unauthori", "forbidden", "401", "403")


class StompSubscription:
    def __init__(
        self,
        transport: StompTransport,
        sub_id: str,
        topic: str,
        handler: FrameHandler,
    ) -> None:
        self._transport = transport
        self.id = sub_id
        self.topic = topic
        self.handler = handler
        self.active = True

    async def unsubscribe(self) -> None:
        if not self.active:
            return
        # Local removal happens before any await: no delivery after this line.
        self.active = False
        self._transport._subscriptions.pop(self.id, None)
        if not self._transport.is_connected:
            return
        try:
            await self._transport._send_frame("UNSUBSCRIBE", {"id": self.id})
        except (ChatConnectionError, NotConnectedError):
            logger.debug("UNSUBSCRIBE for %s not delivered", self.topic, exc_info=True)


class StompTransport:
    """Implements application.ports.transport.Transport."""

    def __init__(
        self,
        url: str,
        *,
        heartbeat_outgoing_ms: int = 4000,
        heartbeat_incoming_ms: int = 4000,
        connect_timeout: float = 10.0,
        connector: Connector | None = None,
    ) -> None:
        self._url = url
        self._heartbeat_outgoing_ms = heartbeat_outgoing_ms
        self._heartbeat_incoming_ms = heartbeat_incoming_ms
        self._connect_timeout = connect_timeout
        self._connector: Connector = connector or websockets.connect
        self._ws: Any = None
        self._connected = False
        self._closing = False
        self._handshake: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._subscriptions: dict[str, StompSubscription] = {}
        self._next_sub_id = 0
        self._send_interval = 0.0
        self._receive_timeout = 0.0
        self._last_received = 0.0
        self._on_close: OnCloseCallback | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected and self._ws is not None

    def set_on_close(self, callback: OnCloseCallback | None) -> None:
        self._on_close = callback

    async def connect(self, credential: Credential) -> None:
        if self.is_connected:
            return
        if self._handshake is None:
            self._handshake = asyncio.create_task(
                self._open(credential), name="stomp-handshake",
            )
        handshake = self._handshake
        try:
            await asyncio.shield(handshake)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise ChatConnectionError("Connection attempt aborted") from None

    async def subscribe(self, topic: str, handler: FrameHandler) -> StompSubscription:
        if not self.is_connected:
            raise NotConnectedError(f"Cannot subscribe to {topic} while disconnected")
        sub_id = f"sub-{self._next_sub_id}"
        self._next_sub_id += 1
        subscription = StompSubscription(self, sub_id, topic, handler)
        # Registered before SUBSCRIBE goes out so early MESSAGE frames find it
        self._subscriptions[sub_id] = subscription
        try:
            await self._send_frame(
                "SUBSCRIBE", {"id": sub_id, "destination": topic, "ack": "auto"},
            )
        except Exception:
            self._subscriptions.pop(sub_id, None)
            raise
        logger.debug("Subscribed %s to %s", sub_id, topic)
        return subscription

    async def send(self, destination: str, payload: dict[str, Any]) -> None:
        if not self.is_connected:
            raise NotConnectedError(f"Cannot send to {destination} while disconnected")
        await self._send_frame(
            "SEND",
            {"destination": destination, "content-type": "application/json"},
            json.dumps(payload),
        )

    async def disconnect(self) -> None:
        self._closing = True
        try:
            for subscription in self._subscriptions.values():
                subscription.active = False
            self._subscriptions.clear()

            handshake, self._handshake = self._handshake, None
            if handshake is not None and not handshake.done():
                handshake.cancel()
                await _drain(handshake)

            ws, was_connected = self._ws, self._connected
            self._ws = None
            self._connected = False

            await self._stop_background()

            if ws is not None:
                if was_connected:
                    try:
                        await ws.send(encode_frame("DISCONNECT", {"receipt": "disconnect"}))
                    except (ConnectionClosed, OSError):
                        logger.debug("DISCONNECT frame not delivered", exc_info=True)
                await _close_quietly(ws)
                logger.info("STOMP connection closed")
        finally:
            self._closing = False

    # -- internals ---------------------------------------------------------

    async def _open(self, credential: Credential) -> None:
        try:
            if not credential.token:
                raise AuthError("No access token available for the handshake")

            url = self._build_url(credential)
            try:
                ws = await asyncio.wait_for(self._connector(url), self._connect_timeout)
            except InvalidStatus as exc:
                status = exc.response.status_code
                if status in (401, 403):
                    raise AuthError(f"Handshake rejected with HTTP {status}") from exc
                raise ChatConnectionError(f"Handshake rejected with HTTP {status}") from exc
            except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
                raise ChatConnectionError(f"WebSocket handshake failed: {exc}") from exc

            try:
                connected = await asyncio.wait_for(
                    self._stomp_handshake(ws), self._connect_timeout,
                )
            except asyncio.TimeoutError as exc:
                await _close_quietly(ws)
                raise ChatConnectionError("Timed out waiting for CONNECTED frame") from exc
            except BaseException:
                await _close_quietly(ws)
                raise

            self._ws = ws
            self._connected = True
            self._configure_heartbeat(connected.headers.get("heart-beat", "0,0"))
            self._last_received = asyncio.get_running_loop().time()
            self._reader_task = asyncio.create_task(
                self._read_loop(ws), name="stomp-reader",
            )
            if self._send_interval or self._receive_timeout:
                self._heartbeat_task = asyncio.create_task(
                    self._heartbeat(ws), name="stomp-heartbeat",
                )
            logger.info(
                "STOMP connected to %s (server=%s)",
                self._url, connected.headers.get("server", "?"),
            )
        finally:
            if self._handshake is asyncio.current_task():
                self._handshake = None

    async def _stomp_handshake(self, ws: Any) -> Frame:
        host = urlparse(self._url).hostname or "localhost"
        await ws.send(encode_frame("CONNECT", {
            "accept-version": "1.2",
            "host": host,
            "heart-beat": f"{self._heartbeat_outgoing_ms},{self._heartbeat_incoming_ms}",
        }))
        try:
            while True:
                raw = await ws.recv()
                if isinstance(raw, bytes):
                    raw = raw.decode()
                for frame in decode_frames(raw):
                    if frame.command == "CONNECTED":
                        return frame
                    if frame.command == "ERROR":
                        reason = frame.headers.get("message") or frame.body or "STOMP error"
                        if any(marker in reason.lower() for marker in _AUTH_MARKERS):
                            raise AuthError(reason)
                        raise ChatConnectionError(reason)
                    logger.debug("Ignoring %s frame before CONNECTED", frame.command)
        except ConnectionClosed as exc:
            raise ChatConnectionError("Connection closed during STOMP handshake") from exc
        except FrameError as exc:
            raise ChatConnectionError(f"Malformed handshake frame: {exc.detail}") from exc

    def _build_url(self, credential: Credential) -> str:
        params = {"access_token": credential.token}
        if credential.role:
            params["role_name"] = credential.role
        return f"{self._url}?{urlencode(params)}"

    def _configure_heartbeat(self, server_value: str) -> None:
        try:
            server_out, server_in = (int(v) for v in server_value.split(",", 1))
        except ValueError:
            server_out, server_in = 0, 0
        send_ms = max(self._heartbeat_outgoing_ms, server_in) if self._heartbeat_outgoing_ms and server_in else 0
        recv_ms = max(self._heartbeat_incoming_ms, server_out) if self._heartbeat_incoming_ms and server_out else 0
        self._send_interval = send_ms / 1000
        # Allow the server twice its interval before declaring the link dead
        self._receive_timeout = recv_ms * 2 / 1000

    async def _send_frame(
        self,
        command: str,
        headers: dict[str, str] | None = None,
        body: str = "",
    ) -> None:
        ws = self._ws
        if ws is None:
            raise NotConnectedError(f"Cannot send {command} while disconnected")
        try:
            await ws.send(encode_frame(command, headers, body))
        except (ConnectionClosed, OSError) as exc:
            raise ChatConnectionError(f"Failed to send {command}: {exc}") from exc

    async def _read_loop(self, ws: Any) -> None:
        error: Exception | None = None
        loop = asyncio.get_running_loop()
        try:
            while True:
                raw = await ws.recv()
                self._last_received = loop.time()
                if isinstance(raw, bytes):
                    raw = raw.decode()
                try:
                    frames = decode_frames(raw)
                except FrameError:
                    logger.warning("Dropping malformed STOMP frame", exc_info=True)
                    continue
                for frame in frames:
                    self._dispatch(frame)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            error = exc
        except Exception as exc:
            logger.exception("STOMP reader failed")
            error = exc
        if not self._closing and self._ws is ws:
            self._handle_lost(error)

    def _dispatch(self, frame: Frame) -> None:
        if frame.command == "MESSAGE":
            sub_id = frame.headers.get("subscription", "")
            subscription = self._subscriptions.get(sub_id)
            if subscription is None or not subscription.active:
                logger.debug("Dropping MESSAGE for inactive subscription %s", sub_id)
                return
            try:
                subscription.handler(frame.body)
            except Exception:
                logger.exception("Error handling message on %s", subscription.topic)
        elif frame.command == "ERROR":
            logger.error(
                "STOMP error frame: %s", frame.headers.get("message") or frame.body,
            )
        else:
            logger.debug("Ignoring %s frame", frame.command)

    async def _heartbeat(self, ws: Any) -> None:
        loop = asyncio.get_running_loop()
        intervals = [v for v in (self._send_interval, self._receive_timeout / 2) if v]
        tick = min(intervals)
        next_send = loop.time() + self._send_interval
        try:
            while True:
                await asyncio.sleep(tick)
                now = loop.time()
                if self._receive_timeout and now - self._last_received > self._receive_timeout:
                    logger.warning("No data from server for %.1fs, closing", now - self._last_received)
                    await _close_quietly(ws)
                    return
                if self._send_interval and now >= next_send:
                    await ws.send(HEARTBEAT)
                    next_send = now + self._send_interval
        except asyncio.CancelledError:
            raise
        except (ConnectionClosed, OSError):
            logger.debug("Heartbeat stopped: connection closed")

    def _handle_lost(self, error: Exception | None) -> None:
        logger.warning("STOMP connection lost: %s", error or "closed by server")
        self._connected = False
        self._ws = None
        for subscription in self._subscriptions.values():
            subscription.active = False
        self._subscriptions.clear()
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        self._reader_task = None
        if self._on_close is not None:
            try:
                self._on_close(error)
            except Exception:
                logger.exception("on_close callback failed")

    async def _stop_background(self) -> None:
        tasks = [t for t in (self._reader_task, self._heartbeat_task) if t is not None]
        self._reader_task = None
        self._heartbeat_task = None
        current = asyncio.current_task()
        for task in tasks:
            if task is current:
                continue
            task.cancel()
            await _drain(task)


async def _drain(task: asyncio.Task[Any]) -> None:
    try:
        await task
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
    except Exception:
        logger.debug("Background task ended with error", exc_info=True)


async def _close_quietly(ws: Any) -> None:
    try:
        await ws.close()
    except (ConnectionClosed, OSError):
        logger.debug("Error while closing WebSocket", exc_info=True)
