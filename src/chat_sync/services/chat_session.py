"""Caller-facing surface over the synchronization engine.

Nothing here raises an AppError to the caller: every failure is handed to
the single ``on_error`` callback and the action returns False.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Mapping

import httpx

from chat_sync.application.exceptions import AppError
from chat_sync.application.ports.auth import CredentialProvider
from chat_sync.application.ports.transport import Transport
from chat_sync.config import Settings, settings
from chat_sync.domain.entities.conversation import ConversationState
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.user import UserInfo
from chat_sync.domain.value_objects.enums import EngineState
from chat_sync.infrastructure.auth.token_resolver import CookieTokenProvider
from chat_sync.infrastructure.http.history_loader import HistoryLoader
from chat_sync.infrastructure.transport.stomp_client import StompTransport
from chat_sync.services.sync_engine import ErrorCallback, SyncEngine

logger = logging.getLogger(__name__)


class ChatSession:
    def __init__(
        self,
        transport: Transport,
        history: HistoryLoader,
        credentials: CredentialProvider,
        *,
        on_error: ErrorCallback | None = None,
        self_user: UserInfo | None = None,
        typing_timeout: float = settings.TYPING_TIMEOUT_SECONDS,
        config: Settings = settings,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._on_error = on_error
        self._typing_timeout = typing_timeout
        self._typing_timer: asyncio.TimerHandle | None = None
        self._typing_task: asyncio.Task[None] | None = None
        self._http = http
        self.engine = SyncEngine(
            transport,
            history,
            credentials,
            on_error=self._report,
            self_user=self_user,
            config=config,
        )

    @classmethod
    def from_settings(
        cls,
        *,
        cookies: Mapping[str, str] | None = None,
        on_error: ErrorCallback | None = None,
        self_user: UserInfo | None = None,
        config: Settings = settings,
    ) -> ChatSession:
        """Wire the default STOMP transport and HTTP collaborators."""
        http = httpx.AsyncClient(
            base_url=config.BACKEND_URL,
            timeout=config.HTTP_TIMEOUT_SECONDS,
            cookies=dict(cookies) if cookies else None,
            headers={"Accept": "application/json, text/plain, */*"},
        )
        transport = StompTransport(
            config.ws_url,
            heartbeat_outgoing_ms=config.WS_HEARTBEAT_OUTGOING_MS,
            heartbeat_incoming_ms=config.WS_HEARTBEAT_INCOMING_MS,
            connect_timeout=config.WS_CONNECT_TIMEOUT_SECONDS,
        )
        return cls(
            transport,
            HistoryLoader(http, page_size=config.HISTORY_PAGE_SIZE, history_path=config.HISTORY_PATH),
            CookieTokenProvider(
                http,
                cookies=cookies,
                cookie_name=config.AUTH_COOKIE_NAME,
                exchange_path=config.TOKEN_EXCHANGE_PATH,
            ),
            on_error=on_error,
            self_user=self_user,
            typing_timeout=config.TYPING_TIMEOUT_SECONDS,
            config=config,
            http=http,
        )

    # -- view --------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self.engine.state

    @property
    def snapshot(self) -> ConversationState:
        return self.engine.store.state

    @property
    def messages(self) -> list[Message]:
        return list(self.engine.store.state.messages)

    @property
    def is_connected(self) -> bool:
        return self.engine.is_live

    @property
    def is_loading_history(self) -> bool:
        return self.engine.is_loading_history

    @property
    def has_more_history(self) -> bool:
        return self.engine.has_more_history

    @property
    def typing_users(self) -> list[UserInfo]:
        return [
            s.user or UserInfo(id=s.user_id)
            for s in self.engine.store.state.typing.values()
        ]

    @property
    def online_users(self) -> list[UserInfo]:
        return [
            s.user or UserInfo(id=s.user_id)
            for s in self.engine.store.state.online.values()
        ]

    def add_listener(self, listener: Callable[[ConversationState], None]) -> Callable[[], None]:
        return self.engine.store.add_listener(listener)

    # -- lifecycle ---------------------------------------------------------

    async def open(self, conversation_id: str) -> None:
        self._cancel_typing_timer()
        await self._cancel_typing_task()
        await self.engine.start(conversation_id)

    async def close(self) -> None:
        self._cancel_typing_timer()
        await self._cancel_typing_task()
        await self.engine.stop()

    async def aclose(self) -> None:
        await self.close()
        if self._http is not None:
            await self._http.aclose()

    async def __aenter__(self) -> ChatSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- actions -----------------------------------------------------------

    async def send_message(self, content: str, reply_to_message_id: str | None = None) -> bool:
        try:
            await self.engine.send_message(content, reply_to_message_id)
        except AppError as exc:
            self._report(exc)
            return False
        return True

    async def react(self, message_id: str, emoji: str) -> bool:
        try:
            await self.engine.react(message_id, emoji)
        except AppError as exc:
            self._report(exc)
            return False
        return True

    async def send_typing(self, is_typing: bool) -> bool:
        """Publish a typing signal; a True signal auto-expires after the timeout."""
        self._cancel_typing_timer()
        try:
            await self.engine.send_typing(is_typing)
        except AppError as exc:
            self._report(exc)
            return False
        if is_typing:
            loop = asyncio.get_running_loop()
            self._typing_timer = loop.call_later(self._typing_timeout, self._expire_typing)
        return True

    async def load_more(self) -> bool:
        return await self.engine.load_more()

    # -- internals ---------------------------------------------------------

    def _expire_typing(self) -> None:
        self._typing_timer = None
        self._typing_task = asyncio.create_task(
            self._send_typing_stopped(), name="typing-expiry",
        )

    async def _send_typing_stopped(self) -> None:
        try:
            await self.engine.send_typing(False)
        except AppError:
            logger.debug("Typing expiry not delivered", exc_info=True)

    def _cancel_typing_timer(self) -> None:
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None

    async def _cancel_typing_task(self) -> None:
        task, self._typing_task = self._typing_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise

    def _report(self, error: AppError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Error callback failed")
