"""Synchronization engine: one live conversation per transport.

Lifecycle::

    IDLE -> LOADING_HISTORY -> CONNECTING -> SUBSCRIBING -> LIVE
    any  -> CLOSING -> IDLE

Every ``start`` and ``stop`` bumps a generation counter. Work that resumes
after an await, and frames delivered to a subscription, carry the generation
they were started under and are discarded once it is stale. That keeps a
stopped conversation's in-flight events out of the next one.
"""
from __future__ import annotations

import logging
from typing import Callable

from chat_sync.application.dto.history import INITIAL_CURSOR
from chat_sync.application.exceptions import (
    AppError,
    AuthError,
    ChatConnectionError,
    HistoryFetchError,
    NotConnectedError,
)
from chat_sync.application.ports.auth import CredentialProvider
from chat_sync.application.ports.transport import Subscription, Transport
from chat_sync.config import Settings, settings
from chat_sync.domain.entities.presence import PresenceStatus
from chat_sync.domain.entities.user import UserInfo
from chat_sync.domain.events.presence_changed import PresenceUpdate
from chat_sync.domain.value_objects.enums import EngineState
from chat_sync.infrastructure.http.history_loader import HistoryLoader
from chat_sync.infrastructure.transport.protocol import (
    ReactRequest,
    SendMessageRequest,
    TypingRequest,
)
from chat_sync.services.conversation_store import ConversationStore
from chat_sync.services.event_router import EventRouter

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[AppError], None]
StateCallback = Callable[[EngineState], None]


class SyncEngine:
    def __init__(
        self,
        transport: Transport,
        history: HistoryLoader,
        credentials: CredentialProvider,
        *,
        store: ConversationStore | None = None,
        on_error: ErrorCallback | None = None,
        on_state_change: StateCallback | None = None,
        self_user: UserInfo | None = None,
        config: Settings = settings,
    ) -> None:
        self._transport = transport
        self._history = history
        self._credentials = credentials
        self.store = store or ConversationStore()
        self._router = EventRouter(self.store)
        self._on_error = on_error
        self._on_state_change = on_state_change
        self._self_user = self_user
        self._config = config

        self.state = EngineState.IDLE
        self.conversation_id: str | None = None
        self._generation = 0
        self._subscription: Subscription | None = None
        self._loading_history = False

        transport.set_on_close(self._on_transport_closed)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_live(self) -> bool:
        return self.state == EngineState.LIVE and self._transport.is_connected

    @property
    def is_loading_history(self) -> bool:
        return self._loading_history

    @property
    def has_more_history(self) -> bool:
        return self._history.has_more

    # -- lifecycle ---------------------------------------------------------

    async def start(self, conversation_id: str) -> None:
        """Bring ``conversation_id`` live. Failures go to ``on_error``."""
        if self.state != EngineState.IDLE or self._subscription is not None:
            await self.stop()

        self._generation += 1
        gen = self._generation
        self.conversation_id = conversation_id
        self.store.reset(conversation_id)
        self._history.reset(conversation_id)

        try:
            credential = await self._credentials.resolve()
        except AuthError as exc:
            if gen == self._generation:
                # Idle again with nothing selected, so load_more stays a no-op
                self.conversation_id = None
                self._report(exc)
            return
        if gen != self._generation:
            return

        self._history.reset(conversation_id, credential)
        self._set_state(EngineState.LOADING_HISTORY)
        self._loading_history = True
        page = None
        try:
            page = await self._history.load_initial()
        except HistoryFetchError as exc:
            # The first page counts as resolved; a manual load_more can retry it.
            if gen == self._generation:
                self._report(exc)
        finally:
            if gen == self._generation:
                self._loading_history = False
        if gen != self._generation:
            return
        if page is not None:
            self.store.merge_history(page.messages)

        self._set_state(EngineState.CONNECTING)
        try:
            await self._transport.connect(credential)
        except (AuthError, ChatConnectionError) as exc:
            if gen == self._generation:
                self._set_state(EngineState.IDLE)
                self._report(exc)
            return
        if gen != self._generation:
            return

        self._set_state(EngineState.SUBSCRIBING)
        topic = self._config.topic(conversation_id)
        try:
            subscription = await self._transport.subscribe(
                topic, lambda raw: self._on_frame(gen, raw),
            )
        except (ChatConnectionError, NotConnectedError) as exc:
            if gen == self._generation:
                await self._transport.disconnect()
                self._set_state(EngineState.IDLE)
                self._report(ChatConnectionError(f"Subscribe to {topic} failed: {exc.detail}"))
            return
        if gen != self._generation:
            await subscription.unsubscribe()
            return

        self._subscription = subscription
        self._set_state(EngineState.LIVE)
        logger.info("Conversation %s is live", conversation_id)

        if self._self_user is not None:
            self.store.dispatch(PresenceUpdate(status=PresenceStatus(
                user_id=self._self_user.id, user=self._self_user, is_online=True,
            )))

        await self._catch_up(gen, conversation_id)

    async def stop(self) -> None:
        """Tear down the current conversation. Safe from any state."""
        self._generation += 1
        subscription, self._subscription = self._subscription, None
        if self.state == EngineState.IDLE and subscription is None and not self._transport.is_connected:
            self.conversation_id = None
            self._loading_history = False
            self.store.clear()
            return

        self._set_state(EngineState.CLOSING)
        if subscription is not None:
            await subscription.unsubscribe()
        await self._transport.disconnect()
        self.store.clear()
        self.conversation_id = None
        self._loading_history = False
        self._set_state(EngineState.IDLE)
        logger.info("Engine stopped")

    async def load_more(self) -> bool:
        """Backfill one older page. Returns True if a page was merged."""
        if self.conversation_id is None or self._loading_history or not self._history.has_more:
            return False

        gen = self._generation
        self._loading_history = True
        try:
            page = await self._history.load_older()
        except HistoryFetchError as exc:
            if gen == self._generation:
                self._report(exc)
            return False
        finally:
            if gen == self._generation:
                self._loading_history = False

        if gen != self._generation:
            logger.debug("Discarding history page for a superseded conversation")
            return False
        self.store.merge_history(page.messages)
        return True

    # -- outbound ----------------------------------------------------------

    async def send_message(self, content: str, reply_to_message_id: str | None = None) -> None:
        destination = self._require_live("send")
        request = SendMessageRequest(content=content, reply_to_message_id=reply_to_message_id)
        await self._transport.send(destination, request.model_dump(by_alias=True))

    async def react(self, message_id: str, emoji: str) -> None:
        destination = self._require_live("react")
        request = ReactRequest(message_id=message_id, emoji=emoji)
        await self._transport.send(destination, request.model_dump(by_alias=True))

    async def send_typing(self, is_typing: bool) -> None:
        destination = self._require_live("typing")
        request = TypingRequest(is_typing=is_typing)
        await self._transport.send(destination, request.model_dump(by_alias=True))

    # -- internals ---------------------------------------------------------

    def _require_live(self, action: str) -> str:
        if not self.is_live or self.conversation_id is None:
            raise NotConnectedError(f"Cannot {action} while {self.state}")
        return self._config.destination(self.conversation_id, action)

    def _on_frame(self, gen: int, raw: str) -> None:
        if gen != self._generation:
            logger.debug("Discarding frame from stale generation %d", gen)
            return
        self._router.route(raw)

    async def _catch_up(self, gen: int, conversation_id: str) -> None:
        """Re-read the newest page to cover messages sent before the subscription."""
        try:
            page = await self._history.load_page(conversation_id, INITIAL_CURSOR)
        except HistoryFetchError:
            logger.warning("Catch-up fetch for %s failed", conversation_id, exc_info=True)
            return
        if gen == self._generation:
            self.store.merge_history(page.messages)

    def _on_transport_closed(self, error: Exception | None) -> None:
        if self.state not in (EngineState.SUBSCRIBING, EngineState.LIVE):
            return
        self._subscription = None
        self._set_state(EngineState.IDLE)
        detail = f"Connection lost: {error}" if error else "Connection closed by server"
        self._report(ChatConnectionError(detail))

    def _set_state(self, state: EngineState) -> None:
        if state == self.state:
            return
        logger.debug("Engine %s -> %s", self.state, state)
        self.state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("State change callback failed")

    def _report(self, error: AppError) -> None:
        logger.warning("%s: %s", type(error).__name__, error.detail)
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Error callback failed")
