from __future__ import annotations

import logging
from typing import Callable, Iterable

from chat_sync.domain.entities.conversation import ConversationState
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.inbound import InboundEvent
from chat_sync.services import reducers

logger = logging.getLogger(__name__)

StateListener = Callable[[ConversationState], None]


class ConversationStore:
    """Single source of truth for the active conversation.

    Every change goes through a pure reducer and replaces ``state`` in one
    assignment, so listeners never observe a partial merge.
    """

    def __init__(self, conversation_id: str = "") -> None:
        self.state = reducers.empty_state(conversation_id)
        self._listeners: list[StateListener] = []

    @property
    def conversation_id(self) -> str:
        return self.state.conversation_id

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def reset(self, conversation_id: str) -> None:
        self._replace(reducers.empty_state(conversation_id))

    def clear(self) -> None:
        self._replace(reducers.empty_state(""))

    def dispatch(self, event: InboundEvent) -> ConversationState:
        return self._replace(reducers.reduce(self.state, event))

    def merge_history(self, messages: Iterable[Message]) -> ConversationState:
        return self._replace(reducers.merge_history(self.state, messages))

    def _replace(self, new_state: ConversationState) -> ConversationState:
        if new_state is self.state:
            return new_state
        self.state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Conversation state listener failed")
        return new_state
