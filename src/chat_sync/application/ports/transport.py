from __future__ import annotations

from typing import Any, Callable, Protocol

from chat_sync.application.dto.credential import Credential

FrameHandler = Callable[[str], None]
OnCloseCallback = Callable[[Exception | None], None]


class Subscription(Protocol):
    topic: str

    async def unsubscribe(self) -> None: ...


class Transport(Protocol):
    @property
    def is_connected(self) -> bool: ...

    async def connect(self, credential: Credential) -> None: ...

    async def subscribe(self, topic: str, handler: FrameHandler) -> Subscription: ...

    async def send(self, destination: str, payload: dict[str, Any]) -> None: ...

    async def disconnect(self) -> None: ...

    def set_on_close(self, callback: OnCloseCallback | None) -> None: ...
