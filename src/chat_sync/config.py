from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    BACKEND_URL: str = "http://localhost:8386"
    WS_BASE_URL: str = "ws://127.0.0.1:8386"
    WS_ENDPOINT: str = "/ws"

    HISTORY_PATH: str = "/api/notebooks/{conversation_id}/chat/history"
    HISTORY_PAGE_SIZE: int = 50
    HTTP_TIMEOUT_SECONDS: float = 30.0

    TOPIC_TEMPLATE: str = "/topic/notebooks/{conversation_id}/chat"
    DESTINATION_PREFIX: str = "/app/notebooks/{conversation_id}"

    AUTH_COOKIE_NAME: str = "AUTH-TOKEN"
    TOKEN_EXCHANGE_PATH: str = "/api/auth/token"

    WS_CONNECT_TIMEOUT_SECONDS: float = 10.0
    WS_HEARTBEAT_OUTGOING_MS: int = 4000
    WS_HEARTBEAT_INCOMING_MS: int = 4000

    TYPING_TIMEOUT_SECONDS: float = 3.0

    DEV_BROKER_HOST: str = "127.0.0.1"
    DEV_BROKER_PORT: int = 8386

    def history_path(self, conversation_id: str) -> str:
        return self.HISTORY_PATH.format(conversation_id=conversation_id)

    def topic(self, conversation_id: str) -> str:
        return self.TOPIC_TEMPLATE.format(conversation_id=conversation_id)

    def destination(self, conversation_id: str, action: str) -> str:
        """Outbound destination, e.g. ``/app/notebooks/<id>/chat.send``."""
        prefix = self.DESTINATION_PREFIX.format(conversation_id=conversation_id)
        return f"{prefix}/chat.{action}"

    @property
    def ws_url(self) -> str:
        return f"{self.WS_BASE_URL.rstrip('/')}{self.WS_ENDPOINT}"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
