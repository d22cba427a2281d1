from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.credential import Credential


class CredentialProvider(Protocol):
    async def resolve(self) -> Credential:
        """Return a usable credential or raise AuthError."""
        ...
