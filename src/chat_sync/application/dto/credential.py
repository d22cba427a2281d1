from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Credential:
    """Bearer credential used for the WS handshake and history calls."""

    token: str
    role: str | None = None
    subject_id: str | None = None
    expires_at: datetime | None = None

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.token}"
