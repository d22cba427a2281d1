"""Paginated chat history over HTTP."""
from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from chat_sync.application.dto.credential import Credential
from chat_sync.application.dto.history import INITIAL_CURSOR, HistoryPage, PaginationCursor
from chat_sync.application.exceptions import HistoryFetchError
from chat_sync.config import settings
from chat_sync.domain.entities.message import Message
from chat_sync.infrastructure.transport.mappers import message_to_entity
from chat_sync.infrastructure.transport.protocol import MessagePayload

logger = logging.getLogger(__name__)


def parse_history_response(data: Any) -> tuple[list[dict[str, Any]], bool] | None:
    """Return (raw entries newest-first, has_more), or None for an unknown shape.

    A bare array is a terminal page. A paged object ``{content, last}`` has
    more pages only when ``last`` is explicitly false.
    """
    if isinstance(data, list):
        return data, False
    if isinstance(data, dict) and isinstance(data.get("content"), list):
        return data["content"], data.get("last") is False
    return None


def _to_messages(entries: list[Any]) -> list[Message]:
    messages: list[Message] = []
    for entry in entries:
        try:
            messages.append(message_to_entity(MessagePayload.model_validate(entry)))
        except ValidationError:
            logger.warning("Skipping malformed history entry: %r", entry)
    return messages


class HistoryLoader:
    """Fetches history pages and tracks the pagination cursor.

    Page 0 is the most recent window. The server returns each page
    newest-first; pages handed out here are ascending.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        page_size: int = settings.HISTORY_PAGE_SIZE,
        history_path: str = settings.HISTORY_PATH,
    ) -> None:
        self._http = http
        self._page_size = page_size
        self.history_path = history_path
        self._credential: Credential | None = None
        self.conversation_id: str | None = None
        self.cursor: PaginationCursor = INITIAL_CURSOR
        self._loaded_any = False
        self._epoch = 0

    @property
    def has_more(self) -> bool:
        return self.cursor.has_more

    def reset(self, conversation_id: str, credential: Credential | None = None) -> None:
        self.conversation_id = conversation_id
        self._credential = credential
        self.cursor = INITIAL_CURSOR
        self._loaded_any = False
        self._epoch += 1

    async def load_initial(self) -> HistoryPage:
        if self.conversation_id is None:
            raise HistoryFetchError("No conversation selected")
        epoch = self._epoch
        page = await self.load_page(self.conversation_id, INITIAL_CURSOR)
        if epoch == self._epoch:
            self.cursor = page.next_cursor
            self._loaded_any = True
        return page

    async def load_older(self) -> HistoryPage:
        if self.conversation_id is None:
            raise HistoryFetchError("No conversation selected")
        if not self._loaded_any:
            return await self.load_initial()
        # self.cursor already points one page past the last one loaded
        requested = PaginationCursor(page=self.cursor.page, has_more=True)
        epoch = self._epoch
        page = await self.load_page(self.conversation_id, requested)
        # A reset while the request was in flight owns the cursor now
        if epoch == self._epoch:
            self.cursor = page.next_cursor
        return page

    async def load_page(self, conversation_id: str, cursor: PaginationCursor) -> HistoryPage:
        headers = {}
        if self._credential is not None:
            headers["Authorization"] = self._credential.authorization_header
        try:
            resp = await self._http.get(
                self.history_path.format(conversation_id=conversation_id),
                params={"page": cursor.page, "size": self._page_size},
                headers=headers,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise HistoryFetchError(
                f"History page {cursor.page} failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise HistoryFetchError(f"History page {cursor.page} failed: {exc}") from exc
        except ValueError as exc:
            raise HistoryFetchError(f"History page {cursor.page} is not valid JSON") from exc

        parsed = parse_history_response(data)
        if parsed is None:
            logger.warning(
                "Unrecognised history payload for %s page %d, treating as empty",
                conversation_id, cursor.page,
            )
            entries, has_more = [], False
        else:
            entries, has_more = parsed

        messages = _to_messages(entries)
        messages.reverse()
        logger.debug(
            "Loaded %d messages for %s page %d (has_more=%s)",
            len(messages), conversation_id, cursor.page, has_more,
        )
        return HistoryPage(
            messages=tuple(messages),
            cursor=cursor,
            next_cursor=cursor.advance(has_more),
        )
