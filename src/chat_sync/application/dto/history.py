from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class PaginationCursor:
    page: int = 0
    has_more: bool = True

    def advance(self, has_more: bool) -> PaginationCursor:
        return PaginationCursor(page=self.page + 1, has_more=has_more)


INITIAL_CURSOR = PaginationCursor()


@dataclass(frozen=True, slots=True)
class HistoryPage:
    messages: tuple[Message, ...]  # ascending
    cursor: PaginationCursor
    next_cursor: PaginationCursor

    @property
    def has_more(self) -> bool:
        return self.next_cursor.has_more
