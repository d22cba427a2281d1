"""Entrypoint: python -m chat_sync"""
from __future__ import annotations

import asyncio
import logging

import click

from chat_sync.application.exceptions import AppError
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import ConversationState
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import EngineState
from chat_sync.services.chat_session import ChatSession

logger = logging.getLogger("chat_sync.tail")


def _format(msg: Message) -> str:
    author = (msg.user.full_name or msg.user.id) if msg.user else "system"
    return f"[{msg.created_at}] {author}: {msg.content}"


def _log_error(error: AppError) -> None:
    logger.error("%s: %s", type(error).__name__, error.detail)


async def run_tail(conversation_id: str, token: str | None, backfill: int) -> None:
    cookies = {settings.AUTH_COOKIE_NAME: token} if token else None
    printed: set[str] = set()

    def _on_change(state: ConversationState) -> None:
        for msg in state.messages:
            if msg.id not in printed:
                printed.add(msg.id)
                logger.info("%s", _format(msg))

    async with ChatSession.from_settings(cookies=cookies, on_error=_log_error) as session:
        session.add_listener(_on_change)
        await session.open(conversation_id)
        if session.state != EngineState.LIVE:
            return

        for _ in range(backfill):
            if not await session.load_more():
                break

        logger.info(
            "Tailing %s (%d messages loaded, Ctrl-C to stop)",
            conversation_id, len(session.messages),
        )
        await asyncio.Event().wait()


@click.group()
def cli() -> None:
    """Realtime notebook chat client."""


@cli.command()
@click.argument("conversation_id")
@click.option("--token", envvar="CHAT_SYNC_TOKEN", default=None, help="Access token (else token exchange is used).")
@click.option("--backfill", default=0, show_default=True, help="Older history pages to load after connecting.")
@click.option("--verbose", is_flag=True, help="Debug logging.")
def tail(conversation_id: str, token: str | None, backfill: int, verbose: bool) -> None:
    """Follow CONVERSATION_ID and log every message as it arrives."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run_tail(conversation_id, token, backfill))
    except KeyboardInterrupt:
        logger.info("Stopped")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
