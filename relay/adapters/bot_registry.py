"""Bot registry - builds every configured platform client, once per process."""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache

from relay.config import settings
from relay.ports.bot_port import BotClient

logger = logging.getLogger(__name__)


@lru_cache()
def get_telegram_bot() -> BotClient:
    from relay.adapters.telegram_bot import TelegramBotClient

    conf = settings.TELEGRAM
    return TelegramBotClient(conf.prefix, conf.token, conf.enabled, owners=conf.owners)


@lru_cache()
def get_discord_bot() -> BotClient:
    from relay.adapters.discord_bot import DiscordBotClient

    conf = settings.DISCORD
    return DiscordBotClient(conf.prefix, conf.token, conf.enabled, owners=conf.owners)


def get_bots() -> list[BotClient]:
    """All platform clients, in a stable order."""
    return [get_discord_bot(), get_telegram_bot()]


def get_bot(name: str) -> BotClient:
    """Return the client for platform ``name`` (case-insensitive)."""
    for bot in get_bots():
        if bot.name == name.lower():
            return bot
    raise ValueError(f"Unknown bot platform: {name!r}")


async def start_bots(bots: list[BotClient] | None = None) -> list[BotClient]:
    """Start every enabled client concurrently; return the ones now running."""
    bots = get_bots() if bots is None else bots
    enabled = [bot for bot in bots if bot.enabled]
    for bot in bots:
        if not bot.enabled:
            logger.info("%s bot disabled, not starting", bot.label)

    results = await asyncio.gather(*(bot.start() for bot in enabled))
    started = [bot for bot, ok in zip(enabled, results) if ok]
    logger.info("Started %d of %d enabled bot(s)", len(started), len(enabled))
    return started


async def stop_bots(bots: list[BotClient] | None = None) -> None:
    bots = get_bots() if bots is None else bots
    await asyncio.gather(*(bot.stop() for bot in bots if bot.is_running))
