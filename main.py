"""
Update Relay - Entry Point.

Single entry point: `python main.py` starts every enabled chat bot and
keeps them running until interrupted.
"""

import asyncio
import logging

from relay.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from relay.adapters.bot_registry import get_bots, start_bots, stop_bots
from relay.core.commands import build_default_commands

logger = logging.getLogger(__name__)


async def run() -> None:
    bots = get_bots()
    for bot in bots:
        for command in build_default_commands():
            bot.register_command(command)

    started = await start_bots(bots)
    if not started:
        logger.error("No bot could be started. Check the *_TOKEN settings.")
        return

    try:
        await asyncio.Event().wait()
    finally:
        await stop_bots(bots)


if __name__ == "__main__":
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down.")
