"""Regex-driven chat commands.

A command is matched against every incoming message. Its pattern is
anchored behind the bot's prefix for the channel the message came from,
so the same command answers to "/about" on Telegram and "!about" on
Discord.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from relay.data.models import Channel, Message

logger = logging.getLogger(__name__)

Handler = Callable[["Message", re.Match], Awaitable[None]]


class RegexCommand:
    """Command implementation of the ``Command`` port."""

    def __init__(self, name: str, pattern: str, handler: Handler, flags: int = re.IGNORECASE) -> None:
        self.name = name
        self.pattern = pattern
        self.flags = flags
        self._handler = handler

    async def get_regexp(self, channel: Channel) -> re.Pattern:
        prefix = re.escape(channel.bot.prefix)
        return re.compile(rf"^{prefix}\s*{self.pattern}", self.flags)

    async def execute(self, message: Message, match: re.Match) -> None:
        logger.info(
            "Executing command %s on channel %s", self.name, message.channel.label
        )
        await self._handler(message, match)


# ---------------------------------------------------------------------------
# Built-in commands
# ---------------------------------------------------------------------------


async def _about(message: Message, match: re.Match) -> None:
    bot = message.channel.bot
    role = await bot.get_user_role(message.user, message.channel)
    text = (
        f"**{bot.get_user_name()}** relays game update notifications to {bot.label}.\n"
        f"Your role here: _{role.name.lower()}_"
    )
    await bot.send_message(message.channel, text)


def build_default_commands() -> list[RegexCommand]:
    """Commands every bot registers on startup."""
    return [
        RegexCommand("about", r"about(?:@\S+)?\s*$", _about),
    ]
