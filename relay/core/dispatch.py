"""
Update Relay - Event dispatch helpers shared by the bot clients.

Both platform clients compose these pieces instead of inheriting them:
a cache of the channels the bot has seen, timestamp clamping, and
per-command dispatch of incoming messages.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable

from relay.data.models import Message

if TYPE_CHECKING:
    from relay.data.models import Channel, User
    from relay.ports.bot_port import ChannelStore, Command

logger = logging.getLogger(__name__)

# Platforms report whole seconds; assume the message arrived mid-second
_TIMESTAMP_SLACK = timedelta(milliseconds=500)


def clamp_timestamp(platform_time: datetime, now: datetime | None = None) -> datetime:
    """Platform time plus half a second, but never later than ``now``."""
    if now is None:
        now = datetime.now(timezone.utc)
    if platform_time.tzinfo is None:
        platform_time = platform_time.replace(tzinfo=timezone.utc)
    return min(now, platform_time + _TIMESTAMP_SLACK)


async def dispatch_commands(
    commands: Iterable[Command],
    user: User,
    channel: Channel,
    content: str,
    timestamp: datetime,
) -> int:
    """Run every command whose pattern matches ``content``.

    Returns the number of commands executed. A failing command is logged
    and does not stop the remaining ones.
    """
    message = Message(user, channel, content, timestamp)
    executed = 0
    for command in commands:
        try:
            regexp = await command.get_regexp(channel)
            match = regexp.search(content)
            if match:
                await command.execute(message, match)
                executed += 1
        except Exception as exc:
            logger.error(
                "Failed to execute command %s on channel %s: %s",
                command.name,
                channel.label,
                exc,
            )
    return executed


class ChannelCache:
    """Channels a bot has seen, discovered through incoming events."""

    def __init__(self) -> None:
        self._channels: dict[str, Channel] = {}
        self._groups: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._channels)

    def remember(self, channel: Channel, group_id: str | None = None) -> Channel:
        """Add ``channel`` (optionally tagged with its server/guild id)."""
        known = self._channels.setdefault(channel.id, channel)
        if group_id is not None:
            self._groups[channel.id] = group_id
        return known

    def get(self, channel_id: str) -> Channel | None:
        return self._channels.get(channel_id)

    def all(self) -> list[Channel]:
        return list(self._channels.values())

    def group_of(self, channel_id: str) -> str | None:
        return self._groups.get(channel_id)

    def in_group(self, group_id: str) -> list[Channel]:
        return [
            self._channels[cid]
            for cid, gid in self._groups.items()
            if gid == group_id and cid in self._channels
        ]

    async def remove(self, channel_id: str, store: ChannelStore | None) -> Channel | None:
        """Forget a channel the bot was removed from and tell ``store``.

        Unknown channels are ignored. Returns the removed channel.
        """
        channel = self._channels.pop(channel_id, None)
        self._groups.pop(channel_id, None)
        if channel is None:
            return None
        logger.info("Removed from channel %s", channel.label)
        if store is not None:
            try:
                await store.remove_channel(channel)
            except Exception as exc:
                logger.error("Failed to remove data of channel %s: %s", channel.label, exc)
        return channel
