"""
Update Relay - Discord bot client.

Implements the BotClient port on top of discord.py. The client owns a
``discord.Client`` (composition, not subclassing) and hooks its events.

Discord specifics handled here:
- webhook and crossposted announcement messages have no human author and
  are attributed to CHANNEL_AUTHOR_ID;
- there is no Instant View, notifications are always fully rendered;
- the bot leaving a guild removes every known channel of that guild.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Iterable

import discord

from relay.core.dispatch import ChannelCache, clamp_timestamp, dispatch_commands
from relay.core.markdown import to_discord
from relay.core.permissions import discord_permissions, resolve_permissions
from relay.core.roles import resolve_role
from relay.core.text import natural_limit
from relay.data.models import CHANNEL_AUTHOR_ID, Channel, Notification, Permissions, User, UserRole
from relay.ports.bot_port import BotState, PlatformError

if TYPE_CHECKING:
    from relay.core.resolution import Resolution
    from relay.ports.bot_port import ChannelStore, Command

logger = logging.getLogger(__name__)

# Discord rejects messages longer than 2000 characters
MAX_NOTIFICATION_LENGTH = 2000
MAX_MESSAGE_LENGTH = 2000


def _snowflake(channel_or_user: Channel | User) -> int:
    """Discord id of a channel or user; a non-numeric id is a caller bug."""
    return int(channel_or_user.id)


def _channel_kind(platform_channel: Any) -> str:
    # Only one-to-one DMs are "private"; group DMs have no implicit admins
    if isinstance(platform_channel, discord.DMChannel):
        return "private"
    if isinstance(platform_channel, discord.GroupChannel):
        return "group"
    if isinstance(platform_channel, discord.Thread):
        return "thread"
    return platform_channel.type.name


def _create_client() -> discord.Client:
    intents = discord.Intents.default()
    intents.message_content = True
    return discord.Client(intents=intents)


class DiscordBotClient:
    """Discord implementation of the BotClient port."""

    name = "discord"
    label = "Discord"

    def __init__(
        self,
        prefix: str,
        token: str,
        enabled: bool,
        owners: Iterable[str] = (),
        channel_store: ChannelStore | None = None,
        client: discord.Client | None = None,
    ) -> None:
        self.prefix = prefix
        self.enabled = enabled
        self._token = token
        self._owner_ids = [str(uid) for uid in owners]
        self._channel_store = channel_store
        self._client = client
        self._owns_client = client is None
        self._handlers_installed = False
        self._runner: asyncio.Task | None = None
        self._commands: list[Command] = []
        self._channels = ChannelCache()
        self._state = BotState.STOPPED
        self._bot_id: int | None = None
        self._user_name: str | None = None
        self._user_tag: str | None = None

    # -- Identity / state ---------------------------------------------------

    @property
    def state(self) -> BotState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is BotState.RUNNING

    def get_user_name(self) -> str:
        if not self.enabled or not self._user_name:
            return "?"
        return self._user_name

    def get_user_tag(self) -> str:
        if not self.enabled or not self._user_tag:
            return "?"
        return self._user_tag

    def _get_client(self) -> discord.Client:
        if self._client is None:
            self._client = _create_client()
            self._handlers_installed = False
        return self._client

    # -- Lifecycle ----------------------------------------------------------

    def _install_handlers(self, client: discord.Client) -> None:
        if self._handlers_installed:
            return

        # discord.Client.event registers by function name
        async def on_message(message: discord.Message) -> None:
            await self.on_incoming_message(message)

        async def on_guild_remove(guild: discord.Guild) -> None:
            await self.on_member_removed(guild)

        async def on_guild_channel_delete(channel: discord.abc.GuildChannel) -> None:
            await self._channels.remove(str(channel.id), self._channel_store)

        client.event(on_message)
        client.event(on_guild_remove)
        client.event(on_guild_channel_delete)
        self._handlers_installed = True

    async def start(self) -> bool:
        """Log in and connect to the gateway. Never raises; returns success."""
        if self._state is not BotState.STOPPED:
            logger.warning("Discord bot already %s, stop it before restarting", self._state.value)
            return self.is_running
        if not self._token:
            logger.warning("Discord bot has no token, not starting")
            return False

        self._state = BotState.STARTING
        client = self._get_client()
        self._install_handlers(client)
        try:
            await client.login(self._token)
            self._runner = asyncio.create_task(client.connect(reconnect=True))
            ready = asyncio.create_task(client.wait_until_ready())
            await asyncio.wait({self._runner, ready}, return_when=asyncio.FIRST_COMPLETED)
            if not ready.done():
                ready.cancel()
                # connect() only returns early when it failed
                self._runner.result()
                raise discord.ClientException("Gateway connection closed before ready")
        except Exception as exc:
            logger.error("Failed to start Discord bot: %s", exc)
            await self._close_client(client)
            self._state = BotState.STOPPED
            return False
        self._state = BotState.RUNNING

        if client.user is not None:
            self._bot_id = client.user.id
            self._user_name = client.user.name
            self._user_tag = client.user.mention
        else:
            logger.error("Failed to get user name and user tag: no user after login")

        logger.info("Discord bot started as %s", self.get_user_name())
        return True

    async def _close_client(self, client: discord.Client) -> None:
        try:
            await client.close()
        except Exception as exc:
            logger.error("Error while closing Discord client: %s", exc)
        if self._owns_client:
            # A closed discord.Client cannot reconnect
            self._client = None

    async def stop(self) -> None:
        """Disconnect from the gateway. Handlers already running are left to finish."""
        if self._client is None or self._state is BotState.STOPPED:
            self._state = BotState.STOPPED
            return
        await self._close_client(self._client)
        if self._runner is not None:
            # connect() returns once the client is closed
            await asyncio.gather(self._runner, return_exceptions=True)
            self._runner = None
        self._state = BotState.STOPPED
        logger.info("Discord bot stopped.")

    # -- Events -------------------------------------------------------------

    def register_command(self, command: Command) -> None:
        self._commands.append(command)

    async def on_incoming_message(self, message: discord.Message) -> None:
        """Match an incoming message against the registered commands."""
        if self._bot_id is not None and message.author.id == self._bot_id:
            return
        guild = getattr(message, "guild", None)
        channel = self._channels.remember(
            Channel(self, str(message.channel.id)),
            group_id=str(guild.id) if guild is not None else None,
        )
        try:
            # Webhook posts (including followed announcement channels) have no human author
            user_id = CHANNEL_AUTHOR_ID if message.webhook_id else str(message.author.id)
            user = User(self, user_id)
            timestamp = clamp_timestamp(message.created_at)
            await dispatch_commands(self._commands, user, channel, message.content or "", timestamp)
        except Exception as exc:
            logger.error("Failed to handle message on channel %s: %s", channel.label, exc)

    async def on_member_removed(self, guild: discord.Guild) -> None:
        """The bot left (or was kicked from) ``guild``: forget its channels."""
        for channel in self._channels.in_group(str(guild.id)):
            await self._channels.remove(channel.id, self._channel_store)

    # -- Queries ------------------------------------------------------------

    async def _fetch_channel(self, channel_id: int) -> Any:
        client = self._get_client()
        platform_channel = client.get_channel(channel_id)
        if platform_channel is None:
            platform_channel = await client.fetch_channel(channel_id)
        return platform_channel

    async def _fetch_member(self, guild: discord.Guild, user: User) -> discord.Member | None:
        member = guild.get_member(_snowflake(user))
        if member is not None:
            return member
        try:
            return await guild.fetch_member(_snowflake(user))
        except discord.NotFound:
            return None

    async def get_user(self) -> User:
        client = self._get_client()
        if client.user is None:
            raise PlatformError("Discord bot is not logged in")
        return User(self, str(client.user.id))

    async def get_owners(self) -> list[User]:
        return [User(self, uid) for uid in self._owner_ids]

    async def has_default_admin(self, channel: Channel) -> bool:
        return _channel_kind(await self._fetch_channel(_snowflake(channel))) == "private"

    async def is_channel_admin(self, user: User, channel: Channel) -> bool:
        platform_channel = await self._fetch_channel(_snowflake(channel))
        guild = getattr(platform_channel, "guild", None)
        if guild is None:
            return False
        if str(guild.owner_id) == user.id:
            return True
        member = await self._fetch_member(guild, user)
        return member is not None and member.guild_permissions.administrator

    async def resolve_user_role(self, user: User, channel: Channel) -> Resolution[UserRole]:
        return await resolve_role(user, channel, self._owner_ids, self)

    async def get_user_role(self, user: User, channel: Channel) -> UserRole:
        """Role of ``user`` on ``channel``; USER when the platform can't tell."""
        return (await self.resolve_user_role(user, channel)).value

    async def get_user_permissions(self, user: User, channel: Channel) -> Permissions:
        """Live permissions of ``user`` on ``channel``.

        Returns no permissions if the bot cannot see the channel or the
        user is not in the guild. Raises PlatformError for any other
        Discord failure.
        """
        try:
            platform_channel = await self._fetch_channel(_snowflake(channel))
        except discord.Forbidden:
            # Bot has no access to the channel
            return Permissions.none()
        except discord.HTTPException as exc:
            logger.error(
                "Failed to get channel to check permissions on channel %s: %s", channel.label, exc,
            )
            raise PlatformError(f"Failed to get channel {channel.id}: {exc}") from exc

        kind = _channel_kind(platform_channel)
        if kind in ("private", "group"):
            # No guild permissions outside guilds: members may read and write
            return discord_permissions("private", None)

        try:
            member = await self._fetch_member(platform_channel.guild, user)
        except discord.HTTPException as exc:
            logger.error("Failed to get guild member on channel %s: %s", channel.label, exc)
            raise PlatformError(f"Failed to get member {user.id}: {exc}") from exc

        perms = platform_channel.permissions_for(member) if member is not None else None
        return discord_permissions(kind, perms)

    async def resolve_user_permissions(self, user: User, channel: Channel) -> Resolution[Permissions]:
        """Soft variant of get_user_permissions: no access instead of errors."""
        return await resolve_permissions(lambda: self.get_user_permissions(user, channel), channel)

    async def get_channel_user_count(self, channel: Channel) -> int:
        try:
            platform_channel = await self._fetch_channel(_snowflake(channel))
        except discord.HTTPException as exc:
            logger.error("Failed to get member count for channel %s: %s", channel.label, exc)
            return 0
        kind = _channel_kind(platform_channel)
        if kind == "private":
            return 1
        if kind == "group":
            return len(platform_channel.recipients)
        # Don't count the bot itself
        member_count = platform_channel.guild.member_count or 1
        return member_count - 1

    async def get_user_count(self) -> int:
        # Guild member counts cover every channel of the guild: one channel per guild
        per_guild: dict[str, Channel] = {}
        private: list[Channel] = []
        for channel in self.get_bot_channels():
            guild_id = self._channels.group_of(channel.id)
            if guild_id is None:
                private.append(channel)
            else:
                per_guild.setdefault(guild_id, channel)
        counts = await asyncio.gather(
            *(self.get_channel_user_count(channel) for channel in [*per_guild.values(), *private])
        )
        return sum(counts)

    async def get_channel_count(self) -> int:
        return len(self._channels)

    def get_bot_channels(self) -> list[Channel]:
        return self._channels.all()

    # -- Sending ------------------------------------------------------------

    async def send_message(self, channel: Channel, content: str | Notification) -> bool:
        """Send text or a notification to ``channel``.

        Delivery failures are logged, never raised; the return value only
        says that a send was attempted.
        """
        if isinstance(content, str):
            text = natural_limit(to_discord(content), MAX_MESSAGE_LENGTH)
        else:
            text = natural_limit(to_discord(content.to_md_string()), MAX_NOTIFICATION_LENGTH)

        channel_id = _snowflake(channel)
        try:
            platform_channel = await self._fetch_channel(channel_id)
            await platform_channel.send(text)
        except Exception as exc:
            self._handle_send_error(exc, channel)
        return True

    def _handle_send_error(self, exc: Exception, channel: Channel) -> None:
        if isinstance(exc, discord.Forbidden):
            logger.warning(
                "Failed to send notification to channel %s, forbidden: %s", channel.label, exc,
            )
        elif isinstance(exc, discord.NotFound):
            logger.warning(
                "Failed to send notification to channel %s, channel not found: %s", channel.label, exc,
            )
        elif isinstance(exc, discord.HTTPException):
            logger.error(
                "Failed to send notification to channel %s, error code %s: %s",
                channel.label,
                exc.code,
                exc,
            )
        else:
            logger.error("Failed to send message to channel %s: %s", channel.label, exc)
