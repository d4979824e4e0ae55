"""Tests for relay.adapters.discord_bot - the discord.Client is fully mocked."""

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from relay.adapters.discord_bot import DiscordBotClient
from relay.data.models import (
    CHANNEL_AUTHOR_ID,
    Channel,
    Game,
    Notification,
    NotificationElement,
    Permissions,
    User,
    UserRole,
)
from relay.ports.bot_port import BotClient, BotState, PlatformError

SENT_AT = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def http_error(cls, status, text="error"):
    return cls(MagicMock(status=status, reason=text), text)


def make_text_channel(guild=None, perms=None):
    channel = MagicMock(spec=discord.TextChannel)
    channel.type = discord.ChannelType.text
    channel.guild = guild or make_guild()
    channel.permissions_for.return_value = perms
    channel.send = AsyncMock()
    return channel


def make_dm_channel():
    channel = MagicMock(spec=discord.DMChannel)
    channel.send = AsyncMock()
    return channel


def make_group_dm(recipients=2):
    channel = MagicMock(spec=discord.GroupChannel)
    channel.guild = None  # discord.GroupChannel.guild always returns None
    channel.recipients = [object() for _ in range(recipients)]
    channel.send = AsyncMock()
    return channel


def make_guild(guild_id=1, owner_id=1, member=None, member_count=10):
    guild = MagicMock()
    guild.id = guild_id
    guild.owner_id = owner_id
    guild.member_count = member_count
    guild.get_member.return_value = member
    guild.fetch_member = AsyncMock(side_effect=http_error(discord.NotFound, 404, "Unknown Member"))
    return guild


def make_message(author_id=7, channel_id=555, guild_id=1, webhook_id=None, content="!about"):
    return SimpleNamespace(
        author=SimpleNamespace(id=author_id),
        channel=SimpleNamespace(id=channel_id),
        guild=SimpleNamespace(id=guild_id) if guild_id is not None else None,
        webhook_id=webhook_id,
        created_at=SENT_AT,
        content=content,
    )


def make_command(pattern=r"^!about"):
    command = MagicMock()
    command.name = "about"
    command.get_regexp = AsyncMock(return_value=re.compile(pattern))
    command.execute = AsyncMock()
    return command


@pytest.fixture
def client():
    client = MagicMock()
    client.user = SimpleNamespace(id=99, name="relaybot", mention="<@99>")
    client.login = AsyncMock()
    client.close = AsyncMock()
    client.wait_until_ready = AsyncMock()
    client.get_channel.return_value = None
    client.fetch_channel = AsyncMock()
    return client


@pytest.fixture
def bot(client, channel_store):
    return DiscordBotClient(
        "!", "token", True, owners=["2002"], channel_store=channel_store, client=client,
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_satisfies_bot_port(self, bot):
        assert isinstance(bot, BotClient)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, bot, client):
        closed = asyncio.Event()

        async def connect(reconnect=True):
            await closed.wait()

        async def close():
            closed.set()

        client.connect = connect
        client.close = AsyncMock(side_effect=close)

        assert await bot.start() is True
        assert bot.is_running
        assert bot.get_user_name() == "relaybot"
        assert bot.get_user_tag() == "<@99>"
        client.login.assert_awaited_once_with("token")
        assert client.event.call_count == 3

        await bot.stop()
        assert bot.state is BotState.STOPPED
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_login_failure(self, bot, client):
        client.login.side_effect = discord.LoginFailure("Improper token")
        assert await bot.start() is False
        assert bot.state is BotState.STOPPED
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gateway_failure_before_ready(self, bot, client):
        async def never_ready():
            await asyncio.Event().wait()

        client.connect = AsyncMock(side_effect=RuntimeError("gateway unreachable"))
        client.wait_until_ready = never_ready
        assert await bot.start() is False
        assert bot.state is BotState.STOPPED

    @pytest.mark.asyncio
    async def test_no_token(self, client):
        bot = DiscordBotClient("!", "", True, client=client)
        assert await bot.start() is False
        client.login.assert_not_awaited()

    def test_identity_before_start(self, bot):
        assert bot.get_user_name() == "?"
        assert bot.get_user_tag() == "?"


# ---------------------------------------------------------------------------
# Incoming events
# ---------------------------------------------------------------------------


class TestEvents:
    @pytest.mark.asyncio
    async def test_message_dispatched_to_commands(self, bot):
        command = make_command()
        bot.register_command(command)

        await bot.on_incoming_message(make_message())

        message, _ = command.execute.await_args.args
        assert message.user.id == "7"
        assert message.channel.id == "555"
        assert message.timestamp == SENT_AT + timedelta(milliseconds=500)
        assert await bot.get_channel_count() == 1

    @pytest.mark.asyncio
    async def test_webhook_post_uses_sentinel_author(self, bot):
        command = make_command()
        bot.register_command(command)

        await bot.on_incoming_message(make_message(webhook_id=1234))

        message, _ = command.execute.await_args.args
        assert message.user.id == CHANNEL_AUTHOR_ID

    @pytest.mark.asyncio
    async def test_own_messages_ignored(self, bot):
        bot._bot_id = 99
        command = make_command()
        bot.register_command(command)

        await bot.on_incoming_message(make_message(author_id=99))

        command.execute.assert_not_awaited()
        assert await bot.get_channel_count() == 0

    @pytest.mark.asyncio
    async def test_leaving_guild_forgets_its_channels(self, bot, channel_store):
        await bot.on_incoming_message(make_message(channel_id=1, guild_id=10))
        await bot.on_incoming_message(make_message(channel_id=2, guild_id=10))
        await bot.on_incoming_message(make_message(channel_id=3, guild_id=20))

        await bot.on_member_removed(SimpleNamespace(id=10))

        assert [c.id for c in bot.get_bot_channels()] == ["3"]
        assert channel_store.remove_channel.await_count == 2


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------


class TestRoles:
    @pytest.mark.asyncio
    async def test_owner(self, bot):
        assert await bot.get_user_role(User(bot, "2002"), Channel(bot, "555")) is UserRole.OWNER

    @pytest.mark.asyncio
    async def test_dm_is_admin(self, bot, client):
        client.get_channel.return_value = make_dm_channel()
        assert await bot.get_user_role(User(bot, "7"), Channel(bot, "555")) is UserRole.ADMIN

    @pytest.mark.asyncio
    async def test_group_dm_has_no_implicit_admins(self, bot, client):
        client.get_channel.return_value = make_group_dm()
        result = await bot.resolve_user_role(User(bot, "7"), Channel(bot, "555"))
        assert result.value is UserRole.USER
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_group_dm_permissions(self, bot, client):
        client.get_channel.return_value = make_group_dm()
        result = await bot.get_user_permissions(User(bot, "7"), Channel(bot, "555"))
        assert result == Permissions(True, True, False, False)

    @pytest.mark.asyncio
    async def test_guild_owner_is_admin(self, bot, client):
        client.get_channel.return_value = make_text_channel(guild=make_guild(owner_id=7))
        assert await bot.get_user_role(User(bot, "7"), Channel(bot, "555")) is UserRole.ADMIN

    @pytest.mark.asyncio
    async def test_administrator_permission(self, bot, client):
        member = SimpleNamespace(guild_permissions=SimpleNamespace(administrator=True))
        client.get_channel.return_value = make_text_channel(guild=make_guild(member=member))
        assert await bot.get_user_role(User(bot, "7"), Channel(bot, "555")) is UserRole.ADMIN

    @pytest.mark.asyncio
    async def test_regular_member(self, bot, client):
        member = SimpleNamespace(guild_permissions=SimpleNamespace(administrator=False))
        client.get_channel.return_value = make_text_channel(guild=make_guild(member=member))
        result = await bot.resolve_user_role(User(bot, "7"), Channel(bot, "555"))
        assert result.value is UserRole.USER
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_fetch_failure_degrades(self, bot, client):
        client.fetch_channel.side_effect = http_error(discord.HTTPException, 500)
        result = await bot.resolve_user_role(User(bot, "7"), Channel(bot, "555"))
        assert result.value is UserRole.USER
        assert result.degraded


class TestPermissions:
    @pytest.mark.asyncio
    async def test_dm(self, bot, client):
        client.get_channel.return_value = make_dm_channel()
        result = await bot.get_user_permissions(User(bot, "7"), Channel(bot, "555"))
        assert result == Permissions(True, True, False, False)

    @pytest.mark.asyncio
    async def test_moderator_in_text_channel(self, bot, client):
        perms = SimpleNamespace(view_channel=True, send_messages=True, manage_messages=True)
        member = object()
        channel = make_text_channel(guild=make_guild(member=member), perms=perms)
        client.get_channel.return_value = channel

        result = await bot.get_user_permissions(User(bot, "7"), Channel(bot, "555"))

        assert result == Permissions(True, True, True, True)
        channel.permissions_for.assert_called_once_with(member)

    @pytest.mark.asyncio
    async def test_not_in_guild(self, bot, client):
        client.get_channel.return_value = make_text_channel()
        result = await bot.get_user_permissions(User(bot, "7"), Channel(bot, "555"))
        assert result == Permissions.none()

    @pytest.mark.asyncio
    async def test_forbidden_channel(self, bot, client):
        client.fetch_channel.side_effect = http_error(discord.Forbidden, 403, "Missing Access")
        result = await bot.get_user_permissions(User(bot, "7"), Channel(bot, "555"))
        assert result == Permissions.none()

    @pytest.mark.asyncio
    async def test_other_errors_raise(self, bot, client):
        client.fetch_channel.side_effect = http_error(discord.HTTPException, 500)
        with pytest.raises(PlatformError):
            await bot.get_user_permissions(User(bot, "7"), Channel(bot, "555"))

    @pytest.mark.asyncio
    async def test_soft_variant_degrades(self, bot, client):
        client.fetch_channel.side_effect = http_error(discord.HTTPException, 500)
        result = await bot.resolve_user_permissions(User(bot, "7"), Channel(bot, "555"))
        assert result.value == Permissions.none()
        assert result.degraded


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_user(self, bot):
        assert (await bot.get_user()).id == "99"

    @pytest.mark.asyncio
    async def test_get_user_not_logged_in(self, bot, client):
        client.user = None
        with pytest.raises(PlatformError):
            await bot.get_user()

    @pytest.mark.asyncio
    async def test_get_owners(self, bot):
        assert [u.id for u in await bot.get_owners()] == ["2002"]

    @pytest.mark.asyncio
    async def test_channel_user_count_excludes_bot(self, bot, client):
        client.get_channel.return_value = make_text_channel(guild=make_guild(member_count=10))
        assert await bot.get_channel_user_count(Channel(bot, "555")) == 9

    @pytest.mark.asyncio
    async def test_dm_user_count(self, bot, client):
        client.get_channel.return_value = make_dm_channel()
        assert await bot.get_channel_user_count(Channel(bot, "555")) == 1

    @pytest.mark.asyncio
    async def test_channel_user_count_error(self, bot, client):
        client.fetch_channel.side_effect = http_error(discord.NotFound, 404, "Unknown Channel")
        assert await bot.get_channel_user_count(Channel(bot, "555")) == 0

    @pytest.mark.asyncio
    async def test_user_count_counts_each_guild_once(self, bot, client):
        guild_channel = make_text_channel(guild=make_guild(member_count=11))
        dm = make_dm_channel()
        client.get_channel.side_effect = lambda cid: dm if cid == 4 else guild_channel
        for channel_id in (1, 2, 3):
            await bot.on_incoming_message(make_message(channel_id=channel_id, guild_id=1))
        await bot.on_incoming_message(make_message(channel_id=4, guild_id=None))

        assert await bot.get_user_count() == 10 + 1

    @pytest.mark.asyncio
    async def test_group_dm_user_count(self, bot, client):
        client.get_channel.return_value = make_group_dm(recipients=3)
        assert await bot.get_channel_user_count(Channel(bot, "555")) == 3


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_plain_text(self, bot, client):
        channel = make_text_channel()
        client.get_channel.return_value = channel
        assert await bot.send_message(Channel(bot, "555"), "**hi** _x_") is True
        channel.send.assert_awaited_once_with("**hi** *x*")
        client.get_channel.assert_called_once_with(555)

    @pytest.mark.asyncio
    async def test_uncached_channel_is_fetched(self, bot, client):
        channel = make_text_channel()
        client.fetch_channel.return_value = channel
        await bot.send_message(Channel(bot, "555"), "hi")
        client.fetch_channel.assert_awaited_once_with(555)
        channel.send.assert_awaited_once_with("hi")

    @pytest.mark.asyncio
    async def test_notification(self, bot, client):
        channel = make_text_channel()
        client.get_channel.return_value = channel
        notification = Notification(
            game=Game("game", "Game"),
            title=NotificationElement("Patch", "https://e.com/p"),
        )
        await bot.send_message(Channel(bot, "555"), notification)
        channel.send.assert_awaited_once_with(
            "New **Game** update:\n\n**[Patch](<https://e.com/p>)**"
        )

    @pytest.mark.asyncio
    async def test_forbidden_is_a_warning(self, bot, client, caplog):
        channel = make_text_channel()
        channel.send.side_effect = http_error(discord.Forbidden, 403, "Missing Permissions")
        client.get_channel.return_value = channel
        with caplog.at_level(logging.WARNING, logger="relay.adapters.discord_bot"):
            assert await bot.send_message(Channel(bot, "555"), "hi") is True
        assert [r.levelname for r in caplog.records] == ["WARNING"]

    @pytest.mark.asyncio
    async def test_server_error_is_logged(self, bot, client, caplog):
        channel = make_text_channel()
        channel.send.side_effect = http_error(discord.HTTPException, 500)
        client.get_channel.return_value = channel
        with caplog.at_level(logging.WARNING, logger="relay.adapters.discord_bot"):
            assert await bot.send_message(Channel(bot, "555"), "hi") is True
        assert [r.levelname for r in caplog.records] == ["ERROR"]

    @pytest.mark.asyncio
    async def test_invalid_channel_id_raises(self, bot):
        with pytest.raises(ValueError):
            await bot.send_message(Channel(bot, "general"), "hi")
