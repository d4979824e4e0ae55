"""Shared test fixtures and configuration.

Sets up fake environment variables before any relay imports, and provides
lightweight stand-ins for platform objects.
"""

import os

# Patch env vars BEFORE any relay imports
os.environ.setdefault("TELEGRAM_TOKEN", "")
os.environ.setdefault("TELEGRAM_OWNERS", "1001")
os.environ.setdefault("DISCORD_TOKEN", "")
os.environ.setdefault("DISCORD_OWNERS", "2002")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def fake_bot():
    """A minimal BotClient stand-in: enough for User/Channel and commands."""
    bot = MagicMock()
    bot.name = "telegram"
    bot.label = "Telegram"
    bot.prefix = "/"
    bot.get_user_name.return_value = "relaybot"
    bot.send_message = AsyncMock(return_value=True)
    bot.get_user_role = AsyncMock()
    return bot


@pytest.fixture
def channel_store():
    store = MagicMock()
    store.remove_channel = AsyncMock()
    return store

