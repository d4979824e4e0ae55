"""
Update Relay - Data Models.

Identities (users, channels), capability tuples and the notification
content that bot clients relay. Users and channels are plain values: they
are looked up on demand from platform state and never owned by a client.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relay.core.iv_template import TelegramIVTemplate
    from relay.ports.bot_port import BotClient

# Channel posts carry no human author; they are attributed to this id.
CHANNEL_AUTHOR_ID = "-322"


@dataclass(frozen=True)
class User:
    """A platform user, identified by (bot, id)."""

    bot: BotClient = field(compare=False, repr=False)
    id: str
    platform: str = field(init=False, default="")

    def __post_init__(self) -> None:
        object.__setattr__(self, "platform", self.bot.name)

    @property
    def is_channel_author(self) -> bool:
        return self.id == CHANNEL_AUTHOR_ID


@dataclass(frozen=True)
class Channel:
    """A chat/channel on one platform, identified by (bot, id)."""

    bot: BotClient = field(compare=False, repr=False)
    id: str
    platform: str = field(init=False, default="")

    def __post_init__(self) -> None:
        object.__setattr__(self, "platform", self.bot.name)

    @property
    def label(self) -> str:
        """Human-readable label used in log lines."""
        return f"{self.id} ({self.bot.label})"


@dataclass(frozen=True)
class Permissions:
    """What a user may do on a channel. Built fresh for every query."""

    has_access: bool
    can_write: bool
    can_edit: bool
    can_pin: bool

    @classmethod
    def none(cls) -> Permissions:
        return cls(False, False, False, False)


class UserRole(enum.IntEnum):
    """Role of a user on a channel, recomputed on every evaluation."""

    USER = 0
    ADMIN = 1
    OWNER = 2

    def at_least(self, other: UserRole) -> bool:
        return self >= other


@dataclass
class Message:
    """An incoming chat message, as handed to command handlers."""

    user: User
    channel: Channel
    content: str
    timestamp: datetime


# ---------------------------------------------------------------------------
# Notification content
# ---------------------------------------------------------------------------


@dataclass
class NotificationElement:
    """A piece of text with an optional link (title, author, footer...)."""

    text: str = ""
    link: str = ""

    def to_md_string(self) -> str:
        if self.text and self.link:
            return f"[{self.text}]({self.link})"
        return self.text


@dataclass
class Game:
    """The game (or content source) a notification is about."""

    name: str
    label: str
    telegram_iv_templates: list[TelegramIVTemplate] = field(default_factory=list)


@dataclass
class Notification:
    """A structured update notification.

    Rendered to the shared markdown dialect by ``to_md_string``; bot
    clients translate that rendering into their platform's own markup.
    """

    game: Game
    title: NotificationElement
    author: NotificationElement = field(default_factory=NotificationElement)
    content: str = ""
    footer: NotificationElement = field(default_factory=NotificationElement)

    def to_md_string(self) -> str:
        header = f"New **{self.game.label}** update"
        author = self.author.to_md_string()
        if author:
            header += f" - {author}"
        parts = [f"{header}:", f"**{self.title.to_md_string()}**"]
        if self.content:
            parts.append(self.content)
        footer = self.footer.to_md_string()
        if footer:
            parts.append(f"_{footer}_")
        return "\n\n".join(parts)
