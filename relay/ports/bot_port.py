"""Bot port - the platform-neutral bot contract.

Command dispatch and notification fan-out depend on these protocols, never
on a specific chat platform.
"""

from __future__ import annotations

import enum
import re
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from relay.data.models import Channel, Message, Notification, Permissions, User, UserRole


class BotError(Exception):
    """Base class for bot client failures."""


class PlatformError(BotError):
    """Raised when a platform query fails for an unexpected reason."""


class BotState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class Command(Protocol):
    """A chat command: a per-channel pattern plus its handler."""

    name: str

    async def get_regexp(self, channel: Channel) -> re.Pattern: ...

    async def execute(self, message: Message, match: re.Match) -> None: ...


class ChannelStore(Protocol):
    """Owner of persisted per-channel data (subscriptions, settings)."""

    async def remove_channel(self, channel: Channel) -> None: ...


@runtime_checkable
class BotClient(Protocol):
    """Capability interface implemented once per chat platform."""

    name: str
    label: str
    prefix: str
    enabled: bool

    @property
    def state(self) -> BotState: ...

    @property
    def is_running(self) -> bool: ...

    def get_user_name(self) -> str: ...

    def get_user_tag(self) -> str: ...

    async def start(self) -> bool: ...

    async def stop(self) -> None: ...

    async def get_user(self) -> User: ...

    async def get_user_role(self, user: User, channel: Channel) -> UserRole: ...

    async def get_user_permissions(self, user: User, channel: Channel) -> Permissions: ...

    async def get_owners(self) -> list[User]: ...

    async def get_channel_user_count(self, channel: Channel) -> int: ...

    async def get_user_count(self) -> int: ...

    async def get_channel_count(self) -> int: ...

    def get_bot_channels(self) -> list[Channel]: ...

    def register_command(self, command: Command) -> None: ...

    async def send_message(self, channel: Channel, content: str | Notification) -> bool: ...
