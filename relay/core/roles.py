"""
Update Relay - Role Resolver.

Classifies a user on a channel as OWNER, ADMIN or USER. The resolution
chain is platform neutral; each bot client supplies a ``RoleSource`` that
answers the two questions only the platform can answer.

Resolution order (first match wins):

    1. channel-post sentinel author   -> ADMIN
    2. configured bot owner           -> OWNER
    3. everyone-is-admin / DM channel -> ADMIN
    4. listed channel administrator   -> ADMIN
    5. anyone else                    -> USER

Steps 3 and 4 query the platform and are guarded separately: a failing
query is logged and the chain moves on.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Protocol

from relay.core.resolution import Resolution
from relay.data.models import UserRole

if TYPE_CHECKING:
    from relay.data.models import Channel, User

logger = logging.getLogger(__name__)


class RoleSource(Protocol):
    """Platform queries needed by the role resolver."""

    async def has_default_admin(self, channel: Channel) -> bool:
        """True if every member of ``channel`` is an admin (incl. private chats)."""
        ...

    async def is_channel_admin(self, user: User, channel: Channel) -> bool:
        """True if the platform lists ``user`` as an administrator of ``channel``."""
        ...


async def resolve_role(
    user: User,
    channel: Channel,
    owner_ids: Iterable[str],
    source: RoleSource,
) -> Resolution[UserRole]:
    """Resolve the role of ``user`` on ``channel``.

    Never raises. The result is marked degraded when a platform query
    failed, in which case the returned role may be lower than the real one.
    """
    if user.is_channel_author:
        # Whoever can post as the channel administers it
        return Resolution.ok(UserRole.ADMIN)

    if user.id in set(owner_ids):
        return Resolution.ok(UserRole.OWNER)

    error: BaseException | None = None

    try:
        if await source.has_default_admin(channel):
            return Resolution.ok(UserRole.ADMIN)
    except Exception as exc:
        logger.error("Failed to get chat info on channel %s: %s", channel.label, exc)
        error = exc

    try:
        if await source.is_channel_admin(user, channel):
            return Resolution.ok(UserRole.ADMIN)
    except Exception as exc:
        logger.error("Failed to get chat admins on channel %s: %s", channel.label, exc)
        error = exc

    if error is not None:
        return Resolution.fallback(UserRole.USER, error)
    return Resolution.ok(UserRole.USER)
