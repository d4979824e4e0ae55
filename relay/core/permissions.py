"""
Update Relay - Permission Normalizer.

Collapses each platform's membership model into the common
``Permissions(has_access, can_write, can_edit, can_pin)`` tuple.

The mapping functions are pure: the bot clients fetch live chat and member
data, then hand it here. ``resolve_permissions`` wraps a strict query into
a soft one that returns a degraded no-access default instead of raising.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from relay.core.resolution import Resolution
from relay.data.models import Permissions

if TYPE_CHECKING:
    from relay.data.models import Channel

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------

TELEGRAM_NO_ACCESS_STATUSES = frozenset({"left", "kicked"})
TELEGRAM_GROUP_TYPES = frozenset({"group", "supergroup"})


def _telegram_flag(member: Any, name: str) -> bool:
    # The chat creator holds every admin right without explicit flags
    if member.status == "creator":
        return True
    return bool(getattr(member, name, False))


def telegram_permissions(chat_type: str, member: Any) -> Permissions:
    """Map a Telegram chat type and ChatMember onto ``Permissions``.

    ``member`` needs a ``status`` and, depending on it, the ``can_*``
    flags Telegram attaches to restricted members and administrators.
    """
    status = member.status
    if status in TELEGRAM_NO_ACCESS_STATUSES:
        return Permissions.none()

    is_admin = status in ("administrator", "creator")

    if chat_type == "channel":
        # Broadcast channels: only admins with posting rights can write
        can_write = is_admin and _telegram_flag(member, "can_post_messages")
    elif status == "restricted":
        can_write = _telegram_flag(member, "can_send_messages")
    else:
        can_write = True

    can_edit = is_admin and _telegram_flag(member, "can_edit_messages")

    if chat_type in TELEGRAM_GROUP_TYPES:
        if status == "restricted" or is_admin:
            can_pin = _telegram_flag(member, "can_pin_messages")
        else:
            can_pin = True
    else:
        can_pin = False

    return Permissions(True, can_write, can_edit, can_pin)


# ---------------------------------------------------------------------------
# Discord
# ---------------------------------------------------------------------------

DISCORD_PINNABLE_KINDS = frozenset({"text", "news", "thread"})


def discord_permissions(channel_kind: str, perms: Any | None) -> Permissions:
    """Map a Discord channel kind and resolved permission set onto ``Permissions``.

    ``channel_kind`` is "private" for DMs; guild channels use the
    discord.ChannelType name ("text", "news", "voice", ...). ``perms`` is
    the result of ``channel.permissions_for(member)``, or None when the
    user is not a member of the guild.
    """
    if channel_kind == "private":
        return Permissions(True, True, False, False)
    if perms is None or not perms.view_channel:
        return Permissions.none()

    can_write = bool(perms.send_messages)
    # Discord has no "edit others' messages" right; manage_messages is the
    # closest moderation capability and also gates pinning.
    can_edit = bool(perms.manage_messages)
    can_pin = can_edit and channel_kind in DISCORD_PINNABLE_KINDS
    return Permissions(True, can_write, can_edit, can_pin)


# ---------------------------------------------------------------------------
# Soft resolution
# ---------------------------------------------------------------------------


async def resolve_permissions(
    query: Callable[[], Awaitable[Permissions]],
    channel: Channel,
) -> Resolution[Permissions]:
    """Run a strict permission query, degrading to no access on failure."""
    try:
        return Resolution.ok(await query())
    except Exception as exc:
        logger.error(
            "Permission lookup failed on channel %s, assuming no access: %s",
            channel.label,
            exc,
        )
        return Resolution.fallback(Permissions.none(), exc)
