"""
Update Relay - Telegram bot client.

Implements the BotClient port on top of python-telegram-bot. The
Application is built lazily on first use so a client without a token can
still be constructed (it just refuses to start).

Telegram specifics handled here:
- channel posts have no author and are attributed to CHANNEL_AUTHOR_ID;
- notifications use Instant View links when a game template matches;
- removal is reported both as a left_chat_member service message (groups)
  and as a my_chat_member update (also covers broadcast channels).
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable

from telegram import LinkPreviewOptions, Update
from telegram.constants import ChatMemberStatus, ChatType, ParseMode
from telegram.error import BadRequest, Forbidden, TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    ChatMemberHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from relay.core.dispatch import ChannelCache, clamp_timestamp, dispatch_commands
from relay.core.markdown import to_telegram
from relay.core.permissions import resolve_permissions, telegram_permissions
from relay.core.roles import resolve_role
from relay.core.text import natural_limit
from relay.data.models import CHANNEL_AUTHOR_ID, Channel, Notification, Permissions, User, UserRole
from relay.ports.bot_port import BotState, PlatformError

if TYPE_CHECKING:
    from telegram import Bot
    from telegram import Message as TelegramMessage

    from relay.core.resolution import Resolution
    from relay.ports.bot_port import ChannelStore, Command

logger = logging.getLogger(__name__)

# Longest notification we send; Telegram itself allows 4096 characters
MAX_NOTIFICATION_LENGTH = 2048
MAX_MESSAGE_LENGTH = 4096

_REMOVED_STATUSES = (ChatMemberStatus.LEFT, ChatMemberStatus.BANNED)


def _chat_id(channel: Channel) -> int:
    """Telegram chat id of ``channel``; a non-numeric id is a caller bug."""
    return int(channel.id)


# ---------------------------------------------------------------------------
# Notification rendering
# ---------------------------------------------------------------------------


def render_notification(notification: Notification) -> tuple[str, bool]:
    """Render ``notification`` as Telegram markdown.

    Returns ``(text, instant_view)``. When one of the game's Instant View
    templates accepts the title link, the message is a short teaser whose
    title points at the Instant View page; otherwise it is the full
    translated notification.
    """
    link = notification.title.link
    for template in notification.game.telegram_iv_templates:
        template_link = template.test_url(link)
        if not template_link:
            continue

        title_text = f"[{notification.title.text}]({template_link})"
        header = f"New **{notification.game.label}** update"
        author = notification.author
        if author.text:
            author_text = f"[{author.text}]({author.link})" if author.link else author.text
            header += f" - {author_text}"
        return f"{header}:\n\n{title_text}", True

    return to_telegram(notification.to_md_string()), False


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TelegramBotClient:
    """Telegram implementation of the BotClient port."""

    name = "telegram"
    label = "Telegram"

    def __init__(
        self,
        prefix: str,
        token: str,
        enabled: bool,
        owners: Iterable[str] = (),
        channel_store: ChannelStore | None = None,
        application: Application | None = None,
    ) -> None:
        self.prefix = prefix
        self.enabled = enabled
        self._token = token
        self._owner_ids = [str(uid) for uid in owners]
        self._channel_store = channel_store
        self._app = application
        self._handlers_installed = False
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

    def _get_app(self) -> Application:
        if self._app is None:
            self._app = ApplicationBuilder().token(self._token).build()
        return self._app

    @property
    def _bot(self) -> Bot:
        return self._get_app().bot

    # -- Lifecycle ----------------------------------------------------------

    def _install_handlers(self, app: Application) -> None:
        if self._handlers_installed:
            return
        text_posts = filters.TEXT & (filters.UpdateType.MESSAGE | filters.UpdateType.CHANNEL_POST)
        app.add_handler(MessageHandler(text_posts, self._handle_message, block=False))
        app.add_handler(MessageHandler(
            filters.StatusUpdate.LEFT_CHAT_MEMBER, self._handle_left_chat_member, block=False,
        ))
        app.add_handler(ChatMemberHandler(
            self._handle_my_chat_member, ChatMemberHandler.MY_CHAT_MEMBER, block=False,
        ))
        self._handlers_installed = True

    async def start(self) -> bool:
        """Start polling for updates. Never raises; returns success."""
        if self._state is not BotState.STOPPED:
            logger.warning("Telegram bot already %s, stop it before restarting", self._state.value)
            return self.is_running
        if not self._token:
            logger.warning("Telegram bot has no token, not starting")
            return False

        self._state = BotState.STARTING
        try:
            app = self._get_app()
            self._install_handlers(app)
            await app.initialize()
            await app.start()
            await app.updater.start_polling(allowed_updates=Update.ALL_TYPES)
        except Exception as exc:
            logger.error("Failed to start Telegram bot: %s", exc)
            await self._shutdown_app(self._app)
            self._state = BotState.STOPPED
            return False
        self._state = BotState.RUNNING

        try:
            me = await app.bot.get_me()
            self._bot_id = me.id
            self._user_name = me.username
            self._user_tag = f"@{me.username}"
        except Exception as exc:
            logger.error("Failed to get user name and user tag: %s", exc)

        logger.info("Telegram bot started as %s", self.get_user_tag())
        return True

    async def _shutdown_app(self, app: Application | None) -> None:
        """Undo whichever startup steps went through; each step is independent."""
        if app is None:
            return
        try:
            if app.updater and app.updater.running:
                await app.updater.stop()
        except Exception as exc:
            logger.error("Error while stopping Telegram polling: %s", exc)
        try:
            if app.running:
                await app.stop()
        except Exception as exc:
            logger.error("Error while stopping Telegram application: %s", exc)
        try:
            await app.shutdown()
        except Exception as exc:
            logger.error("Error while shutting down Telegram application: %s", exc)

    async def stop(self) -> None:
        """Stop polling. Handlers already running are left to finish."""
        app = self._app
        if app is None or self._state is BotState.STOPPED:
            self._state = BotState.STOPPED
            return
        await self._shutdown_app(app)
        self._state = BotState.STOPPED
        logger.info("Telegram bot stopped.")

    # -- Events -------------------------------------------------------------

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_message is not None:
            await self.on_incoming_message(update.effective_message)

    async def _handle_left_chat_member(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_message is not None:
            await self.on_member_removed(update.effective_message)

    async def _handle_my_chat_member(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        member_update = update.my_chat_member
        if member_update is None:
            return
        if member_update.new_chat_member.status in _REMOVED_STATUSES:
            await self._channels.remove(str(member_update.chat.id), self._channel_store)

    def register_command(self, command: Command) -> None:
        self._commands.append(command)

    async def on_incoming_message(self, msg: TelegramMessage) -> None:
        """Match an incoming message or channel post against the commands."""
        channel = self._channels.remember(Channel(self, str(msg.chat.id)))
        try:
            # Channel posts have no author
            user_id = str(msg.from_user.id) if msg.from_user else CHANNEL_AUTHOR_ID
            user = User(self, user_id)
            timestamp = clamp_timestamp(msg.date)
            await dispatch_commands(self._commands, user, channel, msg.text or "", timestamp)
        except Exception as exc:
            logger.error("Failed to handle message on channel %s: %s", channel.label, exc)

    async def on_member_removed(self, msg: TelegramMessage) -> None:
        """Forget the chat if the member who left is this bot."""
        left_member = msg.left_chat_member
        if left_member is None:
            return
        try:
            if self._bot_id is None:
                self._bot_id = (await self._bot.get_me()).id
        except TelegramError as exc:
            logger.error("Failed to identify bot user: %s", exc)
            return
        if left_member.id != self._bot_id:
            return
        await self._channels.remove(str(msg.chat.id), self._channel_store)

    # -- Queries ------------------------------------------------------------

    async def get_user(self) -> User:
        me = await self._bot.get_me()
        return User(self, str(me.id))

    async def get_owners(self) -> list[User]:
        return [User(self, uid) for uid in self._owner_ids]

    async def has_default_admin(self, channel: Channel) -> bool:
        chat = await self._bot.get_chat(_chat_id(channel))
        if chat.type == ChatType.PRIVATE:
            return True
        # Legacy groups flag; not a typed attribute in current Bot API objects
        api_kwargs = getattr(chat, "api_kwargs", None) or {}
        return bool(api_kwargs.get("all_members_are_administrators"))

    async def is_channel_admin(self, user: User, channel: Channel) -> bool:
        admins = await self._bot.get_chat_administrators(_chat_id(channel)) or ()
        return user.id in {str(admin.user.id) for admin in admins}

    async def resolve_user_role(self, user: User, channel: Channel) -> Resolution[UserRole]:
        return await resolve_role(user, channel, self._owner_ids, self)

    async def get_user_role(self, user: User, channel: Channel) -> UserRole:
        """Role of ``user`` on ``channel``; USER when the platform can't tell."""
        return (await self.resolve_user_role(user, channel)).value

    async def get_user_permissions(self, user: User, channel: Channel) -> Permissions:
        """Live permissions of ``user`` on ``channel``.

        Returns no permissions if the bot is not a member of the chat.
        Raises PlatformError for any other Telegram failure.
        """
        chat_id = _chat_id(channel)
        try:
            chat = await self._bot.get_chat(chat_id)
        except Forbidden:
            # Bot is not a member of the chat
            return Permissions.none()
        except TelegramError as exc:
            logger.error(
                "Failed to get chat to check permissions on channel %s: %s", channel.label, exc,
            )
            raise PlatformError(f"Failed to get chat {chat_id}: {exc}") from exc

        try:
            member = await self._bot.get_chat_member(chat_id, int(user.id))
        except TelegramError as exc:
            logger.error("Failed to get chat member on channel %s: %s", channel.label, exc)
            raise PlatformError(f"Failed to get member {user.id} of chat {chat_id}: {exc}") from exc

        return telegram_permissions(chat.type, member)

    async def resolve_user_permissions(self, user: User, channel: Channel) -> Resolution[Permissions]:
        """Soft variant of get_user_permissions: no access instead of errors."""
        return await resolve_permissions(lambda: self.get_user_permissions(user, channel), channel)

    async def get_channel_user_count(self, channel: Channel) -> int:
        try:
            # Don't count the bot itself
            return await self._bot.get_chat_member_count(_chat_id(channel)) - 1
        except TelegramError as exc:
            logger.error("Failed to get chat member count for channel %s: %s", channel.label, exc)
            return 0

    async def get_user_count(self) -> int:
        counts = await asyncio.gather(
            *(self.get_channel_user_count(channel) for channel in self.get_bot_channels())
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
        says that a send was attempted. There is deliberately no pre-send
        permission check: Telegram answers a send to a chat we cannot write
        to with Forbidden, which is handled like any other delivery error.
        """
        if isinstance(content, str):
            text = natural_limit(to_telegram(content), MAX_MESSAGE_LENGTH)
            preview = None
        else:
            text, instant_view = render_notification(content)
            text = natural_limit(text, MAX_NOTIFICATION_LENGTH)
            preview = LinkPreviewOptions(is_disabled=not instant_view)

        chat_id = _chat_id(channel)
        try:
            await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN,
                link_preview_options=preview,
            )
        except Exception as exc:
            self._handle_send_error(exc, channel)
        return True

    def _handle_send_error(self, exc: Exception, channel: Channel) -> None:
        if isinstance(exc, Forbidden):
            # Bot is not a member of the channel chat or was blocked by the user
            logger.warning(
                "Failed to send notification to channel %s, forbidden: %s", channel.label, exc,
            )
        elif isinstance(exc, BadRequest) and "not found" in str(exc).lower():
            logger.warning(
                "Failed to send notification to channel %s, chat not found: %s", channel.label, exc,
            )
        elif isinstance(exc, TelegramError):
            logger.error("Failed to send notification to channel %s: %s", channel.label, exc)
        else:
            logger.error("Failed to send message to channel %s: %s", channel.label, exc)
