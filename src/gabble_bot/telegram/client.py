"""Telegram client: inbound events and outbound delivery."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from telegram import Message, ReplyParameters, Update
from telegram.constants import ChatAction, ChatType, ParseMode
from telegram.error import TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from gabble_bot.config import TelegramConfig
from gabble_bot.core.backends import ConfigurationError
from gabble_bot.core.context_store import ChatId
from gabble_bot.core.events import InboundEvent, MediaRef

logger = logging.getLogger(__name__)

# Telegram rejects messages longer than this
MAX_MESSAGE_LENGTH = 4096

# Token-free reference for attached photos
TELEGRAM_PHOTO_SCHEME = "tg-photo://"

EventHandler = Callable[[InboundEvent], Coroutine[Any, Any, None]]


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split a message into chunks that fit within Telegram's limit.

    Cuts at the last whitespace inside the limit when there is one,
    otherwise hard-splits at the limit.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    while text:
        if len(text) <= max_length:
            chunks.append(text)
            break

        # Whitespace at index max_length still leaves a full-size chunk
        window = text[: max_length + 1]
        split_at = max(window.rfind(" "), window.rfind("\n"))
        if split_at <= 0:
            split_at = max_length

        chunk = text[:split_at].rstrip()
        if chunk:
            chunks.append(chunk)
        text = text[split_at:].lstrip()

    return chunks


def display_name(message: Message | None) -> str:
    """Username, falling back to first name."""
    if message is None or message.from_user is None:
        return "Unknown"
    user = message.from_user
    return user.username or user.first_name or "Unknown"


def message_text(message: Message) -> str | None:
    """Caption for photos, text otherwise."""
    return message.caption if message.photo else message.text


def is_reply_to_bot(message: Message, bot_username: str) -> bool:
    reply = message.reply_to_message
    return bool(
        reply is not None
        and reply.from_user is not None
        and reply.from_user.username == bot_username
    )


def should_process(message: Message, config: TelegramConfig) -> bool:
    """Whether the bot was addressed.

    Private chats always count; in groups the bot must be mentioned by
    @username or name, or the message must reply to the bot.
    """
    if config.allowed_chat_ids and message.chat.id not in config.allowed_chat_ids:
        logger.debug(f"Chat {message.chat.id} not allowed")
        return False

    if message.chat.type == ChatType.PRIVATE:
        return True

    text = message_text(message) or ""
    return (
        f"@{config.bot_username}" in text
        or config.bot_name.lower() in text.lower()
        or is_reply_to_bot(message, config.bot_username)
    )


def to_inbound_event(
    message: Message, bot_username: str, media: MediaRef | None = None
) -> InboundEvent:
    """Build the pipeline event for a Telegram message."""
    reply = message.reply_to_message
    to_bot = is_reply_to_bot(message, bot_username)
    to_other = reply is not None and not to_bot

    return InboundEvent(
        chat_id=message.chat.id,
        message_id=message.message_id,
        sender_display_name=display_name(message),
        text=message_text(message),
        is_reply_to_bot=to_bot,
        is_reply_to_other=to_other,
        quoted_sender=display_name(reply) if to_other else None,
        quoted_text=message_text(reply) if to_other else None,
        media=media,
    )


class TelegramClient:
    """Receives addressed messages and delivers replies."""

    def __init__(
        self,
        config: TelegramConfig,
        on_message: EventHandler | None = None,
        application: Application | None = None,
    ):
        """Initialize the client.

        Args:
            config: Telegram configuration
            on_message: Coroutine called with each addressed message
            application: Prebuilt application (mainly for tests)

        Raises:
            ConfigurationError: If no bot token is configured and no
                application was given
        """
        if application is None:
            if not config.bot_token:
                raise ConfigurationError("TELEGRAM_BOT_TOKEN must be set")
            application = (
                Application.builder()
                .token(config.bot_token.get_secret_value())
                .concurrent_updates(True)
                .build()
            )

        self._config = config
        self._on_message = on_message
        self._app = application
        self._stopped = asyncio.Event()
        self._app.add_handler(
            MessageHandler((filters.TEXT | filters.PHOTO) & ~filters.COMMAND, self._on_update)
        )

    def set_handler(self, on_message: EventHandler) -> None:
        self._on_message = on_message

    @property
    def bot(self):
        return self._app.bot

    async def _download_photo(self, message: Message) -> MediaRef | None:
        """Fetch the largest size of an attached photo.

        The download URL embeds the bot token, so the reference kept on the
        event is the photo's file_unique_id instead.
        """
        photo = message.photo[-1]
        try:
            tg_file = await photo.get_file()
            data = await tg_file.download_as_bytearray()
        except TelegramError as e:
            logger.error(f"Failed to download photo for message {message.message_id}: {e}")
            return None
        return MediaRef(
            url=f"{TELEGRAM_PHOTO_SCHEME}{photo.file_unique_id}",
            mime_type="image/jpeg",
            data=bytes(data),
        )

    async def _on_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle an incoming Telegram update."""
        message = update.effective_message
        if message is None:
            return

        if not should_process(message, self._config):
            logger.debug(f"Message {message.message_id} ignored")
            return

        media = await self._download_photo(message) if message.photo else None
        event = to_inbound_event(message, self._config.bot_username, media)
        logger.info(
            f"MSG_RECEIVED: chat={event.chat_id} <{event.sender_display_name}> {event.text}"
        )

        if self._on_message:
            try:
                await self._on_message(event)
            except Exception:
                logger.exception(f"Error handling message {message.message_id}")

    def clean_outgoing(self, text: str) -> str:
        """Drop a leading "@bot_username: " the model sometimes echoes."""
        prefix = f"@{self._config.bot_username}: "
        if text.startswith(prefix):
            return text[len(prefix):]
        return text

    async def _send_chunk(self, chat_id: ChatId, chunk: str, reply_to: int | None) -> None:
        reply_parameters = (
            ReplyParameters(message_id=reply_to, allow_sending_without_reply=True)
            if reply_to is not None
            else None
        )
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=chunk,
                parse_mode=ParseMode.MARKDOWN,
                reply_parameters=reply_parameters,
            )
            return
        except TelegramError as e:
            logger.warning(f"Failed to send message with Markdown to chat {chat_id}: {e}")

        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=chunk,
                reply_parameters=reply_parameters,
            )
        except TelegramError as e:
            logger.error(f"Failed to send plain text message to chat {chat_id}: {e}")

    async def send_text(self, chat_id: ChatId, text: str, reply_to: int | None = None) -> None:
        """Send text, split into chunks, as a reply to reply_to."""
        text = self.clean_outgoing(text)
        if not text.strip():
            return

        try:
            await self.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
        except TelegramError as e:
            logger.debug(f"Could not send typing action to chat {chat_id}: {e}")

        chunks = split_message(text, self._config.max_message_length)
        for chunk in chunks:
            await self._send_chunk(chat_id, chunk, reply_to)
        logger.info(f"MSG_SENT: chat={chat_id} chunks={len(chunks)} chars={len(text)}")

    async def send_photo(self, chat_id: ChatId, data: bytes, reply_to: int | None = None) -> None:
        """Send an image as a reply to reply_to."""
        reply_parameters = (
            ReplyParameters(message_id=reply_to, allow_sending_without_reply=True)
            if reply_to is not None
            else None
        )
        try:
            await self.bot.send_photo(
                chat_id=chat_id, photo=data, reply_parameters=reply_parameters
            )
            logger.info(f"MSG_SENT: chat={chat_id} photo bytes={len(data)}")
        except TelegramError as e:
            logger.error(f"Failed to send image to chat {chat_id}: {e}")

    async def run_forever(self) -> None:
        """Poll for updates until stop() is called."""
        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling()
        logger.info(f"Polling as @{self._config.bot_username}")
        try:
            await self._stopped.wait()
        finally:
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()

    def stop(self) -> None:
        self._stopped.set()
