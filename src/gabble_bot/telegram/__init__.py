"""Telegram transport."""

from .client import (
    MAX_MESSAGE_LENGTH,
    TelegramClient,
    should_process,
    split_message,
    to_inbound_event,
)

__all__ = [
    "MAX_MESSAGE_LENGTH",
    "TelegramClient",
    "should_process",
    "split_message",
    "to_inbound_event",
]
