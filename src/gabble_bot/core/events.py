"""Inbound event shape and the outbound transport interface."""

from dataclasses import dataclass
from typing import Protocol

from gabble_bot.core.context_store import ChatId


@dataclass(frozen=True)
class MediaRef:
    """An image attached to an inbound message."""

    url: str
    mime_type: str = "image/jpeg"
    data: bytes | None = None


@dataclass(frozen=True)
class InboundEvent:
    """A chat message the bot has decided to process."""

    chat_id: ChatId
    message_id: int | None
    sender_display_name: str
    text: str | None
    is_reply_to_bot: bool = False
    is_reply_to_other: bool = False
    quoted_sender: str | None = None
    quoted_text: str | None = None
    media: MediaRef | None = None

    @property
    def has_media(self) -> bool:
        return self.media is not None


class Transport(Protocol):
    """Outbound delivery. Implementations log their own errors."""

    async def send_text(
        self, chat_id: ChatId, text: str, reply_to: int | None = None
    ) -> None: ...

    async def send_photo(
        self, chat_id: ChatId, data: bytes, reply_to: int | None = None
    ) -> None: ...
