"""Tests for the Telegram transport."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.constants import ParseMode
from telegram.error import TelegramError

from conftest import FakeBackend
from gabble_bot.config import TelegramConfig
from gabble_bot.core import ContextStore, InferenceGateway, ResponseRouter
from gabble_bot.core.backends import AnthropicBackend, ConfigurationError, GeminiBackend
from gabble_bot.core.events import MediaRef
from gabble_bot.orchestrator import Orchestrator
from gabble_bot.telegram import (
    TelegramClient,
    should_process,
    split_message,
    to_inbound_event,
)


def make_message(
    text: str | None = "hello",
    chat_id: int = 100,
    chat_type: str = "group",
    username: str | None = "alice",
    first_name: str = "Alice",
    reply_to=None,
    photo=None,
    caption: str | None = None,
    message_id: int = 1,
):
    """Stand-in for telegram.Message carrying only what the client reads."""
    return SimpleNamespace(
        message_id=message_id,
        chat=SimpleNamespace(id=chat_id, type=chat_type),
        from_user=SimpleNamespace(username=username, first_name=first_name),
        text=text,
        caption=caption,
        photo=photo,
        reply_to_message=reply_to,
    )


@pytest.fixture
def tg_config() -> TelegramConfig:
    return TelegramConfig(bot_username="gabble_bot", bot_name="Gabble")


@pytest.fixture
def application() -> MagicMock:
    app = MagicMock(name="application")
    app.bot = AsyncMock(name="bot")
    return app


@pytest.fixture
def client(tg_config: TelegramConfig, application: MagicMock) -> TelegramClient:
    return TelegramClient(tg_config, application=application)


class TestSplitMessage:
    def test_short_message_untouched(self):
        assert split_message("hello") == ["hello"]

    def test_splits_at_whitespace(self):
        text = "word " * 2000  # 10000 chars
        chunks = split_message(text.strip())

        assert len(chunks) == 3
        assert all(len(c) <= 4096 for c in chunks)
        assert all(not c.endswith(" ") and not c.startswith(" ") for c in chunks)
        assert " ".join(chunks) == text.strip()

    def test_hard_split_without_whitespace(self):
        text = "x" * 9000
        chunks = split_message(text)

        assert [len(c) for c in chunks] == [4096, 4096, 808]
        assert "".join(chunks) == text

    def test_custom_limit(self):
        assert split_message("aaa bbb ccc", max_length=7) == ["aaa bbb", "ccc"]


class TestShouldProcess:
    def test_private_chat_always(self, tg_config: TelegramConfig):
        assert should_process(make_message(text="hi", chat_type="private"), tg_config)

    def test_group_requires_addressing(self, tg_config: TelegramConfig):
        assert not should_process(make_message(text="just chatting"), tg_config)

    def test_username_mention(self, tg_config: TelegramConfig):
        assert should_process(make_message(text="hey @gabble_bot"), tg_config)

    def test_name_mention_case_insensitive(self, tg_config: TelegramConfig):
        assert should_process(make_message(text="what do you think, gabble?"), tg_config)

    def test_reply_to_bot(self, tg_config: TelegramConfig):
        bot_msg = make_message(text="earlier", username="gabble_bot")
        assert should_process(make_message(text="yes", reply_to=bot_msg), tg_config)

    def test_photo_caption_counts(self, tg_config: TelegramConfig):
        msg = make_message(text=None, photo=[object()], caption="@gabble_bot look")
        assert should_process(msg, tg_config)

    def test_allowed_chat_ids(self):
        config = TelegramConfig(allowed_chat_ids=[1])
        assert not should_process(make_message(chat_id=2, chat_type="private"), config)
        assert should_process(make_message(chat_id=1, chat_type="private"), config)


class TestToInboundEvent:
    def test_plain(self):
        event = to_inbound_event(make_message(text="hi", message_id=9), "gabble_bot")

        assert event.chat_id == 100
        assert event.message_id == 9
        assert event.sender_display_name == "alice"
        assert event.text == "hi"
        assert not event.is_reply_to_bot
        assert not event.is_reply_to_other

    def test_falls_back_to_first_name(self):
        event = to_inbound_event(make_message(username=None), "gabble_bot")
        assert event.sender_display_name == "Alice"

    def test_reply_to_bot(self):
        bot_msg = make_message(text="earlier", username="gabble_bot")
        event = to_inbound_event(make_message(reply_to=bot_msg), "gabble_bot")

        assert event.is_reply_to_bot
        assert event.quoted_text is None

    def test_reply_to_other(self):
        bob_msg = make_message(text="pizza is great", username="bob")
        event = to_inbound_event(make_message(text="agreed", reply_to=bob_msg), "gabble_bot")

        assert event.is_reply_to_other
        assert event.quoted_sender == "bob"
        assert event.quoted_text == "pizza is great"

    def test_media_attached(self):
        media = MediaRef(url="photos/1.jpg", data=b"x")
        msg = make_message(text=None, photo=[object()], caption="look")
        event = to_inbound_event(msg, "gabble_bot", media)

        assert event.text == "look"
        assert event.has_media


class TestTelegramClient:
    def test_requires_token(self, tg_config: TelegramConfig):
        with pytest.raises(ConfigurationError):
            TelegramClient(tg_config)

    def test_registers_message_handler(self, application: MagicMock, client: TelegramClient):
        application.add_handler.assert_called_once()

    def test_clean_outgoing(self, client: TelegramClient):
        assert client.clean_outgoing("@gabble_bot: hi there") == "hi there"
        assert client.clean_outgoing("hi @gabble_bot: there") == "hi @gabble_bot: there"

    @pytest.mark.asyncio
    async def test_send_text_uses_markdown(self, client: TelegramClient, application: MagicMock):
        await client.send_text(100, "*hello*", reply_to=5)

        application.bot.send_message.assert_awaited_once()
        kwargs = application.bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == 100
        assert kwargs["text"] == "*hello*"
        assert kwargs["parse_mode"] == ParseMode.MARKDOWN
        assert kwargs["reply_parameters"].message_id == 5

    @pytest.mark.asyncio
    async def test_markdown_failure_retries_plain(
        self, client: TelegramClient, application: MagicMock
    ):
        application.bot.send_message.side_effect = [TelegramError("can't parse entities"), None]

        await client.send_text(100, "broken *markdown")

        assert application.bot.send_message.await_count == 2
        retry = application.bot.send_message.await_args_list[1].kwargs
        assert "parse_mode" not in retry
        assert retry["text"] == "broken *markdown"

    @pytest.mark.asyncio
    async def test_plain_failure_is_logged_not_raised(
        self, client: TelegramClient, application: MagicMock
    ):
        application.bot.send_message.side_effect = TelegramError("chat not found")
        await client.send_text(100, "hello")
        assert application.bot.send_message.await_count == 2

    @pytest.mark.asyncio
    async def test_long_text_sent_in_chunks(self, client: TelegramClient, application: MagicMock):
        await client.send_text(100, "x" * 5000)
        assert application.bot.send_message.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_after_cleaning_not_sent(
        self, client: TelegramClient, application: MagicMock
    ):
        await client.send_text(100, "@gabble_bot: ")
        application.bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_photo(self, client: TelegramClient, application: MagicMock):
        await client.send_photo(100, b"png", reply_to=3)

        kwargs = application.bot.send_photo.await_args.kwargs
        assert kwargs["photo"] == b"png"
        assert kwargs["reply_parameters"].message_id == 3

    @pytest.mark.asyncio
    async def test_on_update_forwards_addressed_message(
        self, client: TelegramClient, tg_config: TelegramConfig
    ):
        handler = AsyncMock()
        client.set_handler(handler)
        update = SimpleNamespace(effective_message=make_message(text="@gabble_bot hi"))

        await client._on_update(update, None)

        handler.assert_awaited_once()
        assert handler.await_args.args[0].text == "@gabble_bot hi"

    @pytest.mark.asyncio
    async def test_on_update_ignores_unaddressed(self, client: TelegramClient):
        handler = AsyncMock()
        client.set_handler(handler)

        await client._on_update(SimpleNamespace(effective_message=make_message(text="hi")), None)

        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_on_update_contains_handler_errors(self, client: TelegramClient):
        client.set_handler(AsyncMock(side_effect=RuntimeError("boom")))
        update = SimpleNamespace(effective_message=make_message(chat_type="private"))

        await client._on_update(update, None)


class TestPhotoReference:
    """The bot token is part of Telegram's file URLs and must stay out of prompts."""

    TOKEN = "123456:SECRET-token"

    def make_photo_message(self):
        tg_file = SimpleNamespace(
            file_path=f"https://api.telegram.org/file/bot{self.TOKEN}/photos/file_1.jpg",
            download_as_bytearray=AsyncMock(return_value=bytearray(b"jpeg")),
        )
        largest = SimpleNamespace(file_unique_id="AgADxyz", get_file=AsyncMock(return_value=tg_file))
        return make_message(
            text=None,
            chat_type="private",
            photo=[SimpleNamespace(file_unique_id="small"), largest],
            caption="what is this?",
        )

    @pytest.mark.asyncio
    async def test_media_url_is_token_free(self, client: TelegramClient):
        media = await client._download_photo(self.make_photo_message())

        assert media.url == "tg-photo://AgADxyz"
        assert media.data == b"jpeg"
        assert self.TOKEN not in media.url

    @pytest.mark.asyncio
    async def test_token_never_reaches_backends(
        self,
        client: TelegramClient,
        backend: FakeBackend,
        gateway: InferenceGateway,
        router: ResponseRouter,
        context_store: ContextStore,
    ):
        handler = AsyncMock()
        client.set_handler(handler)
        await client._on_update(SimpleNamespace(effective_message=self.make_photo_message()), None)
        event = handler.await_args.args[0]

        orchestrator = Orchestrator(
            context_store=context_store,
            gateway=gateway,
            router=router,
            bot_username="gabble_bot",
        )
        await orchestrator.process(event)

        _, seen, media = backend.calls[0]
        stored = await context_store.get_turns(event.chat_id)
        assert media is not None
        assert all(self.TOKEN not in turn.serialize() for turn in [*seen, *stored])

        anthropic_payload = AnthropicBackend(api_key="k")._to_messages(seen, media)
        assert self.TOKEN not in repr(anthropic_payload)
        gemini_payload = GeminiBackend(api_key="k")._to_contents(seen, media)
        assert self.TOKEN not in repr(gemini_payload)
