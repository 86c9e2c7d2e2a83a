"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import Sequence
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gabble_bot.config import Config, RateLimitConfig
from gabble_bot.core import (
    ContextStore,
    ConversationTurn,
    InboundEvent,
    InferenceBackend,
    InferenceGateway,
    MediaRef,
    RateLimiter,
    build_default_router,
)
from gabble_bot.core.logging import reset_session_stats


class FakeBackend(InferenceBackend):
    """Scripted backend that records what it was asked."""

    name = "fake"

    def __init__(
        self,
        replies: list[str] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        supports_media: bool = True,
    ):
        super().__init__(model="fake-model")
        self.supports_media = supports_media
        self._replies = list(replies or ["Hello there"])
        self._error = error
        self._delay = delay
        self.calls: list[tuple[str, list[ConversationTurn], MediaRef | None]] = []

    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[ConversationTurn],
        media: MediaRef | None = None,
    ) -> str:
        self.calls.append((system_prompt, list(turns), media))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        if len(self._replies) > 1:
            return self._replies.pop(0)
        return self._replies[0]


class FakeTransport:
    """Collects outbound messages instead of sending them."""

    def __init__(self):
        self.texts: list[tuple[object, str, int | None]] = []
        self.photos: list[tuple[object, bytes, int | None]] = []

    async def send_text(self, chat_id, text: str, reply_to: int | None = None) -> None:
        self.texts.append((chat_id, text, reply_to))

    async def send_photo(self, chat_id, data: bytes, reply_to: int | None = None) -> None:
        self.photos.append((chat_id, data, reply_to))


def make_event(
    text: str | None = "hello",
    chat_id: int = 100,
    message_id: int = 1,
    sender: str = "alice",
    **kwargs,
) -> InboundEvent:
    """Build an inbound event with sensible defaults."""
    return InboundEvent(
        chat_id=chat_id,
        message_id=message_id,
        sender_display_name=sender,
        text=text,
        **kwargs,
    )


@pytest.fixture(autouse=True)
def _fresh_stats():
    """Session stats are global; start every test from zero."""
    reset_session_stats()
    yield
    reset_session_stats()


@pytest.fixture
def default_config() -> Config:
    """Provide a default configuration for testing."""
    return Config()


@pytest.fixture
def fast_rate_limit() -> RateLimitConfig:
    """A limiter that never makes tests wait."""
    return RateLimitConfig(capacity=1000, refill_rate_per_second=1000, poll_interval_seconds=0.001)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def gateway(backend: FakeBackend, fast_rate_limit: RateLimitConfig) -> InferenceGateway:
    return InferenceGateway(
        backend=backend,
        rate_limiter=RateLimiter.from_config(fast_rate_limit),
        system_prompt="You are a test bot.",
    )


@pytest.fixture
def image_jobs() -> MagicMock:
    return MagicMock(name="image_jobs")


@pytest.fixture
def web_content_jobs() -> MagicMock:
    return MagicMock(name="web_content_jobs")


@pytest.fixture
def router(transport: FakeTransport, image_jobs: MagicMock, web_content_jobs: MagicMock):
    import random

    return build_default_router(transport, image_jobs, web_content_jobs, rng=random.Random(42))


@pytest.fixture
def context_store() -> ContextStore:
    return ContextStore()


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_content = """
telegram:
  bot_username: "test_bot"
  bot_name: "Tester"
  allowed_chat_ids:
    - 42

llm:
  google_api_key: "test-key"
  preferred_language: "English"

rate_limit:
  capacity: 3
  refill_rate_per_second: 0.5

context:
  max_context_tokens: 1000

web_content:
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path
