"""Tests for the inference gateway and token counting."""

import json

import pytest
from pydantic import SecretStr

from conftest import FakeBackend
from gabble_bot.config import LLMConfig
from gabble_bot.core.backends import (
    AnthropicBackend,
    ConfigurationError,
    GeminiBackend,
    build_backend,
)
from gabble_bot.core.events import MediaRef
from gabble_bot.core.gateway import NO_ANSWER, InferenceGateway, count_tokens
from gabble_bot.core.logging import get_session_stats
from gabble_bot.core.rate_limiter import RateLimiter
from gabble_bot.core.turns import ContentPart, Role, assistant, human


def make_gateway(backend: FakeBackend, **kwargs) -> InferenceGateway:
    return InferenceGateway(
        backend=backend,
        rate_limiter=RateLimiter(capacity=100, refill_rate_per_second=100, poll_interval_seconds=0.001),
        system_prompt="system",
        **kwargs,
    )


class TestCountTokens:
    def test_empty(self):
        assert count_tokens([]) == 0

    def test_rounds_up(self):
        assert count_tokens([human("abcd")]) == 1
        assert count_tokens([human("abcde")]) == 2

    def test_sums_across_turns(self):
        assert count_tokens([human("ab"), assistant("cd")]) == 1
        assert count_tokens([human("a" * 12)] * 3) == 9

    def test_structured_turn_counts_json(self):
        turn = human(
            (ContentPart.from_text("look"), ContentPart.from_image_url("https://example.com/a.jpg"))
        )
        serialized = json.dumps(
            [{"type": "text", "text": "look"}, {"type": "image_url", "image_url": "https://example.com/a.jpg"}]
        )
        assert turn.serialize() == serialized
        assert count_tokens([turn]) == -(-len(serialized) // 4)


class TestInvoke:
    @pytest.mark.asyncio
    async def test_success(self):
        backend = FakeBackend(replies=["Hi!"])
        gateway = make_gateway(backend)

        reply = await gateway.invoke([human("@bob: hello")])

        assert reply.role is Role.ASSISTANT
        assert reply.content == "Hi!"
        system_prompt, turns, media = backend.calls[0]
        assert system_prompt == "system"
        assert turns == [human("@bob: hello")]
        assert media is None
        assert get_session_stats().inference_calls == 1

    @pytest.mark.asyncio
    async def test_backend_error_becomes_no_answer(self):
        backend = FakeBackend(error=RuntimeError("quota exceeded"))
        gateway = make_gateway(backend)

        reply = await gateway.invoke([human("hello")])

        assert reply == assistant(NO_ANSWER)
        assert get_session_stats().inference_failures == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_no_answer(self):
        backend = FakeBackend(replies=["too late"], delay=1.0)
        gateway = make_gateway(backend, call_timeout=0.05)

        reply = await gateway.invoke([human("hello")])

        assert reply.content == NO_ANSWER

    @pytest.mark.asyncio
    async def test_media_forwarded_when_multimodal(self):
        backend = FakeBackend()
        gateway = make_gateway(backend)
        media = MediaRef(url="https://example.com/cat.jpg", data=b"jpeg")

        await gateway.invoke([human("look")], media=media)

        assert gateway.is_multimodal_capable
        assert backend.calls[0][2] is media

    @pytest.mark.asyncio
    async def test_media_dropped_when_disabled(self):
        backend = FakeBackend()
        gateway = make_gateway(backend, multimodal=False)

        await gateway.invoke([human("look")], media=MediaRef(url="u", data=b"x"))

        assert not gateway.is_multimodal_capable
        assert backend.calls[0][2] is None

    @pytest.mark.asyncio
    async def test_media_dropped_when_backend_is_text_only(self):
        backend = FakeBackend(supports_media=False)
        gateway = make_gateway(backend)

        await gateway.invoke([human("look")], media=MediaRef(url="u", data=b"x"))

        assert backend.calls[0][2] is None


class TestBuildBackend:
    def test_no_keys_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            build_backend(LLMConfig())

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)

    def test_gemini_preferred(self):
        backend = build_backend(
            LLMConfig(google_api_key=SecretStr("g"), anthropic_api_key=SecretStr("a"))
        )
        assert isinstance(backend, GeminiBackend)
        assert backend.model == "gemini-2.0-flash"

    def test_anthropic_fallback(self):
        backend = build_backend(
            LLMConfig(anthropic_api_key=SecretStr("a"), anthropic_model="claude-test")
        )
        assert isinstance(backend, AnthropicBackend)
        assert backend.model == "claude-test"
