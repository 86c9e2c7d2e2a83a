"""LLM backends the inference gateway can call."""

import base64
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

import anthropic
from google import genai
from google.genai import types

from gabble_bot.config import LLMConfig
from gabble_bot.core.events import MediaRef
from gabble_bot.core.logging import get_session_stats, log_llm_round
from gabble_bot.core.turns import ConversationTurn, Role

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised at startup when no usable backend is configured."""


class InferenceBackend(ABC):
    """A model that turns a conversation into a reply string."""

    name: str = "backend"
    supports_media: bool = False

    def __init__(self, model: str, max_output_tokens: int = 2048):
        self.model = model
        self._max_output_tokens = max_output_tokens

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[ConversationTurn],
        media: MediaRef | None = None,
    ) -> str:
        """Produce the raw reply text. May raise on any backend failure."""


class GeminiBackend(InferenceBackend):
    """Google Gemini via google-genai. Accepts an inline image."""

    name = "gemini"
    supports_media = True

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash", max_output_tokens: int = 2048):
        super().__init__(model, max_output_tokens)
        self._client = genai.Client(api_key=api_key)

    def _to_contents(
        self, turns: Sequence[ConversationTurn], media: MediaRef | None
    ) -> list[types.Content]:
        contents = [
            types.Content(
                role="user" if turn.role is Role.HUMAN else "model",
                parts=[types.Part.from_text(text=turn.text)],
            )
            for turn in turns
            if turn.text
        ]

        if media is not None and media.data is not None:
            image = types.Part.from_bytes(data=media.data, mime_type=media.mime_type)
            if contents and contents[-1].role == "user":
                contents[-1].parts.append(image)
            else:
                contents.append(types.Content(role="user", parts=[image]))

        return contents

    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[ConversationTurn],
        media: MediaRef | None = None,
    ) -> str:
        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=self._to_contents(turns, media),
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                max_output_tokens=self._max_output_tokens,
            ),
        )

        usage = response.usage_metadata if response else None
        log_llm_round(
            component=f"gateway/{self.name}",
            model=self.model,
            tokens_in=usage.prompt_token_count if usage else None,
            tokens_out=usage.candidates_token_count if usage else None,
        )
        get_session_stats().increment_api_call(self.model)

        text = response.text
        if text is None:
            raise ValueError("Gemini returned no text")
        return text


class AnthropicBackend(InferenceBackend):
    """Anthropic Claude via the messages API."""

    name = "anthropic"
    supports_media = True

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        max_output_tokens: int = 2048,
    ):
        super().__init__(model, max_output_tokens)
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

    def _to_messages(
        self, turns: Sequence[ConversationTurn], media: MediaRef | None
    ) -> list[dict]:
        messages: list[dict] = []
        for turn in turns:
            if not turn.text:
                continue
            role = "user" if turn.role is Role.HUMAN else "assistant"
            # The conversation has to open with a user turn
            if not messages and role == "assistant":
                continue
            messages.append({"role": role, "content": turn.text})

        if media is not None and media.data is not None:
            image_block = {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media.mime_type,
                    "data": base64.b64encode(media.data).decode("ascii"),
                },
            }
            if messages and messages[-1]["role"] == "user":
                last = messages[-1]
                last["content"] = [{"type": "text", "text": last["content"]}, image_block]
            else:
                messages.append({"role": "user", "content": [image_block]})

        return messages

    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[ConversationTurn],
        media: MediaRef | None = None,
    ) -> str:
        messages = self._to_messages(turns, media)
        if not messages:
            raise ValueError("No user turn to send")

        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self._max_output_tokens,
            system=system_prompt,
            messages=messages,
        )

        log_llm_round(
            component=f"gateway/{self.name}",
            model=self.model,
            tokens_in=response.usage.input_tokens,
            tokens_out=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        get_session_stats().increment_api_call(self.model)

        for block in response.content:
            if block.type == "text":
                return block.text

        raise ValueError(
            f"No text block in response (content types: {[b.type for b in response.content]})"
        )


def build_backend(config: LLMConfig) -> InferenceBackend:
    """Pick the configured backend.

    Gemini wins when both keys are present.

    Raises:
        ConfigurationError: If no API key is configured at all
    """
    if config.google_api_key:
        return GeminiBackend(
            api_key=config.google_api_key.get_secret_value(),
            model=config.gemini_model,
            max_output_tokens=config.max_output_tokens,
        )
    if config.anthropic_api_key:
        return AnthropicBackend(
            api_key=config.anthropic_api_key.get_secret_value(),
            model=config.anthropic_model,
            max_output_tokens=config.max_output_tokens,
        )
    raise ConfigurationError(
        "No LLM backend configured: set GOOGLE_API_KEY (or GEMINI_API_KEY) or ANTHROPIC_API_KEY"
    )
