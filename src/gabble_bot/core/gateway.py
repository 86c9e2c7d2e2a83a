"""Rate-limited access to the language model."""

import asyncio
import logging
import math
from collections.abc import Sequence

from gabble_bot.core.backends import InferenceBackend
from gabble_bot.core.events import MediaRef
from gabble_bot.core.logging import get_session_stats, log_llm_call, log_llm_response
from gabble_bot.core.rate_limiter import RateLimiter
from gabble_bot.core.turns import ConversationTurn, assistant

logger = logging.getLogger(__name__)

# Sentinel the model answers with when it has nothing to say
NO_ANSWER = "NO_ANSWER"

CHARS_PER_TOKEN = 4


def count_tokens(turns: Sequence[ConversationTurn]) -> int:
    """Approximate token cost of a conversation.

    One token per four characters of serialized content, rounded up.
    Structured turns count the length of their JSON form.
    """
    total_chars = sum(len(turn.serialize()) for turn in turns)
    return math.ceil(total_chars / CHARS_PER_TOKEN)


class InferenceGateway:
    """Wraps a backend with rate limiting and failure containment.

    invoke() never raises for backend problems: any error becomes an
    assistant turn carrying the NO_ANSWER sentinel.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        rate_limiter: RateLimiter,
        system_prompt: str = "",
        multimodal: bool = True,
        call_timeout: float | None = None,
    ):
        """Initialize the gateway.

        Args:
            backend: Model backend to call
            rate_limiter: Limiter every call waits on
            system_prompt: Persona instructions sent with every call
            multimodal: Whether image attachments may be forwarded at all
            call_timeout: Optional per-call timeout in seconds (None = wait forever)
        """
        self._backend = backend
        self._rate_limiter = rate_limiter
        self._system_prompt = system_prompt
        self._multimodal = multimodal and backend.supports_media
        self._call_timeout = call_timeout

    @property
    def is_multimodal_capable(self) -> bool:
        return self._multimodal

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    def count_tokens(self, turns: Sequence[ConversationTurn]) -> int:
        return count_tokens(turns)

    async def invoke(
        self,
        turns: Sequence[ConversationTurn],
        media: MediaRef | None = None,
    ) -> ConversationTurn:
        """Send the conversation to the model and return its reply.

        Args:
            turns: Full context, oldest first
            media: Optional image; dropped unless the gateway is multimodal

        Returns:
            Assistant turn with the raw reply, or NO_ANSWER on failure
        """
        if media is not None and not self._multimodal:
            logger.debug("Gateway is not multimodal, dropping media attachment")
            media = None

        await self._rate_limiter.acquire()

        operation = f"Chat reply ({self._backend.name})"
        log_llm_call(
            operation=operation,
            model=self._backend.model,
            system_prompt=self._system_prompt,
            messages=[turn.to_dict() for turn in turns],
            has_media=media is not None,
        )

        stats = get_session_stats()
        stats.increment("inference_calls")

        try:
            call = self._backend.generate(self._system_prompt, turns, media)
            if self._call_timeout is not None:
                text = await asyncio.wait_for(call, timeout=self._call_timeout)
            else:
                text = await call
        except Exception as e:
            logger.error(f"INFERENCE_FAILED: backend={self._backend.name} error={e!r}")
            log_llm_response(operation=operation, error=repr(e))
            stats.increment("inference_failures")
            return assistant(NO_ANSWER)

        log_llm_response(operation=operation, response_text=text)
        return assistant(text)
