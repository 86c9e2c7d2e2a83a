"""Response handlers: decide what to do with a model reply.

Handlers are tried in registration order and the first one whose
``can_handle`` accepts the reply is the only one that runs. Tags are
matched as prefixes; the no-answer sentinel is matched anywhere.
"""

import logging
import random
from abc import ABC, abstractmethod
from typing import Literal, Protocol

from gabble_bot.core.context_store import ChatId
from gabble_bot.core.events import InboundEvent, Transport
from gabble_bot.core.gateway import NO_ANSWER
from gabble_bot.core.logging import get_session_stats
from gabble_bot.core.web import extract_urls

logger = logging.getLogger(__name__)

GENERATE_IMAGE_TAG = "GENERATE_IMAGE"
WEBCONTENT_RESUME_TAG = "WEBCONTENT_RESUME"
WEBCONTENT_OPINION_TAG = "WEBCONTENT_OPINION"

NO_ANSWER_GLYPHS = ("😐", "😶", "😳", "😕", "😑")

WebContentMode = Literal["RESUME", "OPINION"]


class ImageJobs(Protocol):
    def enqueue(self, prompt: str, chat_id: ChatId, reply_to: int | None = None) -> None: ...


class WebContentJobs(Protocol):
    def enqueue(
        self,
        url: str,
        mode: WebContentMode,
        chat_id: ChatId,
        reply_to: int | None = None,
        query: str = "",
    ) -> None: ...


class ResponseHandler(ABC):
    """One link in the response chain."""

    name: str = "handler"

    @abstractmethod
    def can_handle(self, reply: str) -> bool:
        """Whether this handler claims the reply."""

    @abstractmethod
    async def dispatch(self, reply: str, chat_id: ChatId, origin: InboundEvent) -> None:
        """Perform the side effect for the reply."""


class ImageRequestHandler(ResponseHandler):
    """GENERATE_IMAGE <prompt> -> queue an image job."""

    name = "image"

    def __init__(self, jobs: ImageJobs):
        self._jobs = jobs

    def can_handle(self, reply: str) -> bool:
        return reply.startswith(GENERATE_IMAGE_TAG)

    def extract_prompt(self, reply: str) -> str:
        return reply[len(GENERATE_IMAGE_TAG):].strip()

    async def dispatch(self, reply: str, chat_id: ChatId, origin: InboundEvent) -> None:
        prompt = self.extract_prompt(reply)
        logger.info(f"IMAGE_REQUEST: chat={chat_id} prompt={prompt[:80]!r}")
        get_session_stats().increment("images_requested")
        self._jobs.enqueue(prompt, chat_id, reply_to=origin.message_id)


class WebContentHandler(ResponseHandler):
    """WEBCONTENT_RESUME|WEBCONTENT_OPINION <url> -> queue a fetch job."""

    name = "web_content"

    _TAGS: dict[str, WebContentMode] = {
        WEBCONTENT_RESUME_TAG: "RESUME",
        WEBCONTENT_OPINION_TAG: "OPINION",
    }

    def __init__(self, jobs: WebContentJobs):
        self._jobs = jobs

    def _mode_for(self, reply: str) -> WebContentMode | None:
        for tag, mode in self._TAGS.items():
            if reply.startswith(tag):
                return mode
        return None

    def can_handle(self, reply: str) -> bool:
        return self._mode_for(reply) is not None

    def extract_url(self, reply: str) -> str | None:
        urls = extract_urls(reply)
        return urls[0] if urls else None

    async def dispatch(self, reply: str, chat_id: ChatId, origin: InboundEvent) -> None:
        mode = self._mode_for(reply)
        url = self.extract_url(reply)
        if mode is None or url is None:
            logger.warning(f"WEB_CONTENT: no URL in reply for chat {chat_id}: {reply[:80]!r}")
            return

        logger.info(f"WEB_CONTENT: chat={chat_id} mode={mode} url={url}")
        get_session_stats().increment("web_content_requested")
        self._jobs.enqueue(
            url,
            mode,
            chat_id,
            reply_to=origin.message_id,
            query=origin.text or "",
        )


class NoAnswerHandler(ResponseHandler):
    """Reply with a single reaction glyph when the model has nothing to say."""

    name = "no_answer"

    def __init__(self, transport: Transport, rng: random.Random | None = None):
        self._transport = transport
        self._rng = rng or random.Random()

    def can_handle(self, reply: str) -> bool:
        return NO_ANSWER in reply

    async def dispatch(self, reply: str, chat_id: ChatId, origin: InboundEvent) -> None:
        glyph = self._rng.choice(NO_ANSWER_GLYPHS)
        logger.debug(f"No answer for chat {chat_id}, reacting with {glyph}")
        await self._transport.send_text(chat_id, glyph, reply_to=origin.message_id)


class DefaultHandler(ResponseHandler):
    """Send the reply text as-is."""

    name = "default"

    def __init__(self, transport: Transport):
        self._transport = transport

    def can_handle(self, reply: str) -> bool:
        return True

    async def dispatch(self, reply: str, chat_id: ChatId, origin: InboundEvent) -> None:
        logger.debug(f"Sending response for chat {chat_id}")
        await self._transport.send_text(chat_id, reply, reply_to=origin.message_id)


class ResponseRouter:
    """Ordered chain of response handlers."""

    def __init__(self, handlers: list[ResponseHandler] | None = None):
        self._handlers: list[ResponseHandler] = list(handlers or [])

    def register(self, handler: ResponseHandler) -> None:
        """Append a handler; it runs only if every earlier one declines."""
        self._handlers.append(handler)

    @property
    def handlers(self) -> list[ResponseHandler]:
        return list(self._handlers)

    def classify(self, reply: str) -> ResponseHandler | None:
        """First handler that accepts the reply, without running it."""
        for handler in self._handlers:
            if handler.can_handle(reply):
                return handler
        return None

    async def dispatch(
        self, reply: str, chat_id: ChatId, origin: InboundEvent
    ) -> ResponseHandler | None:
        """Run the first matching handler.

        Returns:
            The handler that ran, or None if nothing matched
        """
        handler = self.classify(reply)
        if handler is None:
            logger.warning(f"ROUTE: no handler for reply in chat {chat_id}")
            return None

        logger.info(f"ROUTE: chat={chat_id} handler={handler.name}")
        get_session_stats().increment_dispatch(handler.name)
        await handler.dispatch(reply, chat_id, origin)
        return handler


def build_default_router(
    transport: Transport,
    image_jobs: ImageJobs,
    web_content_jobs: WebContentJobs,
    rng: random.Random | None = None,
) -> ResponseRouter:
    """Router with the standard precedence: image, web content, no-answer, default."""
    return ResponseRouter([
        ImageRequestHandler(image_jobs),
        WebContentHandler(web_content_jobs),
        NoAnswerHandler(transport, rng=rng),
        DefaultHandler(transport),
    ])
