"""Main orchestrator tying all components together."""

import asyncio
import logging
import time
from dataclasses import dataclass

from gabble_bot.core import (
    ContextStore,
    ContentPart,
    ConversationTurn,
    InboundEvent,
    InferenceGateway,
    ResponseRouter,
    assistant,
    human,
    normalize_reply,
)
from gabble_bot.core.context_store import ChatId
from gabble_bot.core.logging import get_session_stats, log_timing

logger = logging.getLogger(__name__)

# How often to log session stats (every N messages)
STATS_LOG_INTERVAL = 50


@dataclass
class ProcessingResult:
    """Result of processing one inbound event."""

    processed: bool
    reply: str | None = None
    handler: str | None = None
    evicted: int = 0
    reason: str = ""


class Orchestrator:
    """Runs the per-message pipeline.

    append human turn -> trim -> invoke model -> route reply -> append reply -> trim

    Events for the same chat are processed one at a time; different chats
    proceed concurrently.
    """

    def __init__(
        self,
        context_store: ContextStore,
        gateway: InferenceGateway,
        router: ResponseRouter,
        bot_username: str,
        max_context_tokens: int = 4969,
    ):
        """Initialize the orchestrator.

        Args:
            context_store: Per-chat conversation history
            gateway: Rate-limited model access
            router: Response handler chain
            bot_username: Bot's @identifier, used when a user replies to the bot
            max_context_tokens: Token budget for each chat's context
        """
        self._store = context_store
        self._gateway = gateway
        self._router = router
        self._bot_username = bot_username
        self._max_context_tokens = max_context_tokens

        self._chat_locks: dict[ChatId, asyncio.Lock] = {}

        logger.info(
            f"Orchestrator initialized (backend={gateway.backend.name}, "
            f"multimodal={gateway.is_multimodal_capable}, budget={max_context_tokens})"
        )

    def _chat_lock(self, chat_id: ChatId) -> asyncio.Lock:
        # No await between lookup and insert, so this is race-free on one loop
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._chat_locks[chat_id] = lock
        return lock

    async def on_message_received(self, event: InboundEvent) -> None:
        """Entry point for the transport."""
        await self.process(event)

    def format_human_content(self, event: InboundEvent) -> str:
        """Prefix the sender so the model knows who is talking.

        "@alice: hi" normally; "@alice: @bot: hi" when replying to the bot;
        a quoted-attribution block when replying to someone else.
        """
        text = event.text or ""
        prefix = f"@{event.sender_display_name}: "

        if event.is_reply_to_bot:
            return f"{prefix}@{self._bot_username}: {text}"

        if event.is_reply_to_other and event.quoted_text:
            quoted_sender = event.quoted_sender or "Unknown"
            return f'{prefix}[@{quoted_sender} said: "{event.quoted_text}"]\n{text}'

        return f"{prefix}{text}"

    def build_human_turn(self, event: InboundEvent) -> ConversationTurn:
        content = self.format_human_content(event)
        if event.media is not None and self._gateway.is_multimodal_capable:
            return human((
                ContentPart.from_text(content),
                ContentPart.from_image_url(event.media.url),
            ))
        return human(content)

    async def process(self, event: InboundEvent) -> ProcessingResult:
        """Process one inbound event through the full pipeline."""
        stats = get_session_stats()
        stats.increment("messages_received")
        if stats.messages_received % STATS_LOG_INTERVAL == 0:
            logger.info(f"SESSION_STATS: {stats.summary_line()}")

        if not event.text or not event.text.strip():
            stats.increment("messages_skipped")
            logger.debug(f"Skipping message without text in chat {event.chat_id}")
            return ProcessingResult(processed=False, reason="No text content")

        async with self._chat_lock(event.chat_id):
            return await self._process_locked(event)

    async def _fit_budget(self, chat_id: ChatId) -> int:
        """Trim the chat back under the token budget after an append."""
        evicted = await self._store.trim(
            chat_id, self._max_context_tokens, self._gateway.count_tokens
        )
        if evicted:
            get_session_stats().increment("context_evictions", evicted)
        return evicted

    async def _process_locked(self, event: InboundEvent) -> ProcessingResult:
        pipeline_start = time.perf_counter()
        chat_id = event.chat_id

        # Steps 1-2: record the human turn and fit the budget
        await self._store.append(chat_id, self.build_human_turn(event))
        evicted = await self._fit_budget(chat_id)

        # Step 3: model call
        turns = await self._store.get_turns(chat_id)
        media = event.media if self._gateway.is_multimodal_capable else None
        with log_timing(logger, "Inference"):
            reply_turn = await self._gateway.invoke(turns, media=media)

        # Step 4: route
        reply = normalize_reply(reply_turn.content)
        logger.debug(f"Response for chat {chat_id}: {reply}")
        with log_timing(logger, "Dispatch"):
            handler = await self._router.dispatch(reply, chat_id, event)

        # Step 5: remember what the model said, whatever handled it
        await self._store.append(chat_id, assistant(reply))
        evicted += await self._fit_budget(chat_id)

        pipeline_elapsed = (time.perf_counter() - pipeline_start) * 1000
        handler_name = handler.name if handler else None
        logger.info(
            f"PIPELINE_COMPLETE: chat={chat_id} handler={handler_name} "
            f"evicted={evicted} total={pipeline_elapsed:.0f}ms"
        )

        return ProcessingResult(
            processed=True,
            reply=reply,
            handler=handler_name,
            evicted=evicted,
            reason="Pipeline completed",
        )
