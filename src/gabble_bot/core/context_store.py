"""Per-chat conversation context with token-budgeted trimming."""

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from gabble_bot.core.turns import ConversationTurn

logger = logging.getLogger(__name__)

ChatId = int | str
TokenCounter = Callable[[Sequence[ConversationTurn]], int]


@dataclass
class ChatLog:
    """Ordered turn log for a single chat, oldest first."""

    turns: deque[ConversationTurn] = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __len__(self) -> int:
        return len(self.turns)


class ContextStore:
    """Keeps conversation turns per chat.

    Each chat has its own lock; operations on different chats never wait on
    each other. The registry lock is only held while creating a chat log.
    """

    def __init__(self):
        self._chats: dict[ChatId, ChatLog] = {}
        self._lock = asyncio.Lock()

    async def _get_log(self, chat_id: ChatId) -> ChatLog:
        """Get or create the log for a chat."""
        async with self._lock:
            if chat_id not in self._chats:
                self._chats[chat_id] = ChatLog()
            return self._chats[chat_id]

    async def append(self, chat_id: ChatId, turn: ConversationTurn) -> None:
        """Add a turn to the end of the chat's log."""
        log = await self._get_log(chat_id)
        async with log.lock:
            log.turns.append(turn)
        logger.debug(f"Appended {turn.role.value} turn to chat {chat_id} (size: {len(log)})")

    async def get_turns(self, chat_id: ChatId) -> list[ConversationTurn]:
        """Get a snapshot of the chat's turns, oldest first.

        Reading an unknown chat creates an empty log for it, so callers never
        need to check for existence first.
        """
        log = await self._get_log(chat_id)
        async with log.lock:
            return list(log.turns)

    async def remove_oldest(self, chat_id: ChatId) -> None:
        """Drop the oldest turn. No-op if the chat has no turns."""
        log = await self._get_log(chat_id)
        async with log.lock:
            if log.turns:
                log.turns.popleft()

    async def trim(
        self, chat_id: ChatId, max_tokens: int, token_counter: TokenCounter
    ) -> int:
        """Evict oldest turns until the chat fits within max_tokens.

        Stops once the log is empty, even if a single turn alone was over
        budget.

        Returns:
            Number of turns removed
        """
        log = await self._get_log(chat_id)
        removed = 0
        async with log.lock:
            while log.turns and token_counter(list(log.turns)) > max_tokens:
                log.turns.popleft()
                removed += 1

        if removed:
            logger.info(
                f"CONTEXT_TRIM: chat={chat_id} removed={removed} remaining={len(log)}"
            )
        return removed

    async def clear(self, chat_id: ChatId) -> None:
        """Drop every turn for a chat."""
        log = await self._get_log(chat_id)
        async with log.lock:
            log.turns.clear()

    def chat_ids(self) -> list[ChatId]:
        """Chats that currently have a log."""
        return list(self._chats)

    def size(self, chat_id: ChatId) -> int:
        """Number of turns held for a chat (0 if unknown)."""
        log = self._chats.get(chat_id)
        return len(log) if log else 0
