"""Summaries and opinions about shared web pages."""

import logging

from gabble_bot.core.context_store import ChatId
from gabble_bot.core.events import Transport
from gabble_bot.core.gateway import NO_ANSWER, InferenceGateway
from gabble_bot.core.handlers import WebContentMode
from gabble_bot.core.normalize import normalize_reply
from gabble_bot.core.turns import human
from gabble_bot.core.web import WebFetcher, WebPageResult, remove_urls
from gabble_bot.jobs.base import BackgroundJobs

logger = logging.getLogger(__name__)

MODE_INSTRUCTIONS: dict[str, str] = {
    "RESUME": "Write a short summary of the following web page.",
    "OPINION": "Read the following web page and give your honest opinion about it.",
}


class WebContentJobQueue(BackgroundJobs):
    """Fetches a page, asks the model about it and replies with the answer."""

    def __init__(
        self,
        fetcher: WebFetcher,
        gateway: InferenceGateway,
        transport: Transport,
        enabled: bool = True,
    ):
        super().__init__("web_content")
        self._fetcher = fetcher
        self._gateway = gateway
        self._transport = transport
        self._enabled = enabled

    def enqueue(
        self,
        url: str,
        mode: WebContentMode,
        chat_id: ChatId,
        reply_to: int | None = None,
        query: str = "",
    ) -> None:
        """Queue the fetch; returns immediately."""
        if not self._enabled:
            logger.info(f"Web content disabled, ignoring {mode} request for {url}")
            return
        self._spawn(
            self._process(url, mode, chat_id, reply_to, query),
            f"chat={chat_id} mode={mode} url={url}",
        )

    async def close(self) -> None:
        await super().close()
        await self._fetcher.close()

    def build_prompt(self, page: WebPageResult, mode: WebContentMode, query: str) -> str:
        parts = [MODE_INSTRUCTIONS[mode]]

        clean_query = remove_urls(query)
        if clean_query:
            parts.append(f'The user asked: "{clean_query}"')

        parts.append(f"URL: {page.url}")
        if page.title:
            parts.append(f"Title: {page.title}")
        parts.append(f"\n{page.markdown_content}")
        if page.truncated:
            parts.append("\n[Page content was truncated due to length]")
        return "\n".join(parts)

    async def _process(
        self,
        url: str,
        mode: WebContentMode,
        chat_id: ChatId,
        reply_to: int | None,
        query: str,
    ) -> None:
        logger.debug(f"Fetching web content from {url} for {mode}")
        page = await self._fetcher.fetch(url)
        if page.error:
            logger.error(f"WEB_CONTENT_FAILED: url={url} error={page.error}")
            return

        reply = await self._gateway.invoke([human(self.build_prompt(page, mode, query))])
        text = normalize_reply(reply.content)
        if NO_ANSWER in text:
            logger.info(f"WEB_CONTENT: model had no answer for {url}")
            return

        await self._transport.send_text(chat_id, text, reply_to=reply_to)
