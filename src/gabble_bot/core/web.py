"""Fetch shared web pages and reduce them to markdown for the model."""

import logging
import re
import time
from dataclasses import dataclass
from urllib.parse import urlparse

import aiohttp
import markdownify
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

# http/https only; stops at whitespace, quotes, brackets and closing parens
URL_PATTERN = re.compile(r"https?://[^\s<>\"'\)\]]+", re.IGNORECASE)

_TRAILING_PUNCTUATION = ".,;:!?)"

# Elements that never carry article text
_NOISE_TAGS = ("script", "style", "noscript", "iframe", "nav", "footer", "aside")

# Tried in order when looking for the article body
_CONTENT_SELECTORS = ("main", "article", "#content", ".content", "body")

TRUNCATION_MARKER = "\n\n[Content truncated...]"


def extract_urls(text: str) -> list[str]:
    """URLs in order of first appearance, without sentence punctuation."""
    urls: dict[str, None] = {}
    for match in URL_PATTERN.findall(text):
        urls.setdefault(match.rstrip(_TRAILING_PUNCTUATION), None)
    return list(urls)


def remove_urls(text: str) -> str:
    """Strip URLs from text, collapsing leftover whitespace."""
    return re.sub(r"\s{2,}", " ", URL_PATTERN.sub("", text)).strip()


def truncate_markdown(text: str, max_chars: int) -> str:
    """Cut text to roughly max_chars, preferring a paragraph break.

    A break in the first half of the allowance is not worth keeping, so the
    cut falls back to a hard one.
    """
    if len(text) <= max_chars:
        return text

    limit = max(0, max_chars - len(TRUNCATION_MARKER))
    cut = text.rfind("\n\n", 0, limit)
    if cut < max_chars // 2:
        cut = limit
    return text[:cut].rstrip() + TRUNCATION_MARKER


class FetchError(Exception):
    """The page could not be turned into text."""


@dataclass
class WebPageResult:
    """Outcome of fetching one page. error is set instead of raising."""

    url: str
    title: str
    markdown_content: str
    fetch_time_ms: float = 0.0
    truncated: bool = False
    error: str | None = None


class WebFetcher:
    """Downloads HTML pages over a shared aiohttp session."""

    MAX_REDIRECTS = 5
    USER_AGENT = "Mozilla/5.0 (compatible; GabbleBot/1.0)"

    def __init__(self, max_content_chars: int = 20_000, timeout_seconds: float = 10.0):
        self._max_content_chars = max_content_chars
        self._timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
                headers={"User-Agent": self.USER_AGENT},
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _download(self, url: str) -> str:
        """GET an HTML page.

        Raises:
            FetchError: On non-http schemes, bad status, non-HTML content,
                transport errors and timeouts
        """
        scheme = urlparse(url).scheme
        if scheme not in ("http", "https"):
            raise FetchError(f"Invalid URL scheme: {scheme}. Only http/https supported.")

        session = await self._get_session()
        try:
            async with session.get(
                url, allow_redirects=True, max_redirects=self.MAX_REDIRECTS
            ) as response:
                if response.status != 200:
                    raise FetchError(f"HTTP {response.status}: {response.reason}")
                content_type = response.headers.get("Content-Type", "")
                if not any(kind in content_type for kind in ("text/html", "application/xhtml")):
                    raise FetchError(f"Not an HTML page: {content_type}")
                return await response.text()
        except aiohttp.ClientError as e:
            raise FetchError(f"Failed to fetch: {e}") from e
        except TimeoutError as e:
            raise FetchError(f"Timeout after {self._timeout_seconds}s") from e

    async def fetch(self, url: str) -> WebPageResult:
        """Fetch a page and convert its main content to markdown.

        Never raises; failures come back in WebPageResult.error.
        """
        start = time.monotonic()

        def elapsed_ms() -> float:
            return (time.monotonic() - start) * 1000

        try:
            html = await self._download(url)
        except FetchError as e:
            logger.warning(f"WEB_FETCH_FAILED: url={url} error={e}")
            return WebPageResult(
                url=url, title="", markdown_content="", error=str(e), fetch_time_ms=elapsed_ms()
            )

        markdown, title = self._html_to_markdown(html)
        truncated = len(markdown) > self._max_content_chars
        if truncated:
            markdown = truncate_markdown(markdown, self._max_content_chars)

        result = WebPageResult(
            url=url,
            title=title,
            markdown_content=markdown,
            fetch_time_ms=elapsed_ms(),
            truncated=truncated,
        )
        logger.info(
            f"WEB_FETCH: url={url} chars={len(markdown)} "
            f"truncated={truncated} time_ms={result.fetch_time_ms:.1f}"
        )
        return result

    def _html_to_markdown(self, html: str) -> tuple[str, str]:
        """Returns (markdown, title). Links keep their text; images are dropped."""
        soup = BeautifulSoup(html, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""

        for element in soup.find_all(list(_NOISE_TAGS)):
            element.decompose()

        body = next(
            (found for selector in _CONTENT_SELECTORS if (found := soup.select_one(selector))),
            soup,
        )

        markdown = markdownify.markdownify(
            str(body), heading_style="ATX", bullets="-", strip=["a", "img"]
        )
        return re.sub(r"\n{3,}", "\n\n", markdown).strip(), title
