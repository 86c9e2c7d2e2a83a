"""Image generation through a Stable Diffusion WebUI endpoint."""

import base64
import io
import logging

import aiohttp
from PIL import Image

from gabble_bot.config import ImageGenerationConfig
from gabble_bot.core.context_store import ChatId
from gabble_bot.core.events import Transport
from gabble_bot.jobs.base import BackgroundJobs

logger = logging.getLogger(__name__)


class ImageGenerationError(Exception):
    """The SD endpoint answered but produced no usable image."""


class ImageJobQueue(BackgroundJobs):
    """Generates an image per prompt and posts it as a reply."""

    def __init__(self, config: ImageGenerationConfig, transport: Transport):
        super().__init__("image")
        self._config = config
        self._transport = transport
        self._session: aiohttp.ClientSession | None = None

        if not config.sd_api_url:
            logger.warning("sd_api_url not set. Image generation disabled.")

    @property
    def is_enabled(self) -> bool:
        return bool(self._config.sd_api_url)

    def enqueue(self, prompt: str, chat_id: ChatId, reply_to: int | None = None) -> None:
        """Queue generation; returns immediately."""
        if not self.is_enabled:
            logger.warning("Image generation requested but service is not enabled")
            return
        self._spawn(self._generate_and_send(prompt, chat_id, reply_to), f"chat={chat_id}")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        await super().close()
        if self._session and not self._session.closed:
            await self._session.close()

    def _payload(self, prompt: str) -> dict:
        return {
            "prompt": prompt,
            "negative_prompt": self._config.negative_prompt,
            "steps": self._config.steps,
            "width": self._config.width,
            "height": self._config.height,
        }

    async def generate(self, prompt: str) -> bytes:
        """Call txt2img and return PNG bytes.

        Raises:
            aiohttp.ClientError: On transport failures
            ImageGenerationError: If the response carries no decodable image
        """
        url = f"{self._config.sd_api_url.rstrip('/')}/sdapi/v1/txt2img"
        logger.debug(f"Generating image with prompt: {prompt}")

        session = await self._get_session()
        async with session.post(url, json=self._payload(prompt)) as response:
            if response.status != 200:
                raise ImageGenerationError(f"HTTP {response.status}: {response.reason}")
            body = await response.json()

        images = body.get("images") or []
        if not images:
            raise ImageGenerationError("No images in response")

        return self._to_png(images[0])

    def _to_png(self, b64_image: str) -> bytes:
        """Decode a base64 image and re-encode it as PNG."""
        # WebUI sometimes prefixes a data URI header
        if "," in b64_image and b64_image.startswith("data:"):
            b64_image = b64_image.split(",", 1)[1]
        try:
            img = Image.open(io.BytesIO(base64.b64decode(b64_image)))
            img.load()
        except Exception as e:
            raise ImageGenerationError(f"Undecodable image: {e}") from e

        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGB")

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    async def _generate_and_send(
        self, prompt: str, chat_id: ChatId, reply_to: int | None
    ) -> None:
        try:
            data = await self.generate(prompt)
        except (aiohttp.ClientError, TimeoutError, ImageGenerationError) as e:
            logger.error(f"IMAGE_FAILED: chat={chat_id} error={e}")
            return

        logger.info(f"IMAGE_READY: chat={chat_id} bytes={len(data)}")
        await self._transport.send_photo(chat_id, data, reply_to=reply_to)
