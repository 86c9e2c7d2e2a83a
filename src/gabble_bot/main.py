"""Main entry point for gabble-bot."""

import asyncio
import logging
import os
import sys

from dotenv import load_dotenv
from pydantic import SecretStr

from gabble_bot.config import Config, load_config
from gabble_bot.core import (
    ConfigurationError,
    ContextStore,
    InferenceGateway,
    RateLimiter,
    WebFetcher,
    build_backend,
    build_default_router,
)
from gabble_bot.core.logging import get_session_stats, set_ai_debug
from gabble_bot.jobs import ImageJobQueue, WebContentJobQueue
from gabble_bot.orchestrator import Orchestrator
from gabble_bot.prompts import get_system_prompt
from gabble_bot.telegram import TelegramClient


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)


def load_secrets_from_env(config: Config) -> Config:
    """Fill secrets from the conventional unprefixed variables if not set."""
    if not config.llm.google_api_key:
        # Support both GOOGLE_API_KEY and GEMINI_API_KEY
        key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
        if key:
            config.llm.google_api_key = SecretStr(key)

    if not config.llm.anthropic_api_key:
        key = os.getenv("ANTHROPIC_API_KEY")
        if key:
            config.llm.anthropic_api_key = SecretStr(key)

    if not config.telegram.bot_token:
        token = os.getenv("TELEGRAM_BOT_TOKEN")
        if token:
            config.telegram.bot_token = SecretStr(token)

    return config


class Application:
    """Wires every component from configuration."""

    def __init__(self, config: Config):
        self.config = config

        # Fails fast when no backend is configured
        backend = build_backend(config.llm)

        self.telegram = TelegramClient(config.telegram)
        self.gateway = InferenceGateway(
            backend=backend,
            rate_limiter=RateLimiter.from_config(config.rate_limit),
            system_prompt=get_system_prompt(config),
            multimodal=config.llm.multimodal,
            call_timeout=config.llm.call_timeout_seconds,
        )
        self.image_jobs = ImageJobQueue(config.image_generation, self.telegram)
        self.web_content_jobs = WebContentJobQueue(
            fetcher=WebFetcher(
                max_content_chars=config.web_content.max_content_chars,
                timeout_seconds=config.web_content.timeout_seconds,
            ),
            gateway=self.gateway,
            transport=self.telegram,
            enabled=config.web_content.enabled,
        )
        self.orchestrator = Orchestrator(
            context_store=ContextStore(),
            gateway=self.gateway,
            router=build_default_router(self.telegram, self.image_jobs, self.web_content_jobs),
            bot_username=config.telegram.bot_username,
            max_context_tokens=config.context.max_context_tokens,
        )
        self.telegram.set_handler(self.orchestrator.on_message_received)

    async def run(self) -> None:
        try:
            await self.telegram.run_forever()
        finally:
            await self.image_jobs.close()
            await self.web_content_jobs.close()


async def async_main(config_path: str | None = None, debug: bool = False, debug_ai: bool = False) -> None:
    """Async main entry point."""
    setup_logging(debug)
    logger = logging.getLogger(__name__)

    # Load .env file if present
    load_dotenv()

    config = load_config(config_path)
    config = load_secrets_from_env(config)

    if debug_ai:
        set_ai_debug(True)
        logger.info("AI debug logging enabled - full LLM inputs and outputs will be logged")

    logger.info("Starting gabble-bot...")
    logger.info(f"Bot: {config.telegram.bot_name} (@{config.telegram.bot_username})")
    logger.info(
        f"Rate limit: capacity={config.rate_limit.capacity} "
        f"refill={config.rate_limit.refill_rate_per_second}/s"
    )

    try:
        app = Application(config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        await app.run()
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutting down...")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)
    finally:
        logger.info(f"SESSION_STATS: {get_session_stats().summary_line()}")


def main() -> None:
    """Main entry point (sync wrapper)."""
    import argparse

    parser = argparse.ArgumentParser(
        description="gabble-bot: an LLM-backed Telegram group chat member",
    )
    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--debug-ai",
        action="store_true",
        help="Log full inputs and outputs for all LLM calls",
    )

    args = parser.parse_args()

    try:
        asyncio.run(async_main(
            config_path=args.config,
            debug=args.debug,
            debug_ai=args.debug_ai,
        ))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
