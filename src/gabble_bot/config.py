"""Configuration loading and validation."""

from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class TelegramConfig(BaseModel):
    """Telegram bot configuration."""

    bot_token: SecretStr | None = None
    bot_username: str = "gabble_bot"
    bot_name: str = "Gabble"
    allowed_chat_ids: list[int] = Field(default_factory=list)
    max_message_length: Annotated[int, Field(ge=1, le=4096)] = 4096


class LLMConfig(BaseModel):
    """LLM backend configuration."""

    google_api_key: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None
    gemini_model: str = "gemini-2.0-flash"
    anthropic_model: str = "claude-sonnet-4-20250514"
    max_output_tokens: Annotated[int, Field(ge=1)] = 2048
    multimodal: bool = True
    call_timeout_seconds: Annotated[float, Field(gt=0.0)] | None = None

    # Persona
    instructions: str | None = None
    preferred_language: str = "Spanish"
    add_no_answer: bool = False


class RateLimitConfig(BaseModel):
    """Token-bucket settings for inference calls."""

    capacity: Annotated[float, Field(ge=1.0)] = 10.0
    refill_rate_per_second: Annotated[float, Field(ge=0.0)] = 0.25
    poll_interval_seconds: Annotated[float, Field(gt=0.0)] = 0.1


class ContextConfig(BaseModel):
    """Per-chat context window configuration."""

    max_context_tokens: Annotated[int, Field(ge=0)] = 4969


class ImageGenerationConfig(BaseModel):
    """Stable Diffusion WebUI configuration."""

    sd_api_url: str | None = None
    steps: Annotated[int, Field(ge=1, le=150)] = 20
    width: Annotated[int, Field(ge=64, le=2048)] = 512
    height: Annotated[int, Field(ge=64, le=2048)] = 512
    negative_prompt: str = ""
    timeout_seconds: Annotated[float, Field(gt=0.0)] = 120.0


class WebContentConfig(BaseModel):
    """Web page fetching configuration."""

    enabled: bool = True
    max_content_chars: Annotated[int, Field(ge=500)] = 20_000
    timeout_seconds: Annotated[float, Field(gt=0.0)] = 10.0


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GABBLE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    image_generation: ImageGenerationConfig = Field(default_factory=ImageGenerationConfig)
    web_content: WebContentConfig = Field(default_factory=WebContentConfig)


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
    1. Explicit YAML config file values
    2. Environment variables (GABBLE_* prefix)
    3. Default values

    Args:
        config_path: Path to YAML config file. If None, tries ./config.yaml

    Returns:
        Validated configuration object
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    yaml_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

    # "llm:" with no values parses as None
    yaml_config = {k: v for k, v in yaml_config.items() if v is not None}

    return Config(**yaml_config)
