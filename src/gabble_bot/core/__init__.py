"""Core bot logic."""

from .backends import (
    AnthropicBackend,
    ConfigurationError,
    GeminiBackend,
    InferenceBackend,
    build_backend,
)
from .context_store import ContextStore
from .events import InboundEvent, MediaRef, Transport
from .gateway import NO_ANSWER, InferenceGateway, count_tokens
from .handlers import (
    DefaultHandler,
    ImageRequestHandler,
    NoAnswerHandler,
    ResponseHandler,
    ResponseRouter,
    WebContentHandler,
    build_default_router,
)
from .normalize import normalize_reply
from .rate_limiter import RateLimiter
from .turns import ContentPart, ConversationTurn, Role, assistant, human
from .web import WebFetcher, WebPageResult, extract_urls

__all__ = [
    "NO_ANSWER",
    "AnthropicBackend",
    "ConfigurationError",
    "ContentPart",
    "ContextStore",
    "ConversationTurn",
    "DefaultHandler",
    "GeminiBackend",
    "ImageRequestHandler",
    "InboundEvent",
    "InferenceBackend",
    "InferenceGateway",
    "MediaRef",
    "NoAnswerHandler",
    "RateLimiter",
    "ResponseHandler",
    "ResponseRouter",
    "Role",
    "Transport",
    "WebContentHandler",
    "WebFetcher",
    "WebPageResult",
    "assistant",
    "build_backend",
    "build_default_router",
    "count_tokens",
    "extract_urls",
    "human",
    "normalize_reply",
]
