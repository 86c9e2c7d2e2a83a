"""Background jobs triggered by tagged model replies."""

from .base import BackgroundJobs
from .image import ImageGenerationError, ImageJobQueue
from .web_content import WebContentJobQueue

__all__ = [
    "BackgroundJobs",
    "ImageGenerationError",
    "ImageJobQueue",
    "WebContentJobQueue",
]
