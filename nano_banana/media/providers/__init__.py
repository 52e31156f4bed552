"""Image generation provider integrations."""

from nano_banana.media.providers.base import (
    GeneratedImage,
    GenerationConfig,
    GenerationOutput,
    GenerationPart,
    ImageProvider,
)
from nano_banana.media.providers.factory import get_image_provider, reset_image_provider_cache
from nano_banana.media.providers.mock_provider import MockImageProvider
from nano_banana.media.providers.vertex_provider import VertexImageProvider

__all__ = [
    "GeneratedImage",
    "GenerationConfig",
    "GenerationOutput",
    "GenerationPart",
    "ImageProvider",
    "MockImageProvider",
    "VertexImageProvider",
    "get_image_provider",
    "reset_image_provider_cache",
]
