"""Factory to resolve active image provider."""

from __future__ import annotations

from functools import lru_cache

from nano_banana.core.config import get_settings
from nano_banana.media.providers.base import ImageProvider
from nano_banana.media.providers.mock_provider import MockImageProvider
from nano_banana.media.providers.vertex_provider import VertexImageProvider


@lru_cache(maxsize=1)
def get_image_provider() -> ImageProvider:
    settings = get_settings()
    provider = settings.image_provider.strip().lower()
    if provider == "vertex":
        return VertexImageProvider(
            model=settings.nano_banana_model,
            location=settings.vertex_location,
            project_id=settings.vertex_project_id,
            timeout_seconds=settings.vertex_timeout_seconds,
        )
    return MockImageProvider(model=settings.nano_banana_model)


def reset_image_provider_cache() -> None:
    get_image_provider.cache_clear()
