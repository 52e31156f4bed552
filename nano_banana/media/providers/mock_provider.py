"""Deterministic mock image provider for local/dev usage."""

from __future__ import annotations

import hashlib
from io import BytesIO
from typing import Sequence

from PIL import Image, ImageDraw

from nano_banana.media.providers.base import (
    GeneratedImage,
    GenerationConfig,
    GenerationOutput,
    GenerationPart,
    ImageProvider,
)


_SIZE_PIXELS = {"1K": 256, "2K": 512, "4K": 1024}


class MockImageProvider(ImageProvider):
    """Paints a seeded subject square on a solid backdrop, no network."""

    provider_name = "mock"

    def __init__(self, *, model: str = "mock-image") -> None:
        self._model = model

    async def generate(self, parts: Sequence[GenerationPart], config: GenerationConfig) -> GenerationOutput:
        seed_source = "|".join(
            part.text or part.file_uri or (part.data or "")[:64] for part in parts
        ).encode("utf-8")
        side = _SIZE_PIXELS.get((config.image_size or "1K").upper(), 256)
        images = []
        for index in range(config.candidate_count or 1):
            digest = hashlib.sha1(seed_source + str(index).encode("ascii")).digest()
            backdrop = (digest[0], digest[1], digest[2])
            subject = (255 - digest[0], 255 - digest[1], 255 - digest[2])
            image = Image.new("RGB", (side, side), backdrop)
            inset = side // 4
            ImageDraw.Draw(image).rectangle((inset, inset, side - inset, side - inset), fill=subject)
            buffer = BytesIO()
            image.save(buffer, format="PNG")
            images.append(GeneratedImage(mime_type="image/png", content=buffer.getvalue()))

        texts = []
        if "TEXT" in config.response_modalities:
            texts.append(f"mock render of {len(parts)} part(s)")
        return GenerationOutput(provider=self.provider_name, model=config.model or self._model, images=images, texts=texts)
