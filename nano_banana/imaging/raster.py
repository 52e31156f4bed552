"""Decoded raster buffers and Pillow encode/decode helpers."""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

import numpy as np
from PIL import Image

from nano_banana.imaging.colors import Color


_MODE_BY_CHANNELS = {1: "L", 2: "LA", 3: "RGB", 4: "RGBA"}
_FORMAT_BY_MIME = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/webp": "WEBP",
}


@dataclass
class RasterBuffer:
    """Flat, row-major pixel bytes with explicit geometry."""

    width: int
    height: int
    channels: int
    data: bytearray

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("raster dimensions must be positive")
        if self.channels not in _MODE_BY_CHANNELS:
            raise ValueError(f"unsupported channel count: {self.channels}")
        expected = self.width * self.height * self.channels
        if len(self.data) != expected:
            raise ValueError(f"raster length {len(self.data)} != {expected}")

    @property
    def has_alpha(self) -> bool:
        return self.channels in (2, 4)

    def pixels(self) -> np.ndarray:
        """Writable (height, width, channels) view over ``data``."""

        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, self.channels)

    def pixel_color(self, x: int, y: int) -> Color:
        offset = (y * self.width + x) * self.channels
        if self.channels < 3:
            gray = self.data[offset]
            return Color(gray, gray, gray)
        return Color(self.data[offset], self.data[offset + 1], self.data[offset + 2])

    def copy(self) -> "RasterBuffer":
        return RasterBuffer(self.width, self.height, self.channels, bytearray(self.data))

    @classmethod
    def solid(cls, width: int, height: int, color: Color, alpha: int = 255) -> "RasterBuffer":
        pixel = bytes((color.r, color.g, color.b, alpha))
        return cls(width, height, 4, bytearray(pixel * (width * height)))

    @classmethod
    def from_image(cls, image: Image.Image) -> "RasterBuffer":
        if image.mode not in _MODE_BY_CHANNELS.values():
            image = image.convert("RGBA" if "A" in image.getbands() or "transparency" in image.info else "RGB")
        channels = len(image.getbands())
        return cls(image.width, image.height, channels, bytearray(image.tobytes()))

    def to_image(self) -> Image.Image:
        return Image.frombytes(_MODE_BY_CHANNELS[self.channels], (self.width, self.height), bytes(self.data))

    def with_alpha(self) -> "RasterBuffer":
        """Return an RGBA buffer; already-RGBA buffers are returned as-is."""

        if self.channels == 4:
            return self
        return RasterBuffer.from_image(self.to_image().convert("RGBA"))


def decode_image(content: bytes) -> RasterBuffer:
    with Image.open(BytesIO(content)) as image:
        image.load()
        return RasterBuffer.from_image(image)


def encode_image(raster: RasterBuffer, mime_type: str = "image/png") -> bytes:
    fmt = _FORMAT_BY_MIME.get(mime_type.strip().lower(), "PNG")
    image = raster.to_image()
    if fmt == "JPEG" and raster.has_alpha:
        image = image.convert("RGB")
    buffer = BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()
