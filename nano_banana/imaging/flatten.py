"""Alpha flattening onto a solid background."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from nano_banana.imaging.colors import Color, parse_hex_color
from nano_banana.imaging.raster import RasterBuffer


_OFF_KEYWORDS = {"off", "none", "false", ""}


@dataclass(frozen=True)
class AutoBackground:
    """Sample the background from the top-left pixel."""


@dataclass(frozen=True)
class FixedBackground:
    color: Color


@dataclass(frozen=True)
class NoBackground:
    """Leave alpha untouched."""


BackgroundMode = Union[AutoBackground, FixedBackground, NoBackground]


def resolve_background_mode(value: Optional[str]) -> BackgroundMode:
    """Parse ``auto`` / ``off`` / ``none`` / ``false`` / ``#hex`` once, at the edge."""

    normalized = (value or "").strip().lower()
    if normalized in _OFF_KEYWORDS:
        return NoBackground()
    if normalized == "auto":
        return AutoBackground()
    return FixedBackground(parse_hex_color(normalized))


def flatten_image(raster: RasterBuffer, mode: BackgroundMode) -> RasterBuffer:
    if isinstance(mode, NoBackground) or not raster.has_alpha:
        return raster

    background = mode.color if isinstance(mode, FixedBackground) else raster.pixel_color(0, 0)
    rgba = raster.with_alpha()
    pixels = rgba.pixels()
    alpha = pixels[..., 3:4].astype(np.float64) / 255.0
    rgb = pixels[..., :3].astype(np.float64)
    bg = np.array(background, dtype=np.float64)
    composited = np.rint(rgb * alpha + bg * (1.0 - alpha))

    out = np.full((rgba.height, rgba.width, 4), 255, dtype=np.uint8)
    out[..., :3] = np.clip(composited, 0, 255).astype(np.uint8)
    return RasterBuffer(rgba.width, rgba.height, 4, bytearray(out.tobytes()))
