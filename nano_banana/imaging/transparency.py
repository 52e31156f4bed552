"""Color-key transparency with optional feathered edges."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from nano_banana.core.errors import EmptyReferenceColorSet
from nano_banana.imaging.background import (
    DEFAULT_MAX_COLORS,
    DEFAULT_QUANTIZATION_STEP,
    LOW_COVERAGE_THRESHOLD,
    BackgroundDetection,
    detect_background,
    estimate_tolerance,
    looks_like_checkerboard,
)
from nano_banana.imaging.colors import Color
from nano_banana.imaging.raster import RasterBuffer


@dataclass(frozen=True)
class TransparencyOutcome:
    raster: RasterBuffer
    reference_colors: List[Color]
    tolerance: int
    feather: int
    used_fallback: bool = False
    checkerboard: bool = False
    detection: Optional[BackgroundDetection] = field(default=None, repr=False)


def apply_color_key(
    raster: RasterBuffer,
    reference_colors: Sequence[Color],
    *,
    tolerance: int,
    feather: int = 0,
) -> RasterBuffer:
    """Rewrite the alpha channel of ``raster`` in place and return it.

    Pixels within ``tolerance`` of any reference color become fully
    transparent. Pixels inside the ``tolerance + feather`` band keep a
    share of their alpha proportional to how far past ``tolerance`` they
    are. Everything else is untouched.
    """

    if not reference_colors:
        raise EmptyReferenceColorSet()
    if raster.channels != 4:
        raise ValueError("color keying requires an RGBA raster")
    if tolerance < 0 or feather < 0:
        raise ValueError("tolerance and feather must be non-negative")

    pixels = raster.pixels()
    rgb = pixels[..., :3].astype(np.int32)
    nearest = None
    for color in reference_colors:
        diff = rgb - np.array(color, dtype=np.int32)
        dist_sq = np.einsum("ijk,ijk->ij", diff, diff)
        nearest = dist_sq if nearest is None else np.minimum(nearest, dist_sq)

    alpha = pixels[..., 3]
    inside = nearest <= tolerance * tolerance
    if feather > 0:
        outer = tolerance + feather
        band = ~inside & (nearest <= outer * outer)
        if band.any():
            scale = np.clip((np.sqrt(nearest[band]) - tolerance) / feather, 0.0, 1.0)
            alpha[band] = np.rint(alpha[band] * scale).astype(np.uint8)
    alpha[inside] = 0
    return raster


def remove_color_key(
    raster: RasterBuffer,
    *,
    color: Optional[Color] = None,
    tolerance: int,
    feather: int = 0,
) -> TransparencyOutcome:
    """Key out one color, defaulting to the top-left pixel."""

    rgba = raster.copy().with_alpha()
    key = color if color is not None else rgba.pixel_color(0, 0)
    apply_color_key(rgba, [key], tolerance=tolerance, feather=feather)
    return TransparencyOutcome(raster=rgba, reference_colors=[key], tolerance=tolerance, feather=feather)


def remove_background_auto(
    raster: RasterBuffer,
    *,
    fallback_color: Color,
    tolerance: Optional[int] = None,
    feather: int = 0,
    min_coverage: float = LOW_COVERAGE_THRESHOLD,
    quantization_step: int = DEFAULT_QUANTIZATION_STEP,
    max_colors: int = DEFAULT_MAX_COLORS,
    tolerance_percentile: float = 90.0,
    tolerance_margin: int = 6,
    fallback_tolerance: int = 24,
) -> TransparencyOutcome:
    """Detect border background colors and key them all out.

    A detection that covers less than ``min_coverage`` of the border is
    treated as noise and ``fallback_color`` is keyed instead, with
    ``fallback_tolerance`` unless the caller fixed one.
    """

    rgba = raster.copy().with_alpha()
    detection = detect_background(rgba, quantization_step=quantization_step, max_colors=max_colors)

    used_fallback = not detection.candidates or detection.coverage < min_coverage
    references = [fallback_color] if used_fallback else detection.colors
    if not references:
        raise EmptyReferenceColorSet("Background detection and fallback produced no key color.")

    if tolerance is None and used_fallback:
        tolerance = fallback_tolerance
    elif tolerance is None:
        tolerance = estimate_tolerance(
            detection.samples,
            references,
            percentile=tolerance_percentile,
            margin=tolerance_margin,
        )

    apply_color_key(rgba, references, tolerance=tolerance, feather=feather)
    return TransparencyOutcome(
        raster=rgba,
        reference_colors=list(references),
        tolerance=tolerance,
        feather=feather,
        used_fallback=used_fallback,
        checkerboard=not used_fallback and looks_like_checkerboard(detection),
        detection=detection,
    )
