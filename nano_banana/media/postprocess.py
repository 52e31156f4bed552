"""Byte-level wrappers that run the imaging pipeline on encoded images."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from nano_banana.core.config import Settings, get_settings
from nano_banana.core.logger import get_logger
from nano_banana.core.metrics import record_transparency_run
from nano_banana.imaging import (
    BackgroundMode,
    Color,
    NoBackground,
    decode_image,
    encode_image,
    flatten_image,
    format_hex_color,
    parse_hex_color,
    remove_background_auto,
    remove_color_key,
)


logger = get_logger("nano_banana.media.postprocess")


@dataclass(frozen=True)
class ProcessedImage:
    mime_type: str
    content: bytes
    note: Optional[str] = None


def auto_transparent(
    content: bytes,
    *,
    fallback_color: Optional[Color] = None,
    tolerance: Optional[int] = None,
    feather: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> ProcessedImage:
    settings = settings or get_settings()
    outcome = remove_background_auto(
        decode_image(content),
        fallback_color=fallback_color or parse_hex_color(settings.transparency_fallback_color),
        tolerance=tolerance,
        feather=settings.transparency_auto_feather if feather is None else feather,
        min_coverage=settings.transparency_min_coverage,
        quantization_step=settings.background_quantization_step,
        max_colors=settings.background_max_colors,
        tolerance_percentile=settings.transparency_tolerance_percentile,
        tolerance_margin=settings.transparency_tolerance_margin,
        fallback_tolerance=settings.transparency_tolerance,
    )
    colors = ", ".join(format_hex_color(color) for color in outcome.reference_colors)
    coverage = outcome.detection.coverage if outcome.detection else 0.0
    logger.info(
        "background_detected",
        colors=colors,
        coverage=round(coverage, 4),
        tolerance=outcome.tolerance,
        used_fallback=outcome.used_fallback,
    )
    if outcome.checkerboard:
        logger.info("checkerboard_background", colors=colors)
    record_transparency_run(mode="auto")

    note = f"Removed background {colors} (tolerance {outcome.tolerance}, feather {outcome.feather}"
    if outcome.used_fallback:
        note += f", fallback after {coverage:.0%} border coverage"
    if outcome.checkerboard:
        note += ", checkerboard pattern"
    note += ")."
    return ProcessedImage(mime_type="image/png", content=encode_image(outcome.raster, "image/png"), note=note)


def color_key(
    content: bytes,
    *,
    color: Optional[Color] = None,
    tolerance: Optional[int] = None,
    feather: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> ProcessedImage:
    settings = settings or get_settings()
    outcome = remove_color_key(
        decode_image(content),
        color=color,
        tolerance=settings.transparency_tolerance if tolerance is None else tolerance,
        feather=settings.transparency_feather if feather is None else feather,
    )
    record_transparency_run(mode="color_key")
    key = format_hex_color(outcome.reference_colors[0])
    note = f"Removed {key} (tolerance {outcome.tolerance}, feather {outcome.feather})."
    return ProcessedImage(mime_type="image/png", content=encode_image(outcome.raster, "image/png"), note=note)


def flatten(content: bytes, mime_type: str, mode: BackgroundMode) -> ProcessedImage:
    if isinstance(mode, NoBackground):
        return ProcessedImage(mime_type=mime_type, content=content)
    raster = decode_image(content)
    if not raster.has_alpha:
        return ProcessedImage(mime_type=mime_type, content=content)
    record_transparency_run(mode="flatten")
    flattened = flatten_image(raster, mode)
    return ProcessedImage(mime_type="image/png", content=encode_image(flattened, "image/png"), note="Flattened alpha.")
