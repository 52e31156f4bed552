"""Pixel-level background detection, color keying and flattening."""

from nano_banana.imaging.background import (
    BackgroundCandidate,
    BackgroundDetection,
    detect_background,
    estimate_tolerance,
    looks_like_checkerboard,
)
from nano_banana.imaging.colors import Color, clamp_byte, distance_squared, format_hex_color, parse_hex_color
from nano_banana.imaging.flatten import (
    AutoBackground,
    BackgroundMode,
    FixedBackground,
    NoBackground,
    flatten_image,
    resolve_background_mode,
)
from nano_banana.imaging.raster import RasterBuffer, decode_image, encode_image
from nano_banana.imaging.transparency import (
    TransparencyOutcome,
    apply_color_key,
    remove_background_auto,
    remove_color_key,
)

__all__ = [
    "AutoBackground",
    "BackgroundCandidate",
    "BackgroundDetection",
    "BackgroundMode",
    "Color",
    "FixedBackground",
    "NoBackground",
    "RasterBuffer",
    "TransparencyOutcome",
    "apply_color_key",
    "clamp_byte",
    "decode_image",
    "detect_background",
    "distance_squared",
    "encode_image",
    "estimate_tolerance",
    "flatten_image",
    "format_hex_color",
    "looks_like_checkerboard",
    "parse_hex_color",
    "remove_background_auto",
    "remove_color_key",
    "resolve_background_mode",
]
