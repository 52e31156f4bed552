"""Border sampling background detector.

Only the four outer edges are sampled. Each sample is quantized to the
nearest multiple of ``quantization_step`` and tallied; the most frequent
buckets are returned as candidates together with the share of samples
they cover and the raw samples for tolerance estimation. Each candidate
carries the most common raw color seen in its bucket, which is what gets
keyed out; the quantized value only groups samples.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Dict, List, Optional, Sequence

import numpy as np

from nano_banana.imaging.colors import Color, clamp_byte, distance_squared
from nano_banana.imaging.raster import RasterBuffer


DEFAULT_QUANTIZATION_STEP = 8
DEFAULT_MAX_COLORS = 2
LOW_COVERAGE_THRESHOLD = 0.5
CHECKERBOARD_MIN_SHARE = 0.2
CHECKERBOARD_MIN_LIGHTNESS = 150
CHECKERBOARD_MAX_CHROMA = 24


@dataclass(frozen=True)
class BackgroundCandidate:
    color: Color
    count: int
    coverage: float
    bucket: Optional[Color] = None


@dataclass(frozen=True)
class BackgroundDetection:
    candidates: List[BackgroundCandidate]
    coverage: float
    total_samples: int
    samples: List[Color] = field(default_factory=list, repr=False)

    @property
    def colors(self) -> List[Color]:
        return [candidate.color for candidate in self.candidates]

    @property
    def is_reliable(self) -> bool:
        return bool(self.candidates) and self.coverage >= LOW_COVERAGE_THRESHOLD


def default_stride(width: int, height: int) -> int:
    return max(1, min(width, height) // 64)


def _quantize(color: Color, step: int) -> Color:
    if step <= 1:
        return color
    return Color(*(clamp_byte(math.floor(channel / step + 0.5) * step) for channel in color))


def _representative(raw: Dict[Color, int]) -> Color:
    # max() keeps the first-seen color on ties.
    return max(raw.items(), key=lambda item: item[1])[0]


def _border_coordinates(width: int, height: int, stride: int) -> List[tuple[int, int]]:
    coords: List[tuple[int, int]] = []
    for x in range(0, width, stride):
        coords.append((x, 0))
        if height > 1:
            coords.append((x, height - 1))
    for y in range(stride, height - 1, stride):
        coords.append((0, y))
        if width > 1:
            coords.append((width - 1, y))
    return coords


def detect_background(
    raster: RasterBuffer,
    *,
    stride: Optional[int] = None,
    quantization_step: int = DEFAULT_QUANTIZATION_STEP,
    max_colors: int = DEFAULT_MAX_COLORS,
) -> BackgroundDetection:
    if quantization_step < 1:
        raise ValueError("quantization_step must be at least 1")
    step = stride if stride and stride > 0 else default_stride(raster.width, raster.height)

    samples: List[Color] = []
    tallies: Dict[Color, int] = {}
    raw_counts: Dict[Color, Dict[Color, int]] = {}
    for x, y in _border_coordinates(raster.width, raster.height, step):
        color = raster.pixel_color(x, y)
        samples.append(color)
        bucket = _quantize(color, quantization_step)
        tallies[bucket] = tallies.get(bucket, 0) + 1
        seen = raw_counts.setdefault(bucket, {})
        seen[color] = seen.get(color, 0) + 1

    total = len(samples)
    if total == 0:
        return BackgroundDetection(candidates=[], coverage=0.0, total_samples=0)

    # sorted() is stable, so equal counts keep first-seen bucket order.
    ranked = sorted(tallies.items(), key=lambda item: item[1], reverse=True)[: max(1, max_colors)]
    candidates = [
        BackgroundCandidate(
            color=_representative(raw_counts[bucket]),
            count=count,
            coverage=count / total,
            bucket=bucket,
        )
        for bucket, count in ranked
    ]
    covered = sum(candidate.count for candidate in candidates)
    return BackgroundDetection(
        candidates=candidates,
        coverage=covered / total,
        total_samples=total,
        samples=samples,
    )


def estimate_tolerance(
    samples: Sequence[Color],
    references: Sequence[Color],
    *,
    percentile: float = 90.0,
    margin: int = 6,
) -> int:
    """Percentile of sample-to-nearest-reference distances plus a margin."""

    if not samples or not references:
        return clamp_byte(margin)
    distances = np.array(
        [math.sqrt(min(distance_squared(sample, ref) for ref in references)) for sample in samples],
        dtype=np.float64,
    )
    return clamp_byte(float(np.percentile(distances, percentile)) + margin)


def _is_light_neutral(color: Color) -> bool:
    return min(color) >= CHECKERBOARD_MIN_LIGHTNESS and max(color) - min(color) <= CHECKERBOARD_MAX_CHROMA


def looks_like_checkerboard(detection: BackgroundDetection) -> bool:
    """Detect the light grey/white tile pattern models paint for "transparent"."""

    if len(detection.candidates) < 2 or not detection.is_reliable:
        return False
    first, second = detection.candidates[0], detection.candidates[1]
    if first.bucket == second.bucket:
        return False
    if first.coverage < CHECKERBOARD_MIN_SHARE or second.coverage < CHECKERBOARD_MIN_SHARE:
        return False
    return _is_light_neutral(first.color) and _is_light_neutral(second.color)
