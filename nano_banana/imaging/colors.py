"""Color value type plus distance, clamping and hex helpers."""

from __future__ import annotations

import math
import re
from typing import NamedTuple

from nano_banana.core.errors import InvalidColorFormat


_SHORT_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3})$")
_LONG_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")


class Color(NamedTuple):
    r: int
    g: int
    b: int


def distance_squared(a: Color, b: Color) -> int:
    dr = int(a[0]) - int(b[0])
    dg = int(a[1]) - int(b[1])
    db = int(a[2]) - int(b[2])
    return dr * dr + dg * dg + db * db


def clamp_byte(value: float) -> int:
    """Saturate to [0, 255], rounding half away from zero."""

    if math.isnan(value):
        return 0
    rounded = math.floor(value + 0.5) if value >= 0 else math.ceil(value - 0.5)
    return max(0, min(255, int(rounded)))


def parse_hex_color(value: str) -> Color:
    text = (value or "").strip()
    short = _SHORT_HEX_RE.match(text)
    if short:
        digits = "".join(ch * 2 for ch in short.group(1))
    else:
        long = _LONG_HEX_RE.match(text)
        if not long:
            raise InvalidColorFormat(value)
        digits = long.group(1)
    return Color(int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))


def format_hex_color(color: Color) -> str:
    r, g, b = (clamp_byte(channel) for channel in color)
    return f"#{r:02x}{g:02x}{b:02x}"
