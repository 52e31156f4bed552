"""Local filesystem helpers for reference inputs and saved outputs."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


_MIME_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}
_EXTENSION_BY_MIME = {
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


def resolve_local_path(raw: str) -> Path:
    return Path(raw.strip()).expanduser().resolve()


def infer_mime_type(path: Path) -> Optional[str]:
    return _MIME_BY_EXTENSION.get(path.suffix.lower())


def extension_for_mime_type(mime_type: str) -> str:
    return _EXTENSION_BY_MIME.get(mime_type.strip().lower(), "png")


def file_timestamp() -> str:
    """UTC ISO timestamp with ``:`` and ``.`` made filename-safe."""

    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return stamp.replace(":", "-").replace(".", "-")


async def read_bytes(path: Path) -> bytes:
    return await asyncio.to_thread(path.read_bytes)


async def write_bytes(path: Path, content: bytes) -> None:
    def _write() -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    await asyncio.to_thread(_write)
