"""Transparency tool: load inputs, pick the pipeline path, return PNGs."""

from __future__ import annotations

import base64
import binascii
from typing import List, Optional

from nano_banana.core.config import get_settings
from nano_banana.core.errors import MissingConfiguration
from nano_banana.imaging import parse_hex_color, resolve_background_mode
from nano_banana.media import postprocess
from nano_banana.media.files import infer_mime_type, read_bytes, resolve_local_path
from nano_banana.media.service import normalize_base64, save_images
from nano_banana.media.storage import ObjectStore, get_object_store, split_gcs_uri
from nano_banana.schemas.tools import MakeTransparentRequest, ToolContent, ToolResult, TransparencyInput


async def load_input(item: TransparencyInput, store: ObjectStore) -> tuple[bytes, str]:
    if item.data:
        try:
            content = base64.b64decode(normalize_base64(item.data), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MissingConfiguration("Image data is not valid base64.") from exc
        return content, item.mime_type or "image/png"
    if item.path:
        path = resolve_local_path(item.path)
        if not path.is_file():
            raise MissingConfiguration(f"Image file not found: {path}")
        return await read_bytes(path), item.mime_type or infer_mime_type(path) or "image/png"
    bucket, object_name = split_gcs_uri(item.gcs_uri or "")
    content = await store.get(bucket, object_name)
    return content, item.mime_type or "image/png"


async def make_transparent(request: MakeTransparentRequest, *, store: Optional[ObjectStore] = None) -> ToolResult:
    settings = get_settings()
    key_color = parse_hex_color(request.color) if request.color else None
    fallback = parse_hex_color(request.fallback_color) if request.fallback_color else None
    background = resolve_background_mode(request.background if request.background is not None else "auto")
    store = store or get_object_store()

    processed: List[postprocess.ProcessedImage] = []
    for item in request.images:
        content, mime_type = await load_input(item, store)
        if request.mode == "color_key":
            processed.append(
                postprocess.color_key(
                    content,
                    color=key_color,
                    tolerance=request.tolerance,
                    feather=request.feather,
                    settings=settings,
                )
            )
        elif request.mode == "flatten":
            processed.append(postprocess.flatten(content, mime_type, background))
        else:
            processed.append(
                postprocess.auto_transparent(
                    content,
                    fallback_color=fallback,
                    tolerance=request.tolerance,
                    feather=request.feather,
                    settings=settings,
                )
            )

    content_parts: List[ToolContent] = [
        ToolContent(type="text", text=f"Processed {len(processed)} image(s) with mode {request.mode}.")
    ]
    notes = [item.note for item in processed if item.note]
    if notes:
        content_parts.append(ToolContent(type="text", text="\n".join(notes)))
    for item in processed:
        content_parts.append(
            ToolContent(type="image", mime_type=item.mime_type, data=base64.b64encode(item.content).decode("ascii"))
        )
    if request.output_dir:
        saved = await save_images(processed, request.output_dir, request.output_file_prefix or "transparent")
        content_parts.append(ToolContent(type="text", text=f"Saved {len(saved)} image(s) to:\n" + "\n".join(saved)))
    return ToolResult(content=content_parts)
