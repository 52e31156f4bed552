"""Image generation: reference marshaling, provider call, post-processing, saving."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from pathlib import Path
import re
from typing import List, Optional

from nano_banana.core.config import get_settings
from nano_banana.core.errors import MissingConfiguration
from nano_banana.core.logger import get_logger
from nano_banana.core.metrics import record_images_generated
from nano_banana.imaging import NoBackground, resolve_background_mode
from nano_banana.media import postprocess
from nano_banana.media.files import (
    extension_for_mime_type,
    file_timestamp,
    infer_mime_type,
    read_bytes,
    resolve_local_path,
    write_bytes,
)
from nano_banana.media.providers import GenerationConfig, GenerationPart, ImageProvider, get_image_provider
from nano_banana.media.storage import ObjectStore, gcs_uri, get_object_store
from nano_banana.schemas.tools import GenerateImageRequest, ReferenceImagePath, ToolContent, ToolResult
from nano_banana.tasks.progress import ProgressReporter


DEFAULT_UPLOAD_PREFIX = "nano-banana/refs"
DEFAULT_OUTPUT_PREFIX = "nano-banana"
_DATA_URI_RE = re.compile(r"^data:[^;]+;base64,(.*)$", re.DOTALL)

logger = get_logger("nano_banana.media.service")


@dataclass(frozen=True)
class _PlannedUpload:
    path: Path
    mime_type: str
    object_name: str
    display_name: Optional[str]


@dataclass
class PreparedParts:
    parts: List[GenerationPart] = field(default_factory=list)
    uploaded_uris: List[str] = field(default_factory=list)


def normalize_base64(data: str) -> str:
    trimmed = data.strip()
    match = _DATA_URI_RE.match(trimmed)
    return match.group(1) if match else trimmed


def normalize_gcs_prefix(prefix: Optional[str]) -> str:
    raw = prefix if prefix is not None else get_settings().nano_banana_gcs_prefix
    trimmed = raw.strip().strip("/")
    return trimmed or DEFAULT_UPLOAD_PREFIX


def resolve_gcs_bucket(request: GenerateImageRequest) -> Optional[str]:
    bucket = (request.gcs_bucket or get_settings().nano_banana_gcs_bucket or "").strip()
    return bucket or None


def _plan_uploads(paths: List[ReferenceImagePath], prefix: str) -> List[_PlannedUpload]:
    timestamp = file_timestamp()
    planned = []
    for index, image in enumerate(paths, start=1):
        resolved = resolve_local_path(image.path)
        if not resolved.is_file():
            raise MissingConfiguration(f"Reference image not found: {resolved}")
        mime_type = image.mime_type or infer_mime_type(resolved)
        if not mime_type:
            raise MissingConfiguration(f"MIME type not provided and could not be inferred for {resolved}.")
        base_name = resolved.name or f"image-{index}"
        object_name = (image.object_name or "").strip() or f"{prefix}/{timestamp}-{index}-{base_name}"
        planned.append(_PlannedUpload(resolved, mime_type, object_name, image.display_name))
    return planned


async def prepare_parts(request: GenerateImageRequest, store: ObjectStore) -> PreparedParts:
    """Build the ordered part list, uploading local references first.

    Every check that can fail without the network runs before the first
    upload starts.
    """

    has_prompt = bool(request.prompt and request.prompt.strip())
    if not (
        has_prompt
        or request.reference_images
        or request.reference_image_uris
        or request.reference_image_paths
    ):
        raise MissingConfiguration("Provide a prompt or at least one reference image (inline or GCS URI).")

    planned: List[_PlannedUpload] = []
    bucket = None
    if request.reference_image_paths:
        bucket = resolve_gcs_bucket(request)
        if not bucket:
            raise MissingConfiguration("GCS bucket not set. Provide gcsBucket or set NANO_BANANA_GCS_BUCKET.")
        planned = _plan_uploads(request.reference_image_paths, normalize_gcs_prefix(request.gcs_upload_prefix))

    prepared = PreparedParts()
    if has_prompt:
        prepared.parts.append(GenerationPart.from_text(request.prompt.strip()))
    for image in request.reference_images:
        prepared.parts.append(GenerationPart.inline(image.mime_type, normalize_base64(image.data)))
    for image in request.reference_image_uris:
        prepared.parts.append(GenerationPart.file(image.mime_type, image.file_uri, image.display_name))

    for upload in planned:
        content = await read_bytes(upload.path)
        await store.put(bucket, upload.object_name, upload.mime_type, content)
        uri = gcs_uri(bucket, upload.object_name)
        prepared.uploaded_uris.append(uri)
        prepared.parts.append(GenerationPart.file(upload.mime_type, uri, upload.display_name))
        logger.info("reference_uploaded", uri=uri, size_bytes=len(content))
    return prepared


def build_generation_config(request: GenerateImageRequest) -> GenerationConfig:
    modalities = request.response_modalities or (["TEXT", "IMAGE"] if request.include_text else ["IMAGE"])
    return GenerationConfig(
        response_modalities=list(modalities),
        candidate_count=request.candidate_count,
        aspect_ratio=request.aspect_ratio,
        image_size=request.image_size,
        model=request.model,
        location=request.location,
        project_id=request.project_id,
    )


async def generate_images(
    request: GenerateImageRequest,
    *,
    provider: Optional[ImageProvider] = None,
    store: Optional[ObjectStore] = None,
    reporter: Optional[ProgressReporter] = None,
) -> ToolResult:
    settings = get_settings()
    background = resolve_background_mode(
        request.background if request.background is not None else settings.flatten_background
    )
    provider = provider or get_image_provider()
    store = store or get_object_store()

    prepared = await prepare_parts(request, store)
    if reporter is not None and prepared.uploaded_uris:
        await reporter.report(f"Uploaded {len(prepared.uploaded_uris)} reference image(s).")

    output = await provider.generate(prepared.parts, build_generation_config(request))
    record_images_generated(model=output.model, count=len(output.images))
    logger.info("images_generated", model=output.model, images=len(output.images), texts=len(output.texts))
    if reporter is not None:
        await reporter.report(f"Received {len(output.images)} image(s); post-processing.")

    processed = []
    for image in output.images:
        if request.transparent_background:
            processed.append(postprocess.auto_transparent(image.content, settings=settings))
        elif not isinstance(background, NoBackground):
            processed.append(postprocess.flatten(image.content, image.mime_type, background))
        else:
            processed.append(postprocess.ProcessedImage(mime_type=image.mime_type, content=image.content))

    content: List[ToolContent] = [
        ToolContent(type="text", text=f"Generated {len(processed)} image(s) with model {output.model}.")
    ]
    if request.include_text and output.texts:
        content.append(ToolContent(type="text", text="\n".join(output.texts)))
    if prepared.uploaded_uris:
        content.append(
            ToolContent(
                type="text",
                text=f"Uploaded {len(prepared.uploaded_uris)} reference image(s) to:\n"
                + "\n".join(prepared.uploaded_uris),
            )
        )
    notes = [item.note for item in processed if item.note]
    if notes:
        content.append(ToolContent(type="text", text="\n".join(notes)))
    for item in processed:
        content.append(
            ToolContent(type="image", mime_type=item.mime_type, data=base64.b64encode(item.content).decode("ascii"))
        )

    if request.output_dir and processed:
        saved = await save_images(processed, request.output_dir, request.output_file_prefix)
        content.append(ToolContent(type="text", text=f"Saved {len(saved)} image(s) to:\n" + "\n".join(saved)))

    if not processed and output.texts:
        content.append(ToolContent(type="text", text="\n".join(output.texts)))

    return ToolResult(content=content)


async def save_images(
    images: List[postprocess.ProcessedImage],
    output_dir: str,
    file_prefix: Optional[str] = None,
) -> List[str]:
    directory = resolve_local_path(output_dir)
    prefix = (file_prefix or "").strip() or DEFAULT_OUTPUT_PREFIX
    timestamp = file_timestamp()
    saved: List[str] = []
    for index, image in enumerate(images, start=1):
        path = directory / f"{prefix}-{timestamp}-{index}.{extension_for_mime_type(image.mime_type)}"
        await write_bytes(path, image.content)
        saved.append(str(path))
    return saved
