"""MCP server exposing the Nano Banana tools over stdio."""

from typing import List, Literal, Optional
from uuid import uuid4

from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, ImageContent, TextContent
from pydantic import Field, ValidationError

from nano_banana.core.config import get_settings
from nano_banana.core.errors import NanoBananaError
from nano_banana.core.logger import bind_request_context, clear_request_context, get_logger
from nano_banana.core.observability import init_sentry, sentry_scope
from nano_banana.orchestrator import tools
from nano_banana.schemas.tools import (
    GenerateImageRequest,
    MakeTransparentRequest,
    ReferenceImage,
    ReferenceImagePath,
    ReferenceImageUri,
    ToolResult,
    TransparencyInput,
)
from nano_banana.tasks.progress import ProgressSink


logger = get_logger("nano_banana.server")

mcp = FastMCP(
    "nano-banana",
    instructions=(
        "Generate images with Gemini image models on Vertex AI, remove flat backgrounds, "
        "and poll long-running generations started as tasks."
    ),
)


def to_call_tool_result(result: ToolResult) -> CallToolResult:
    content: List[TextContent | ImageContent] = []
    for item in result.content:
        if item.type == "image":
            content.append(ImageContent(type="image", data=item.data or "", mimeType=item.mime_type or "image/png"))
        else:
            content.append(TextContent(type="text", text=item.text or ""))
    return CallToolResult(content=content, isError=result.is_error)


def progress_sink_for(ctx: Optional[Context]) -> Optional[ProgressSink]:
    """Return a sink only when the client asked for progress notifications."""

    if ctx is None:
        return None
    try:
        meta = ctx.request_context.meta
    except ValueError:
        return None
    if meta is None or meta.progressToken is None:
        return None

    async def sink(counter: int, message: str) -> None:
        await ctx.report_progress(counter, None, message)

    return sink


def _request_id(ctx: Optional[Context]) -> str:
    if ctx is not None:
        try:
            return str(ctx.request_id)
        except ValueError:
            pass
    return uuid4().hex


@mcp.tool(name=tools.GENERATE_TOOL)
async def nano_banana_generate_image(
    ctx: Context,
    prompt: Optional[str] = Field(default=None, description="Text prompt for the image."),
    reference_images: List[ReferenceImage] = Field(
        default_factory=list, description="Inline base64 reference images."
    ),
    reference_image_uris: List[ReferenceImageUri] = Field(
        default_factory=list, description="Reference images already stored in GCS (gs://...)."
    ),
    reference_image_paths: List[ReferenceImagePath] = Field(
        default_factory=list, description="Local reference images uploaded to GCS before generation."
    ),
    aspect_ratio: Optional[str] = Field(default=None, description="Aspect ratio such as 1:1 or 16:9."),
    image_size: Optional[str] = Field(default=None, description="Output size: 1K, 2K or 4K."),
    include_text: bool = Field(default=False, description="Also return text parts from the model."),
    response_modalities: Optional[List[Literal["TEXT", "IMAGE"]]] = None,
    candidate_count: Optional[int] = Field(default=None, ge=1, le=8),
    model: Optional[str] = None,
    location: Optional[str] = None,
    project_id: Optional[str] = None,
    gcs_bucket: Optional[str] = None,
    gcs_upload_prefix: Optional[str] = None,
    output_dir: Optional[str] = Field(default=None, description="Directory to save generated images into."),
    output_file_prefix: Optional[str] = None,
    transparent_background: bool = Field(
        default=False, description="Detect the flat background and make it transparent."
    ),
    background: Optional[str] = Field(
        default=None, description="Flatten transparency onto 'auto', a hex color, or 'off'."
    ),
    run_as_task: bool = Field(default=False, description="Return a task id immediately and poll for the result."),
) -> CallToolResult:
    """Generate images with a Gemini image model on Vertex AI."""

    try:
        request = GenerateImageRequest(
            prompt=prompt,
            reference_images=reference_images,
            reference_image_uris=reference_image_uris,
            reference_image_paths=reference_image_paths,
            aspect_ratio=aspect_ratio,
            image_size=image_size,
            include_text=include_text,
            response_modalities=response_modalities,
            candidate_count=candidate_count,
            model=model,
            location=location,
            project_id=project_id,
            gcs_bucket=gcs_bucket,
            gcs_upload_prefix=gcs_upload_prefix,
            output_dir=output_dir,
            output_file_prefix=output_file_prefix,
            transparent_background=transparent_background,
            background=background,
            run_as_task=run_as_task,
        )
    except ValidationError as exc:
        return to_call_tool_result(ToolResult.error(str(exc)))

    request_id = _request_id(ctx)
    bind_request_context(request_id=request_id)
    try:
        with sentry_scope(request_id=request_id):
            result = await tools.generate(request, progress_sink=progress_sink_for(ctx))
    finally:
        clear_request_context()
    return to_call_tool_result(result)


@mcp.tool(name=tools.MAKE_TRANSPARENT_TOOL)
async def nano_banana_make_transparent(
    ctx: Context,
    images: List[TransparencyInput] = Field(
        description="Images to process; each gives exactly one of data, path or gcsUri."
    ),
    mode: Literal["auto", "color_key", "flatten"] = Field(
        default="auto", description="auto detects the background, color_key removes one color, flatten fills alpha."
    ),
    color: Optional[str] = Field(default=None, description="Key color for color_key (defaults to the top-left pixel)."),
    tolerance: Optional[int] = Field(default=None, ge=0, le=255),
    feather: Optional[int] = Field(default=None, ge=0, le=255),
    fallback_color: Optional[str] = Field(default=None, description="Used when background detection is unreliable."),
    background: Optional[str] = Field(default=None, description="Flatten target: 'auto' or a hex color."),
    output_dir: Optional[str] = None,
    output_file_prefix: Optional[str] = None,
) -> CallToolResult:
    """Remove a flat background from images, or flatten their transparency."""

    try:
        request = MakeTransparentRequest(
            images=images,
            mode=mode,
            color=color,
            tolerance=tolerance,
            feather=feather,
            fallback_color=fallback_color,
            background=background,
            output_dir=output_dir,
            output_file_prefix=output_file_prefix,
        )
    except ValidationError as exc:
        return to_call_tool_result(ToolResult.error(str(exc)))

    request_id = _request_id(ctx)
    bind_request_context(request_id=request_id)
    try:
        with sentry_scope(request_id=request_id):
            result = await tools.make_transparent(request, progress_sink=progress_sink_for(ctx))
    finally:
        clear_request_context()
    return to_call_tool_result(result)


@mcp.tool(name=tools.GET_TASK_TOOL)
async def nano_banana_get_task(
    task_id: str = Field(description="Task id returned by a call made with runAsTask or auto-tasked."),
) -> CallToolResult:
    """Poll a task started by another tool call."""

    try:
        status = await tools.get_task(task_id)
    except NanoBananaError as exc:
        return to_call_tool_result(ToolResult.error(str(exc)))

    summary = status.model_dump_json(by_alias=True, exclude={"result"})
    content = [TextContent(type="text", text=summary)]
    is_error = False
    if status.result is not None:
        converted = to_call_tool_result(status.result)
        content.extend(converted.content)
        is_error = converted.isError
    return CallToolResult(content=content, isError=is_error)


def main() -> None:
    settings = get_settings()
    sentry_enabled = init_sentry()
    logger.info(
        "mcp_server_startup",
        env=settings.env,
        version=settings.app_version,
        model=settings.nano_banana_model,
        image_provider=settings.image_provider,
        sentry_enabled=sentry_enabled,
    )
    mcp.run()


if __name__ == "__main__":
    main()
