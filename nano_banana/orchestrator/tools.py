"""Tool entrypoints shared by the MCP server and the HTTP API."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from nano_banana.core.config import get_settings
from nano_banana.media.service import generate_images
from nano_banana.media.transparency_service import make_transparent as run_make_transparent
from nano_banana.orchestrator.dispatcher import AutoTaskPolicy, RequestOrchestrator
from nano_banana.schemas.tools import GenerateImageRequest, MakeTransparentRequest, TaskStatusResponse, ToolResult
from nano_banana.tasks.external import get_task_delegate
from nano_banana.tasks.progress import ProgressReporter, ProgressSink
from nano_banana.tasks.registry import PollingTask, TaskRegistry


GENERATE_TOOL = "nano_banana_generate_image"
MAKE_TRANSPARENT_TOOL = "nano_banana_make_transparent"
GET_TASK_TOOL = "nano_banana_get_task"


@lru_cache(maxsize=1)
def get_auto_task_policy() -> AutoTaskPolicy:
    settings = get_settings()
    return AutoTaskPolicy(
        enabled=settings.auto_task_enabled,
        image_sizes=frozenset(settings.auto_task_size_set()),
        min_candidates=settings.auto_task_min_candidates,
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> RequestOrchestrator:
    settings = get_settings()
    return RequestOrchestrator(
        registry=TaskRegistry(ttl_seconds=settings.task_ttl_seconds),
        delegate=get_task_delegate(),
        heartbeat_seconds=settings.progress_heartbeat_seconds,
    )


def shutdown_orchestrator() -> None:
    if get_orchestrator.cache_info().currsize:
        get_orchestrator().close()
    get_orchestrator.cache_clear()
    get_auto_task_policy.cache_clear()


async def generate(
    request: GenerateImageRequest,
    *,
    progress_sink: Optional[ProgressSink] = None,
    orchestrator: Optional[RequestOrchestrator] = None,
) -> ToolResult:
    orchestrator = orchestrator or get_orchestrator()
    policy = get_auto_task_policy()

    async def operation(reporter: Optional[ProgressReporter]) -> ToolResult:
        return await generate_images(request, reporter=reporter)

    return await orchestrator.run(
        GENERATE_TOOL,
        operation,
        explicit_task=request.run_as_task,
        auto_task=policy.enabled and policy.matches_generate(request),
        progress_sink=progress_sink,
    )


async def make_transparent(
    request: MakeTransparentRequest,
    *,
    progress_sink: Optional[ProgressSink] = None,
    orchestrator: Optional[RequestOrchestrator] = None,
) -> ToolResult:
    orchestrator = orchestrator or get_orchestrator()

    async def operation(reporter: Optional[ProgressReporter]) -> ToolResult:
        return await run_make_transparent(request)

    return await orchestrator.run(MAKE_TRANSPARENT_TOOL, operation, progress_sink=progress_sink)


def task_status_response(task: PollingTask) -> TaskStatusResponse:
    return TaskStatusResponse(
        task_id=task.task_id,
        status=task.status.value,
        created_at=task.created_at,
        expires_at=task.expires_at,
        result=task.result,
    )


async def get_task(task_id: str, *, orchestrator: Optional[RequestOrchestrator] = None) -> TaskStatusResponse:
    orchestrator = orchestrator or get_orchestrator()
    return task_status_response(await orchestrator.get_task(task_id))
