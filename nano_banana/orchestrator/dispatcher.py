"""Per-call routing between synchronous execution and deferred tasks.

Each call takes exactly one path, decided up front:

1. ``external_task`` when the caller explicitly asked for a task and a
   task delegate is configured;
2. ``registry_task`` when the caller asked for a task without a delegate,
   or the auto-task policy matches and auto-tasking is enabled;
3. ``sync`` otherwise, with a progress heartbeat when the transport can
   carry notifications.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, FrozenSet, Optional, Set

from nano_banana.core.errors import NanoBananaError, TaskNotFound
from nano_banana.core.logger import bind_request_context, get_logger
from nano_banana.core.metrics import record_tool_call
from nano_banana.core.observability import capture_exception
from nano_banana.schemas.tools import GenerateImageRequest, ToolContent, ToolResult
from nano_banana.tasks.external import TaskDelegate
from nano_banana.tasks.progress import ProgressReporter, ProgressSink
from nano_banana.tasks.registry import PollingTask, TaskRegistry


Operation = Callable[[Optional[ProgressReporter]], Awaitable[ToolResult]]

logger = get_logger("nano_banana.orchestrator.dispatcher")

CANCELLED_MESSAGE = "Task cancelled before completion."


class ExecutionPath(str, Enum):
    SYNC = "sync"
    REGISTRY_TASK = "registry_task"
    EXTERNAL_TASK = "external_task"


@dataclass(frozen=True)
class AutoTaskPolicy:
    enabled: bool = True
    image_sizes: FrozenSet[str] = frozenset({"4K"})
    min_candidates: int = 4

    def matches_generate(self, request: GenerateImageRequest) -> bool:
        if request.image_size and request.image_size.strip().upper() in self.image_sizes:
            return True
        return (request.candidate_count or 1) >= self.min_candidates


def _accepted(task_id: str, path: ExecutionPath) -> ToolResult:
    return ToolResult(
        content=[
            ToolContent(
                type="text",
                text=f"Started task {task_id} ({path.value}). Poll nano_banana_get_task for the result.",
            )
        ],
        task_id=task_id,
    )


class RequestOrchestrator:
    def __init__(
        self,
        *,
        registry: TaskRegistry,
        delegate: Optional[TaskDelegate] = None,
        heartbeat_seconds: float = 10.0,
    ) -> None:
        self._registry = registry
        self._delegate = delegate
        self._heartbeat_seconds = heartbeat_seconds
        self._background: Set[asyncio.Task[None]] = set()

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    def choose_path(self, *, explicit_task: bool, auto_task: bool) -> ExecutionPath:
        if explicit_task:
            if self._delegate is not None:
                return ExecutionPath.EXTERNAL_TASK
            return ExecutionPath.REGISTRY_TASK
        if auto_task:
            return ExecutionPath.REGISTRY_TASK
        return ExecutionPath.SYNC

    async def run(
        self,
        tool: str,
        operation: Operation,
        *,
        explicit_task: bool = False,
        auto_task: bool = False,
        progress_sink: Optional[ProgressSink] = None,
    ) -> ToolResult:
        path = self.choose_path(explicit_task=explicit_task, auto_task=auto_task)
        record_tool_call(tool=tool, path=path.value)
        logger.info("tool_call_dispatched", tool=tool, path=path.value)

        if path == ExecutionPath.EXTERNAL_TASK and self._delegate is not None:
            try:
                task_id = await self._delegate.create_task()
            except NanoBananaError as exc:
                logger.warning("tool_call_failed", tool=tool, code=exc.code, error=str(exc))
                return ToolResult.error(str(exc))
            self._spawn(self._run_external(self._delegate, task_id, tool, operation))
            return _accepted(task_id, path)

        if path == ExecutionPath.REGISTRY_TASK:
            task_id = self._registry.create()
            self._spawn(self._run_registry(task_id, tool, operation))
            return _accepted(task_id, path)

        if progress_sink is None:
            return await self._execute(tool, operation, None)
        reporter = ProgressReporter(progress_sink, interval_seconds=self._heartbeat_seconds)
        async with reporter.heartbeat(f"{tool} in progress"):
            return await self._execute(tool, operation, reporter)

    async def get_task(self, task_id: str) -> PollingTask:
        task = self._registry.get(task_id)
        if task is None and self._delegate is not None:
            task = await self._delegate.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    async def drain(self) -> None:
        """Wait for every background task started so far."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def close(self) -> None:
        for task in list(self._background):
            if not task.done():
                task.cancel()
        self._registry.close()

    def _spawn(self, coroutine: Awaitable[None]) -> None:
        task = asyncio.create_task(coroutine)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _execute(self, tool: str, operation: Operation, reporter: Optional[ProgressReporter]) -> ToolResult:
        try:
            return await operation(reporter)
        except NanoBananaError as exc:
            logger.warning("tool_call_failed", tool=tool, code=exc.code, error=str(exc))
            return ToolResult.error(str(exc))
        except Exception as exc:
            logger.exception("tool_call_crashed", tool=tool)
            capture_exception(exc)
            return ToolResult.error(str(exc) or exc.__class__.__name__)

    async def _run_registry(self, task_id: str, tool: str, operation: Operation) -> None:
        bind_request_context(task_id=task_id)
        self._registry.mark_working(task_id)
        try:
            result = await self._execute(tool, operation, None)
        except asyncio.CancelledError:
            self._registry.store_result(task_id, ToolResult.error(CANCELLED_MESSAGE))
            raise
        self._registry.store_result(task_id, result)

    async def _run_external(self, delegate: TaskDelegate, task_id: str, tool: str, operation: Operation) -> None:
        bind_request_context(task_id=task_id)
        try:
            await delegate.mark_working(task_id)
            result = await self._execute(tool, operation, None)
        except asyncio.CancelledError:
            await self._store_external(delegate, task_id, ToolResult.error(CANCELLED_MESSAGE))
            raise
        except NanoBananaError as exc:
            logger.warning("external_task_start_failed", task_id=task_id, code=exc.code, error=str(exc))
            result = ToolResult.error(str(exc))
        await self._store_external(delegate, task_id, result)

    async def _store_external(self, delegate: TaskDelegate, task_id: str, result: ToolResult) -> None:
        try:
            await delegate.store_result(task_id, result)
        except Exception as exc:
            # The queued entry carries a TTL, so an unstorable result still ages out.
            logger.exception("external_task_store_failed", task_id=task_id)
            capture_exception(exc)
