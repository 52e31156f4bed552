"""In-memory registry for polling tasks.

Entries move ``queued -> working -> completed|failed``. The terminal
transition happens once; later results for the same id are dropped.
Completed entries are evicted ``ttl_seconds`` after their result is
stored, by a loop timer when one is running and lazily on ``get``.
Nothing is persisted: a restart forgets every task.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Optional
import uuid

from nano_banana.core.logger import get_logger
from nano_banana.core.metrics import record_task_finished
from nano_banana.schemas.tools import ToolResult


logger = get_logger("nano_banana.tasks.registry")


class TaskStatus(str, Enum):
    QUEUED = "queued"
    WORKING = "working"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


@dataclass(frozen=True)
class PollingTask:
    task_id: str
    status: TaskStatus
    created_at: datetime
    expires_at: Optional[datetime] = None
    result: Optional[ToolResult] = None


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class TaskRegistry:
    """Owns every polling task; all mutation goes through its methods."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 3600,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be zero or positive")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._tasks: Dict[str, PollingTask] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @property
    def expiry_enabled(self) -> bool:
        return self._ttl_seconds > 0

    def __len__(self) -> int:
        return len(self._tasks)

    def create(self) -> str:
        task_id = uuid.uuid4().hex
        while task_id in self._tasks:
            task_id = uuid.uuid4().hex
        self._tasks[task_id] = PollingTask(
            task_id=task_id,
            status=TaskStatus.QUEUED,
            created_at=self._clock(),
        )
        logger.info("task_created", task_id=task_id)
        return task_id

    def mark_working(self, task_id: str) -> None:
        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.QUEUED:
            return
        self._tasks[task_id] = replace(task, status=TaskStatus.WORKING)

    def store_result(self, task_id: str, result: ToolResult) -> bool:
        """Record the terminal result. Returns False when ignored."""

        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("task_result_for_unknown_task", task_id=task_id)
            return False
        if task.status.is_terminal:
            logger.warning("task_result_already_stored", task_id=task_id, status=task.status.value)
            return False

        status = TaskStatus.FAILED if result.is_error else TaskStatus.COMPLETED
        expires_at = None
        if self.expiry_enabled:
            expires_at = self._clock() + timedelta(seconds=self._ttl_seconds)
        self._tasks[task_id] = replace(
            task,
            status=status,
            expires_at=expires_at,
            result=result.model_copy(deep=True),
        )
        if self.expiry_enabled:
            self._schedule_cleanup(task_id)
        record_task_finished(backend="registry", status=status.value)
        logger.info("task_result_stored", task_id=task_id, status=status.value)
        return True

    def get(self, task_id: str) -> Optional[PollingTask]:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        if task.expires_at is not None and self._clock() >= task.expires_at:
            self._evict(task_id)
            return None
        return task

    def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _schedule_cleanup(self, task_id: str) -> None:
        previous = self._timers.pop(task_id, None)
        if previous is not None:
            previous.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to own the timer; get() evicts lazily instead.
            return
        self._timers[task_id] = loop.call_later(self._ttl_seconds, self._evict, task_id)

    def _evict(self, task_id: str) -> None:
        handle = self._timers.pop(task_id, None)
        if handle is not None:
            handle.cancel()
        if self._tasks.pop(task_id, None) is not None:
            logger.info("task_expired", task_id=task_id)
