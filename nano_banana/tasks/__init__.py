"""Polling tasks, external task delegation and progress reporting."""

from nano_banana.tasks.external import RedisTaskDelegate, TaskDelegate, get_task_delegate, reset_task_delegate_cache
from nano_banana.tasks.progress import ProgressReporter, ProgressSink
from nano_banana.tasks.registry import PollingTask, TaskRegistry, TaskStatus

__all__ = [
    "PollingTask",
    "ProgressReporter",
    "ProgressSink",
    "RedisTaskDelegate",
    "TaskDelegate",
    "TaskRegistry",
    "TaskStatus",
    "get_task_delegate",
    "reset_task_delegate_cache",
]
