import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from nano_banana.core.metrics import render_prometheus_metrics
from nano_banana.schemas.tools import ToolContent, ToolResult
from nano_banana.tasks import TaskRegistry, TaskStatus


def _result(text: str = "done") -> ToolResult:
    return ToolResult(content=[ToolContent(type="text", text=text)])


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_created_task_is_queued_without_result() -> None:
    registry = TaskRegistry()
    task_id = registry.create()

    task = registry.get(task_id)
    assert task is not None
    assert task.status == TaskStatus.QUEUED
    assert task.result is None
    assert task.expires_at is None


def test_task_ids_are_unique() -> None:
    registry = TaskRegistry()
    ids = {registry.create() for _ in range(200)}
    assert len(ids) == 200
    assert len(registry) == 200


def test_store_result_completes_with_exact_payload() -> None:
    registry = TaskRegistry()
    task_id = registry.create()
    registry.mark_working(task_id)
    assert registry.get(task_id).status == TaskStatus.WORKING

    result = _result("two images")
    assert registry.store_result(task_id, result) is True

    task = registry.get(task_id)
    assert task.status == TaskStatus.COMPLETED
    assert task.result == result
    assert task.result is not result
    assert task.expires_at is not None

    body = render_prometheus_metrics(app_name="nano-banana-mcp", app_version="0.1.0", env="test")
    assert 'nano_banana_tasks_finished_total{backend="registry",status="completed"} 1' in body


def test_error_result_marks_task_failed() -> None:
    registry = TaskRegistry()
    task_id = registry.create()

    registry.store_result(task_id, ToolResult.error("boom"))

    task = registry.get(task_id)
    assert task.status == TaskStatus.FAILED
    assert task.result.is_error is True
    assert task.result.texts() == ["Nano Banana error: boom"]


def test_first_result_wins() -> None:
    registry = TaskRegistry()
    task_id = registry.create()

    assert registry.store_result(task_id, _result("first")) is True
    assert registry.store_result(task_id, _result("second")) is False

    assert registry.get(task_id).result.texts() == ["first"]


def test_unknown_ids_are_ignored() -> None:
    registry = TaskRegistry()
    assert registry.get("missing") is None
    assert registry.store_result("missing", _result()) is False


def test_completed_task_expires_after_ttl_on_the_loop() -> None:
    async def scenario() -> tuple:
        registry = TaskRegistry(ttl_seconds=0.05)
        task_id = registry.create()
        registry.store_result(task_id, _result())
        present = registry.get(task_id) is not None
        await asyncio.sleep(0.2)
        remaining = len(registry)
        registry.close()
        return present, remaining

    present, remaining = asyncio.run(scenario())
    assert present is True
    assert remaining == 0


def test_expired_task_is_evicted_lazily_without_a_loop() -> None:
    clock = _Clock()
    registry = TaskRegistry(ttl_seconds=60, clock=clock)
    task_id = registry.create()
    registry.store_result(task_id, _result())

    clock.now += timedelta(seconds=59)
    assert registry.get(task_id) is not None

    clock.now += timedelta(seconds=1)
    assert registry.get(task_id) is None
    assert len(registry) == 0


def test_zero_ttl_keeps_results_forever() -> None:
    clock = _Clock()
    registry = TaskRegistry(ttl_seconds=0, clock=clock)
    task_id = registry.create()
    registry.store_result(task_id, _result())

    clock.now += timedelta(days=365)
    task = registry.get(task_id)
    assert task is not None
    assert task.expires_at is None


def test_queued_tasks_never_expire() -> None:
    clock = _Clock()
    registry = TaskRegistry(ttl_seconds=1, clock=clock)
    task_id = registry.create()

    clock.now += timedelta(hours=2)
    assert registry.get(task_id).status == TaskStatus.QUEUED


def test_negative_ttl_is_rejected() -> None:
    with pytest.raises(ValueError):
        TaskRegistry(ttl_seconds=-1)
