import asyncio
from typing import List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
import structlog

from nano_banana.core.config import get_settings
from nano_banana.core.errors import ImageProviderError, TaskNotFound, UnreachableCollaborator
from nano_banana.core.metrics import render_prometheus_metrics
from nano_banana.orchestrator import AutoTaskPolicy, ExecutionPath, RequestOrchestrator
from nano_banana.orchestrator import tools
from nano_banana.schemas.tools import GenerateImageRequest, ToolContent, ToolResult
from nano_banana.tasks import RedisTaskDelegate, TaskRegistry, TaskStatus


def _ok(text: str = "done"):
    async def operation(reporter) -> ToolResult:
        return ToolResult(content=[ToolContent(type="text", text=text)])

    return operation


def _metrics() -> str:
    return render_prometheus_metrics(app_name="nano-banana-mcp", app_version="0.1.0", env="test")


def test_path_selection_order() -> None:
    local = RequestOrchestrator(registry=TaskRegistry())
    assert local.choose_path(explicit_task=True, auto_task=True) == ExecutionPath.REGISTRY_TASK
    assert local.choose_path(explicit_task=False, auto_task=True) == ExecutionPath.REGISTRY_TASK
    assert local.choose_path(explicit_task=False, auto_task=False) == ExecutionPath.SYNC

    delegated = RequestOrchestrator(registry=TaskRegistry(), delegate=object())
    assert delegated.choose_path(explicit_task=True, auto_task=True) == ExecutionPath.EXTERNAL_TASK
    assert delegated.choose_path(explicit_task=False, auto_task=True) == ExecutionPath.REGISTRY_TASK


def test_sync_path_returns_the_result_inline() -> None:
    async def scenario():
        orchestrator = RequestOrchestrator(registry=TaskRegistry())
        result = await orchestrator.run("tool", _ok("inline"))
        return orchestrator, result

    orchestrator, result = asyncio.run(scenario())
    assert result.task_id is None
    assert result.texts() == ["inline"]
    assert len(orchestrator.registry) == 0
    assert 'nano_banana_tool_calls_total{tool="tool",path="sync"} 1' in _metrics()


def test_sync_errors_become_error_results() -> None:
    async def failing(reporter) -> ToolResult:
        raise ImageProviderError("Vertex request failed status=500 detail=oops")

    async def crashing(reporter) -> ToolResult:
        raise KeyError("candidates")

    async def scenario():
        orchestrator = RequestOrchestrator(registry=TaskRegistry())
        return await orchestrator.run("tool", failing), await orchestrator.run("tool", crashing)

    expected, unexpected = asyncio.run(scenario())
    assert expected.is_error is True
    assert expected.texts() == ["Nano Banana error: Vertex request failed status=500 detail=oops"]
    assert unexpected.is_error is True
    assert unexpected.texts()[0].startswith("Nano Banana error: ")


def test_registry_task_is_queued_then_completed() -> None:
    async def scenario():
        orchestrator = RequestOrchestrator(registry=TaskRegistry())
        accepted = await orchestrator.run("tool", _ok("late"), explicit_task=True)
        first = await orchestrator.get_task(accepted.task_id)
        await orchestrator.drain()
        final = await orchestrator.get_task(accepted.task_id)
        return accepted, first, final

    accepted, first, final = asyncio.run(scenario())
    assert accepted.task_id
    assert accepted.task_id in accepted.texts()[0]
    assert first.status in (TaskStatus.QUEUED, TaskStatus.WORKING)
    assert first.result is None
    assert final.status == TaskStatus.COMPLETED
    assert final.result.texts() == ["late"]
    assert 'nano_banana_tool_calls_total{tool="tool",path="registry_task"} 1' in _metrics()


def test_failed_background_work_is_stored_as_failed() -> None:
    async def crashing(reporter) -> ToolResult:
        raise RuntimeError("disk full")

    async def scenario():
        orchestrator = RequestOrchestrator(registry=TaskRegistry())
        accepted = await orchestrator.run("tool", crashing, auto_task=True)
        await orchestrator.drain()
        return await orchestrator.get_task(accepted.task_id)

    task = asyncio.run(scenario())
    assert task.status == TaskStatus.FAILED
    assert task.result.texts() == ["Nano Banana error: disk full"]


def test_background_work_gets_no_progress_reporter() -> None:
    seen: List[Optional[object]] = []

    async def operation(reporter) -> ToolResult:
        seen.append(reporter)
        return ToolResult()

    async def sink(counter: int, message: str) -> None:
        raise AssertionError("tasks must not report progress")

    async def scenario() -> None:
        orchestrator = RequestOrchestrator(registry=TaskRegistry())
        await orchestrator.run("tool", operation, auto_task=True, progress_sink=sink)
        await orchestrator.drain()

    asyncio.run(scenario())
    assert seen == [None]


def test_explicit_task_goes_to_the_delegate_only(fake_redis) -> None:
    async def scenario():
        delegate = RedisTaskDelegate(fake_redis, ttl_seconds=120)
        orchestrator = RequestOrchestrator(registry=TaskRegistry(), delegate=delegate)
        accepted = await orchestrator.run("tool", _ok("remote"), explicit_task=True)
        await orchestrator.drain()
        return orchestrator, accepted, await orchestrator.get_task(accepted.task_id)

    orchestrator, accepted, task = asyncio.run(scenario())
    assert len(orchestrator.registry) == 0
    assert task.status == TaskStatus.COMPLETED
    assert task.result.texts() == ["remote"]
    assert fake_redis.ttls[f"nano-banana:task:{accepted.task_id}"] == 120
    assert 'nano_banana_tool_calls_total{tool="tool",path="external_task"} 1' in _metrics()


def test_auto_task_stays_in_the_registry_even_with_a_delegate(fake_redis) -> None:
    async def scenario():
        delegate = RedisTaskDelegate(fake_redis, ttl_seconds=120)
        orchestrator = RequestOrchestrator(registry=TaskRegistry(), delegate=delegate)
        accepted = await orchestrator.run("tool", _ok(), auto_task=True)
        await orchestrator.drain()
        return orchestrator, accepted

    orchestrator, accepted = asyncio.run(scenario())
    assert orchestrator.registry.get(accepted.task_id) is not None
    assert fake_redis.ttls == {}


def test_task_backend_outage_on_create_returns_an_error_result(fake_redis) -> None:
    fake_redis.fail_next["set"] = RedisConnectionError("redis down")

    async def scenario():
        delegate = RedisTaskDelegate(fake_redis, ttl_seconds=120)
        orchestrator = RequestOrchestrator(registry=TaskRegistry(), delegate=delegate)
        return await orchestrator.run("tool", _ok(), explicit_task=True)

    result = asyncio.run(scenario())
    assert result.is_error is True
    assert result.task_id is None
    assert result.texts() == ["Nano Banana error: Task backend unavailable: redis down"]


def test_start_failure_still_stores_a_failed_result(fake_redis) -> None:
    ran: List[bool] = []

    async def operation(reporter) -> ToolResult:
        ran.append(True)
        return ToolResult()

    async def scenario():
        delegate = RedisTaskDelegate(fake_redis, ttl_seconds=120)
        orchestrator = RequestOrchestrator(registry=TaskRegistry(), delegate=delegate)
        fake_redis.fail_next["eval"] = RedisConnectionError("blip")
        accepted = await orchestrator.run("tool", operation, explicit_task=True)
        await orchestrator.drain()
        return accepted, await delegate.get(accepted.task_id)

    accepted, task = asyncio.run(scenario())
    assert ran == []
    assert task.status == TaskStatus.FAILED
    assert task.result.texts() == ["Nano Banana error: Task backend unavailable: blip"]
    assert fake_redis.ttls[f"nano-banana:task:{accepted.task_id}"] == 120


def test_unstorable_result_is_logged_and_the_queued_entry_expires(fake_redis) -> None:
    async def scenario():
        delegate = RedisTaskDelegate(fake_redis, ttl_seconds=120)
        orchestrator = RequestOrchestrator(registry=TaskRegistry(), delegate=delegate)
        accepted = await orchestrator.run("tool", _ok(), explicit_task=True)
        # The first get comes from store_result; it fails after the work has run.
        fake_redis.fail_next["get"] = RedisConnectionError("gone")
        await orchestrator.drain()
        return accepted, await delegate.get(accepted.task_id)

    accepted, task = asyncio.run(scenario())
    assert task.status == TaskStatus.WORKING
    assert task.result is None
    assert fake_redis.ttls[f"nano-banana:task:{accepted.task_id}"] == 120


def test_polling_during_a_backend_outage_raises_a_collaborator_error(fake_redis) -> None:
    async def scenario():
        delegate = RedisTaskDelegate(fake_redis)
        orchestrator = RequestOrchestrator(registry=TaskRegistry(), delegate=delegate)
        fake_redis.fail_next["get"] = RedisConnectionError("gone")
        await orchestrator.get_task("abc")

    with pytest.raises(UnreachableCollaborator):
        asyncio.run(scenario())


def test_background_runs_log_with_their_task_id() -> None:
    seen: List[Optional[str]] = []

    async def operation(reporter) -> ToolResult:
        seen.append(structlog.contextvars.get_contextvars().get("task_id"))
        return ToolResult()

    async def scenario():
        orchestrator = RequestOrchestrator(registry=TaskRegistry())
        accepted = await orchestrator.run("tool", operation, explicit_task=True)
        await orchestrator.drain()
        return accepted, structlog.contextvars.get_contextvars().get("task_id")

    accepted, caller_task_id = asyncio.run(scenario())
    assert seen == [accepted.task_id]
    assert caller_task_id is None


def test_sync_with_progress_sink_runs_a_heartbeat() -> None:
    messages: List[str] = []

    async def sink(counter: int, message: str) -> None:
        messages.append(message)

    async def slow(reporter) -> ToolResult:
        await asyncio.sleep(0.05)
        await reporter.report("halfway")
        return ToolResult()

    async def scenario():
        orchestrator = RequestOrchestrator(registry=TaskRegistry(), heartbeat_seconds=0.01)
        return await orchestrator.run("tool", slow, progress_sink=sink)

    result = asyncio.run(scenario())
    assert result.is_error is False
    assert messages[0] == "tool in progress"
    assert "halfway" in messages


def test_unknown_task_raises() -> None:
    async def scenario() -> None:
        orchestrator = RequestOrchestrator(registry=TaskRegistry())
        await orchestrator.get_task("nope")

    with pytest.raises(TaskNotFound) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.task_id == "nope"


def test_auto_task_policy_matches_large_requests() -> None:
    policy = AutoTaskPolicy(enabled=True, image_sizes=frozenset({"4K"}), min_candidates=4)

    assert policy.matches_generate(GenerateImageRequest(prompt="x", image_size="4k")) is True
    assert policy.matches_generate(GenerateImageRequest(prompt="x", candidate_count=4)) is True
    assert policy.matches_generate(GenerateImageRequest(prompt="x", image_size="2K", candidate_count=3)) is False
    assert policy.matches_generate(GenerateImageRequest(prompt="x")) is False


def test_generate_tool_auto_tasks_4k_requests() -> None:
    async def scenario():
        orchestrator = tools.get_orchestrator()
        accepted = await tools.generate(GenerateImageRequest(prompt="a banana", image_size="4K"))
        await orchestrator.drain()
        return accepted, await tools.get_task(accepted.task_id)

    accepted, status = asyncio.run(scenario())
    assert accepted.task_id == status.task_id
    assert status.status == "completed"
    assert len(status.result.images()) == 1


def test_generate_tool_stays_sync_when_auto_tasking_is_off(monkeypatch) -> None:
    monkeypatch.setenv("AUTO_TASK_ENABLED", "false")
    get_settings.cache_clear()
    tools.shutdown_orchestrator()

    result = asyncio.run(tools.generate(GenerateImageRequest(prompt="a banana", image_size="4K")))
    assert result.task_id is None
    assert len(result.images()) == 1
