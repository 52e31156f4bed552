"""Redis-backed task delegation for callers that explicitly ask for a task.

Unlike :class:`~nano_banana.tasks.registry.TaskRegistry`, entries live in
Redis, so any process sharing ``REDIS_URL`` can answer a poll and a restart
of this process does not lose them.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
import json
from typing import Any, Dict, Optional, Protocol
import uuid

from redis.asyncio import Redis
from redis.exceptions import RedisError

from nano_banana.core.config import get_settings
from nano_banana.core.errors import TaskBackendError
from nano_banana.core.logger import get_logger
from nano_banana.core.metrics import record_task_finished
from nano_banana.schemas.tools import ToolResult
from nano_banana.tasks.registry import PollingTask, TaskStatus


TASK_KEY_TEMPLATE = "nano-banana:task:{task_id}"
MARK_WORKING_SCRIPT = """
local current = redis.call("get", KEYS[1])
if not current then
  return 0
end
local decoded = cjson.decode(current)
if decoded["status"] ~= "queued" then
  return 0
end
decoded["status"] = "working"
redis.call("set", KEYS[1], cjson.encode(decoded), "KEEPTTL")
return 1
"""
STORE_RESULT_SCRIPT = """
local current = redis.call("get", KEYS[1])
if not current then
  return 0
end
local decoded = cjson.decode(current)
if decoded["status"] == "completed" or decoded["status"] == "failed" then
  return 0
end
if tonumber(ARGV[2]) > 0 then
  redis.call("set", KEYS[1], ARGV[1], "EX", ARGV[2])
else
  redis.call("set", KEYS[1], ARGV[1])
end
return 1
"""

logger = get_logger("nano_banana.tasks.external")


def task_key(task_id: str) -> str:
    return TASK_KEY_TEMPLATE.format(task_id=task_id)


class TaskDelegate(Protocol):
    backend_name: str

    async def create_task(self) -> str:
        raise NotImplementedError

    async def mark_working(self, task_id: str) -> None:
        raise NotImplementedError

    async def store_result(self, task_id: str, result: ToolResult) -> bool:
        raise NotImplementedError

    async def get(self, task_id: str) -> Optional[PollingTask]:
        raise NotImplementedError


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _dumps(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True)


class RedisTaskDelegate:
    backend_name = "redis"

    def __init__(self, redis_client: Redis, *, ttl_seconds: int = 3600) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be zero or positive")
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds

    async def create_task(self) -> str:
        task_id = uuid.uuid4().hex
        payload = {"task_id": task_id, "status": TaskStatus.QUEUED.value, "created_at": _now_utc().isoformat()}
        # Queued entries expire too, so a task whose runner died does not linger.
        ttl = self._ttl_seconds or None
        try:
            created = await self._redis.set(task_key(task_id), _dumps(payload), nx=True, ex=ttl)
        except RedisError as exc:
            raise TaskBackendError(f"Task backend unavailable: {exc}") from exc
        if not created:
            raise RuntimeError(f"task id collision: {task_id}")
        logger.info("external_task_created", task_id=task_id)
        return task_id

    async def mark_working(self, task_id: str) -> None:
        try:
            await self._redis.eval(MARK_WORKING_SCRIPT, 1, task_key(task_id))
        except RedisError as exc:
            raise TaskBackendError(f"Task backend unavailable: {exc}") from exc

    async def store_result(self, task_id: str, result: ToolResult) -> bool:
        current = await self.get(task_id)
        if current is None:
            return False
        status = TaskStatus.FAILED if result.is_error else TaskStatus.COMPLETED
        expires_at = None
        if self._ttl_seconds > 0:
            expires_at = _now_utc() + timedelta(seconds=self._ttl_seconds)
        payload = {
            "task_id": task_id,
            "status": status.value,
            "created_at": current.created_at.isoformat(),
            "expires_at": expires_at.isoformat() if expires_at else None,
            "result": result.model_dump(mode="json"),
        }
        try:
            stored = await self._redis.eval(
                STORE_RESULT_SCRIPT, 1, task_key(task_id), _dumps(payload), self._ttl_seconds
            )
        except RedisError as exc:
            raise TaskBackendError(f"Task backend unavailable: {exc}") from exc
        if int(stored) != 1:
            logger.warning("external_task_result_already_stored", task_id=task_id)
            return False
        record_task_finished(backend=self.backend_name, status=status.value)
        logger.info("external_task_result_stored", task_id=task_id, status=status.value)
        return True

    async def ping(self) -> tuple[bool, Optional[str]]:
        try:
            await self._redis.ping()
        except RedisError as exc:
            return False, str(exc)
        return True, None

    async def get(self, task_id: str) -> Optional[PollingTask]:
        try:
            raw = await self._redis.get(task_key(task_id))
        except RedisError as exc:
            raise TaskBackendError(f"Task backend unavailable: {exc}") from exc
        if not raw:
            return None
        data = json.loads(raw)
        result = data.get("result")
        expires_at = data.get("expires_at")
        return PollingTask(
            task_id=data["task_id"],
            status=TaskStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            result=ToolResult.model_validate(result) if result is not None else None,
        )


@lru_cache(maxsize=1)
def get_task_delegate() -> Optional[RedisTaskDelegate]:
    settings = get_settings()
    url = settings.redis_url.strip()
    if not url:
        return None
    client = Redis.from_url(url, decode_responses=True)
    return RedisTaskDelegate(client, ttl_seconds=settings.task_ttl_seconds)


def reset_task_delegate_cache() -> None:
    get_task_delegate.cache_clear()
