from __future__ import annotations

import json
from io import BytesIO
from typing import Dict, Optional

from PIL import Image
import pytest

from nano_banana.core.config import get_settings
from nano_banana.core.metrics import reset_metrics_for_tests
from nano_banana.core.observability import reset_observability_for_tests
from nano_banana.media.auth import reset_credentials_for_tests
from nano_banana.media.providers import reset_image_provider_cache
from nano_banana.media.storage import reset_object_store_cache
from nano_banana.orchestrator.tools import shutdown_orchestrator
from nano_banana.tasks.external import MARK_WORKING_SCRIPT, STORE_RESULT_SCRIPT, reset_task_delegate_cache


def _reset_caches() -> None:
    get_settings.cache_clear()
    reset_image_provider_cache()
    reset_object_store_cache()
    reset_task_delegate_cache()
    reset_credentials_for_tests()
    shutdown_orchestrator()


@pytest.fixture(autouse=True)
def offline_settings(monkeypatch):
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("IMAGE_PROVIDER", "mock")
    monkeypatch.setenv("OBJECT_STORE", "memory")
    monkeypatch.setenv("REDIS_URL", "")
    monkeypatch.setenv("SENTRY_DSN", "")
    monkeypatch.setenv("NANO_BANANA_GCS_BUCKET", "")
    monkeypatch.setenv("FLATTEN_BACKGROUND", "off")
    monkeypatch.delenv("NANO_BANANA_MODEL", raising=False)
    _reset_caches()
    reset_metrics_for_tests()
    reset_observability_for_tests()
    yield
    _reset_caches()


def png_bytes(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def bordered_image(size: int = 100, border: int = 10, outer=(0, 200, 0), inner=(200, 0, 0)) -> Image.Image:
    image = Image.new("RGB", (size, size), outer)
    image.paste(inner, (border, border, size - border, size - border))
    return image


class FakeRedis:
    """Async stand-in for the handful of redis.asyncio calls the delegate makes."""

    def __init__(self) -> None:
        self._store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.ping_error: Optional[Exception] = None
        self.fail_next: Dict[str, Exception] = {}

    def _maybe_fail(self, method: str) -> None:
        error = self.fail_next.pop(method, None)
        if error is not None:
            raise error

    async def set(self, key: str, value: str, nx: bool = False, ex: Optional[int] = None):
        self._maybe_fail("set")
        if nx and key in self._store:
            return None
        self._store[key] = str(value)
        if ex:
            self.ttls[key] = int(ex)
        return True

    async def get(self, key: str):
        self._maybe_fail("get")
        return self._store.get(key)

    async def ping(self):
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def eval(self, script: str, numkeys: int, *keys_and_args):
        self._maybe_fail("eval")
        assert numkeys == 1
        key, *args = keys_and_args
        current = self._store.get(key)
        if current is None:
            return 0
        decoded = json.loads(current)
        if script == MARK_WORKING_SCRIPT:
            if decoded["status"] != "queued":
                return 0
            decoded["status"] = "working"
            self._store[key] = json.dumps(decoded)
            return 1
        if script == STORE_RESULT_SCRIPT:
            if decoded["status"] in {"completed", "failed"}:
                return 0
            self._store[key] = args[0]
            if int(args[1]) > 0:
                self.ttls[key] = int(args[1])
            return 1
        raise AssertionError("unexpected script")


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
