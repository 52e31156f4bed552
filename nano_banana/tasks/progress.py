"""Best-effort progress notifications for a single in-flight call."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Awaitable, Callable, Optional

from nano_banana.core.logger import get_logger
from nano_banana.core.metrics import record_progress_dropped


ProgressSink = Callable[[int, str], Awaitable[None]]

logger = get_logger("nano_banana.tasks.progress")


class ProgressReporter:
    """Counter plus optional heartbeat bound to one call.

    A failed send disables the session for good; callers never see it.
    """

    def __init__(self, sink: ProgressSink, *, interval_seconds: float = 10.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._sink = sink
        self._interval_seconds = interval_seconds
        self._counter = 0
        self._disabled = False
        self._heartbeat: Optional[asyncio.Task[None]] = None

    @property
    def counter(self) -> int:
        return self._counter

    @property
    def disabled(self) -> bool:
        return self._disabled

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat is not None and not self._heartbeat.done()

    async def report(self, message: str) -> None:
        if self._disabled:
            return
        self._counter += 1
        try:
            await self._sink(self._counter, message)
        except Exception as exc:
            self._disabled = True
            record_progress_dropped()
            logger.warning("progress_disabled", counter=self._counter, error=str(exc))

    async def _beat(self, message: str) -> None:
        while not self._disabled:
            await asyncio.sleep(self._interval_seconds)
            await self.report(message)

    @asynccontextmanager
    async def heartbeat(self, message: str) -> AsyncIterator["ProgressReporter"]:
        """Report now, then every interval until the block exits, however it exits."""

        await self.report(message)
        task = asyncio.create_task(self._beat(message))
        self._heartbeat = task
        try:
            yield self
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            self._heartbeat = None
