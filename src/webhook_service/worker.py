"""Periodic in-process background worker.

Each registered task receives the current UTC time and may return a short
summary, which is logged when non-empty::

    worker = BackgroundWorker(
        interval_seconds=60.0,
        tasks=[WorkerTask(name="webhook_recover_stale", fn=recover_stale)],
        run_on_start=True,
    )
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

import structlog

logger = structlog.get_logger(__name__)

TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    name: str
    fn: TaskFn


@dataclass
class BackgroundWorker:
    """Runs its tasks every ``interval_seconds``; a failing task does not stop the others."""

    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)
    run_on_start: bool = False
    _loop_task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self, _app: Any = None) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._loop(), name="background-worker")

    async def stop(self, _app: Any = None) -> None:
        task, self._loop_task = self._loop_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run_once(self, now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc)
        for task in self.tasks:
            started = time.monotonic()
            try:
                summary = await task.fn(now)
            except Exception:
                logger.exception("worker_task_failed", task=task.name)
                continue
            if summary:
                logger.info(
                    "worker_task_finished",
                    task=task.name,
                    summary=summary,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )

    async def _loop(self) -> None:
        logger.info(
            "worker_started",
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        try:
            if self.run_on_start:
                await self.run_once()
            while True:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
        except asyncio.CancelledError:
            logger.info("worker_stopped")
            raise
