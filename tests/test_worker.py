"""BackgroundWorker and the delivery recovery task, without a database."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from aiohttp import web

from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.events import DomainEvent
from webhook_service.worker import BackgroundWorker, WorkerTask
from webhook_service.workers import build_worker
from webhook_service.workers.delivery_recovery import make_recover_stale_task

from tests.utils import webhook_dto


@pytest.mark.asyncio
async def test_worker_runs_tasks_periodically():
    called_with: list[datetime] = []

    async def task_fn(now: datetime) -> str | None:
        called_with.append(now)
        return "ok"

    worker = BackgroundWorker(interval_seconds=0.05, tasks=[WorkerTask(name="probe", fn=task_fn)])
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.2)
    await worker.stop(app)

    assert len(called_with) >= 2
    assert all(dt.tzinfo is not None for dt in called_with)


@pytest.mark.asyncio
async def test_failing_task_does_not_stop_others():
    healthy_calls = 0

    async def broken(now: datetime) -> str | None:
        raise RuntimeError("boom")

    async def healthy(now: datetime) -> str | None:
        nonlocal healthy_calls
        healthy_calls += 1
        return None

    worker = BackgroundWorker(
        interval_seconds=0.05,
        tasks=[WorkerTask(name="broken", fn=broken), WorkerTask(name="healthy", fn=healthy)],
    )
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.2)
    await worker.stop(app)

    assert healthy_calls >= 2


@pytest.mark.asyncio
async def test_stop_without_start_is_safe():
    await BackgroundWorker().stop(web.Application())


@pytest.mark.asyncio
async def test_recover_task_reports_count():
    coordinator = AsyncMock()
    coordinator.recover_stale.return_value = 3
    task = make_recover_stale_task(coordinator)
    now = datetime.now(timezone.utc)

    assert await task(now) == "recovered=3"
    coordinator.recover_stale.assert_awaited_once_with(now)

    coordinator.recover_stale.return_value = 0
    assert await task(now) is None


@pytest.mark.asyncio
async def test_build_worker_registers_recovery(coordinator):
    worker = build_worker(coordinator)
    assert [t.name for t in worker.tasks] == ["webhook_recover_stale"]


@pytest.mark.asyncio
async def test_sweep_delivers_orphaned_row(receiver, service, subscriptions, deliveries, coordinator):
    sub = await subscriptions.create(webhook_dto(receiver.url), secret="s" * 32, created_by=None)
    delivery = await service._enqueue(sub, DomainEvent(type="deal.created", attributes={}))

    await build_worker(coordinator).run_once()
    await coordinator.join()

    assert (await deliveries.get(delivery.id)).status == DeliveryStatus.SUCCESS
    assert len(receiver.requests) == 1


@pytest.mark.asyncio
async def test_run_on_start_sweeps_before_first_interval():
    calls = 0

    async def task_fn(now: datetime) -> str | None:
        nonlocal calls
        calls += 1
        return None

    worker = BackgroundWorker(
        interval_seconds=60, tasks=[WorkerTask(name="probe", fn=task_fn)], run_on_start=True
    )
    await worker.start()
    await asyncio.sleep(0.05)
    assert worker.running
    await worker.stop()

    assert calls == 1
    assert not worker.running
