"""Background tasks of webhook-service."""
from __future__ import annotations

from webhook_service.services.retry import RetryCoordinator
from webhook_service.settings import settings
from webhook_service.worker import BackgroundWorker, WorkerTask
from webhook_service.workers.delivery_recovery import make_recover_stale_task


def build_worker(coordinator: RetryCoordinator) -> BackgroundWorker:
    return BackgroundWorker(
        interval_seconds=settings.worker_interval_seconds,
        # rows orphaned by the previous process are picked up right away
        run_on_start=True,
        tasks=[
            WorkerTask(name="webhook_recover_stale", fn=make_recover_stale_task(coordinator)),
        ],
    )
