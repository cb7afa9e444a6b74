"""Resubmits deliveries left outstanding by a crash or restart."""
from __future__ import annotations

from datetime import datetime

from webhook_service.services.retry import RetryCoordinator
from webhook_service.worker import TaskFn


def make_recover_stale_task(coordinator: RetryCoordinator) -> TaskFn:
    async def recover_stale(now: datetime) -> str | None:
        recovered = await coordinator.recover_stale(now)
        return f"recovered={recovered}" if recovered else None

    return recover_stale
