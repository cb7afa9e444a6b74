"""In-process scheduling of delivery attempts and retries."""
from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Coroutine
from uuid import UUID

import structlog

from webhook_service.core.exceptions import InvalidStatusTransitionError, NotFoundError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.models import DeliveryOutcome, RetrySummary, WebhookDelivery
from webhook_service.repositories.protocols import DeliveryLog, SubscriptionStore
from webhook_service.services.dispatcher import WebhookDispatcher
from webhook_service.services.locks import KeyedLocks
from webhook_service.services.state_machine import status_for_manual_retry
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

DISABLED_ERROR = "Webhook disabled or deleted"


class RetryCoordinator:
    """Owns every background attempt of this process.

    - a global semaphore bounds concurrent HTTP calls
    - a per-delivery lock keeps attempts of one delivery strictly sequential
    - scheduled retries are tracked per subscription so deactivation and
      deletion can cancel them
    """

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        deliveries: DeliveryLog,
        dispatcher: WebhookDispatcher,
        *,
        max_concurrency: int | None = None,
        stale_grace_seconds: float | None = None,
        recover_batch_size: int | None = None,
    ) -> None:
        self._subscriptions = subscriptions
        self._deliveries = deliveries
        self._dispatcher = dispatcher
        self._semaphore = asyncio.Semaphore(
            max_concurrency or settings.webhook_dispatch_max_concurrency
        )
        self._stale_grace = (
            settings.webhook_stale_grace_seconds
            if stale_grace_seconds is None
            else stale_grace_seconds
        )
        self._recover_batch_size = recover_batch_size or settings.webhook_recover_batch_size
        self._delivery_locks = KeyedLocks()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._active: set[UUID] = set()
        self._scheduled: dict[UUID, asyncio.Task[Any]] = {}
        self._by_subscription: defaultdict[UUID, set[UUID]] = defaultdict(set)
        self._closed = False

    # --- task bookkeeping -------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Run *coro* in the background; ``join``/``close`` wait for or cancel it."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def is_tracked(self, delivery_id: UUID) -> bool:
        return delivery_id in self._active or delivery_id in self._scheduled

    def scheduled_count(self, subscription_id: UUID | None = None) -> int:
        if subscription_id is None:
            return len(self._scheduled)
        return len(self._by_subscription.get(subscription_id, ()))

    def snapshot(self) -> dict[str, int]:
        return {"in_flight": len(self._active), "scheduled_retries": len(self._scheduled)}

    def _forget_scheduled(self, delivery_id: UUID, subscription_id: UUID) -> asyncio.Task[Any] | None:
        task = self._scheduled.pop(delivery_id, None)
        ids = self._by_subscription.get(subscription_id)
        if ids is not None:
            ids.discard(delivery_id)
            if not ids:
                del self._by_subscription[subscription_id]
        return task

    # --- automatic attempts -----------------------------------------------

    def submit(self, delivery: WebhookDelivery) -> None:
        """Start the first (or a recovered) automatic attempt of *delivery*."""
        if self._closed:
            logger.warning("webhook_submit_after_close", delivery_id=str(delivery.id))
            return
        self._active.add(delivery.id)
        self.spawn(
            self._run(delivery.id, delivery.subscription_id),
            name=f"webhook-delivery-{delivery.id}",
        )

    def schedule_retry(self, delivery_id: UUID, subscription_id: UUID, attempts: int) -> float:
        """Schedule the next automatic attempt after the backoff for *attempts*."""
        delay = self._dispatcher.policy.delay_for(attempts)
        previous = self._forget_scheduled(delivery_id, subscription_id)
        if previous is not None:
            previous.cancel()
        task = self.spawn(
            self._fire_later(delivery_id, subscription_id, delay),
            name=f"webhook-retry-{delivery_id}",
        )
        self._scheduled[delivery_id] = task
        self._by_subscription[subscription_id].add(delivery_id)
        logger.info(
            "webhook_retry_scheduled",
            delivery_id=str(delivery_id),
            subscription_id=str(subscription_id),
            attempt=attempts + 1,
            delay_seconds=delay,
        )
        return delay

    async def _fire_later(self, delivery_id: UUID, subscription_id: UUID, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._scheduled.get(delivery_id) is not asyncio.current_task():
            return
        self._forget_scheduled(delivery_id, subscription_id)
        self._active.add(delivery_id)
        await self._run(delivery_id, subscription_id)

    async def _run(self, delivery_id: UUID, subscription_id: UUID) -> None:
        try:
            outcome = await self._attempt(delivery_id, manual=False)
            if outcome is not None and outcome.status == DeliveryStatus.RETRYING:
                if not self._closed:
                    self.schedule_retry(delivery_id, subscription_id, outcome.attempts)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "webhook_delivery_task_failed",
                delivery_id=str(delivery_id),
                subscription_id=str(subscription_id),
            )
        finally:
            self._active.discard(delivery_id)

    async def _attempt(self, delivery_id: UUID, *, manual: bool) -> DeliveryOutcome | None:
        async with self._delivery_locks.hold(delivery_id):
            async with self._semaphore:
                try:
                    delivery = await self._deliveries.get(delivery_id)
                    # re-read so every attempt is signed with the current secret
                    subscription = await self._subscriptions.get(delivery.subscription_id)
                except NotFoundError:
                    logger.info("webhook_attempt_skipped", delivery_id=str(delivery_id), reason="deleted")
                    return None
                if not manual and not subscription.is_active:
                    await self._deliveries.abandon(delivery_id, error=DISABLED_ERROR)
                    logger.info(
                        "webhook_delivery_abandoned",
                        delivery_id=str(delivery_id),
                        subscription_id=str(subscription.id),
                        reason="inactive",
                    )
                    return None
                return await self._dispatcher.deliver(subscription, delivery, manual=manual)

    # --- operator-driven attempts -----------------------------------------

    async def dispatch_once(self, delivery_id: UUID) -> DeliveryOutcome:
        """Send a delivery exactly once now; failure is terminal."""
        outcome = await self._attempt(delivery_id, manual=True)
        if outcome is None:
            raise NotFoundError("Webhook delivery not found")
        return outcome

    async def retry_now(self, delivery_id: UUID) -> DeliveryOutcome:
        """One-shot manual retry of a ``failed`` or ``retrying`` delivery.

        Any scheduled automatic retry is cancelled first; a failing manual retry
        leaves the delivery ``failed``.
        """
        delivery = await self._deliveries.get(delivery_id)
        status_for_manual_retry(delivery.status)
        previous = self._forget_scheduled(delivery_id, delivery.subscription_id)
        if previous is not None:
            previous.cancel()
        outcome = await self._attempt(delivery_id, manual=True)
        if outcome is None:
            raise InvalidStatusTransitionError("Delivery is no longer retryable")
        return outcome

    async def retry_all_failed(self, subscription_id: UUID) -> RetrySummary:
        await self._subscriptions.get(subscription_id)
        entries = await self._deliveries.list_retryable(subscription_id)
        results = await asyncio.gather(
            *(self.retry_now(entry.id) for entry in entries), return_exceptions=True
        )
        summary = RetrySummary(retried=len(entries))
        for entry, result in zip(entries, results):
            if isinstance(result, DeliveryOutcome) and result.success:
                summary.succeeded += 1
                continue
            summary.failed += 1
            if isinstance(result, BaseException):
                logger.warning(
                    "webhook_manual_retry_failed",
                    delivery_id=str(entry.id),
                    error=str(result) or type(result).__name__,
                )
        logger.info(
            "webhook_retry_all_finished",
            subscription_id=str(subscription_id),
            retried=summary.retried,
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return summary

    def cancel_subscription(self, subscription_id: UUID) -> int:
        """Cancel every scheduled retry of a subscription; returns how many."""
        ids = list(self._by_subscription.get(subscription_id, ()))
        for delivery_id in ids:
            task = self._forget_scheduled(delivery_id, subscription_id)
            if task is not None:
                task.cancel()
        if ids:
            logger.info("webhook_retries_cancelled", subscription_id=str(subscription_id), count=len(ids))
        return len(ids)

    # --- recovery -----------------------------------------------------------

    async def recover_stale(self, now: datetime | None = None) -> int:
        """Resubmit outstanding deliveries nobody in this process is working on.

        Covers retries lost on restart and first attempts that never started.
        Rows are leased in the log first so concurrent sweeps skip them.
        """
        if self._closed:
            return 0
        now = now or datetime.now(timezone.utc)
        claimed = await self._deliveries.claim_stale(
            due_before=now - timedelta(seconds=self._stale_grace),
            lease_until=now + timedelta(seconds=self._stale_grace),
            limit=self._recover_batch_size,
        )
        resubmitted = 0
        for delivery in claimed:
            if self.is_tracked(delivery.id):
                continue
            self.submit(delivery)
            resubmitted += 1
        if resubmitted:
            logger.info("webhook_deliveries_recovered", count=resubmitted)
        return resubmitted

    # --- lifecycle ----------------------------------------------------------

    async def join(self) -> None:
        """Wait until no attempt is running or scheduled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._scheduled.clear()
        self._by_subscription.clear()
        self._active.clear()
