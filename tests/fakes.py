"""In-memory stand-ins for the PostgreSQL repositories.

They follow the same compare-and-set rules as the SQL in
``webhook_service.repositories`` so the services behave identically on top.
"""
from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Any, Collection, List, Tuple
from uuid import UUID, uuid4

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import DeliveryCreateDTO, DeliveryResultDTO, WebhookCreateDTO
from webhook_service.domain.enums import OUTSTANDING_STATUSES, DeliveryStatus
from webhook_service.domain.models import DeliveryStats, WebhookDelivery, WebhookSubscription

IN_FLIGHT = OUTSTANDING_STATUSES


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryDatabase:
    def __init__(self) -> None:
        self.subscriptions: dict[UUID, WebhookSubscription] = {}
        self.deliveries: dict[UUID, WebhookDelivery] = {}
        self.order: dict[UUID, int] = {}
        self._seq = itertools.count()

    def next_seq(self) -> int:
        return next(self._seq)


class FakeSubscriptionStore:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def create(
        self, dto: WebhookCreateDTO, *, secret: str, created_by: UUID | None
    ) -> WebhookSubscription:
        now = _now()
        sub = WebhookSubscription(
            id=uuid4(),
            secret=secret,
            created_by=created_by,
            created_at=now,
            updated_at=now,
            **dto.model_dump(exclude={"secret"}),
        )
        self._db.subscriptions[sub.id] = sub
        self._db.order[sub.id] = self._db.next_seq()
        return sub.model_copy(deep=True)

    async def get(self, subscription_id: UUID) -> WebhookSubscription:
        sub = self._db.subscriptions.get(subscription_id)
        if sub is None:
            raise NotFoundError("Webhook subscription not found")
        return sub.model_copy(deep=True)

    async def list_all(
        self, *, limit: int = 50, offset: int = 0
    ) -> Tuple[List[WebhookSubscription], int]:
        items = sorted(
            self._db.subscriptions.values(), key=lambda s: self._db.order[s.id], reverse=True
        )
        return [s.model_copy(deep=True) for s in items[offset : offset + limit]], len(items)

    async def list_active_for_event(self, event_type: str) -> List[WebhookSubscription]:
        return [
            s.model_copy(deep=True)
            for s in self._db.subscriptions.values()
            if s.is_active and event_type in s.events
        ]

    async def update(self, subscription_id: UUID, changes: dict[str, Any]) -> WebhookSubscription:
        current = await self.get(subscription_id)
        updated = current.model_copy(update={**changes, "updated_at": _now()})
        self._db.subscriptions[subscription_id] = updated
        return updated.model_copy(deep=True)

    async def set_secret(self, subscription_id: UUID, secret: str) -> WebhookSubscription:
        return await self.update(subscription_id, {"secret": secret})

    async def delete(self, subscription_id: UUID) -> None:
        if self._db.subscriptions.pop(subscription_id, None) is None:
            raise NotFoundError("Webhook subscription not found")
        for delivery_id, delivery in list(self._db.deliveries.items()):
            if delivery.subscription_id == subscription_id:
                del self._db.deliveries[delivery_id]


class FakeDeliveryLog:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self.begin_calls = 0

    def _set(self, delivery: WebhookDelivery, **changes: Any) -> WebhookDelivery:
        updated = delivery.model_copy(update={**changes, "updated_at": _now()})
        self._db.deliveries[delivery.id] = updated
        return updated.model_copy(deep=True)

    async def create(self, dto: DeliveryCreateDTO) -> WebhookDelivery:
        if dto.subscription_id not in self._db.subscriptions:
            raise NotFoundError("Webhook subscription not found")
        now = _now()
        delivery = WebhookDelivery(
            status=DeliveryStatus.PENDING,
            attempts=0,
            next_retry_at=now,
            created_at=now,
            updated_at=now,
            **dto.model_dump(),
        )
        self._db.deliveries[delivery.id] = delivery
        self._db.order[delivery.id] = self._db.next_seq()
        return delivery.model_copy(deep=True)

    async def get(self, delivery_id: UUID) -> WebhookDelivery:
        delivery = self._db.deliveries.get(delivery_id)
        if delivery is None:
            raise NotFoundError("Webhook delivery not found")
        return delivery.model_copy(deep=True)

    def _for_subscription(self, subscription_id: UUID) -> List[WebhookDelivery]:
        return sorted(
            (d for d in self._db.deliveries.values() if d.subscription_id == subscription_id),
            key=lambda d: self._db.order[d.id],
        )

    async def list_by_subscription(
        self,
        subscription_id: UUID,
        *,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookDelivery], int]:
        items = [
            d
            for d in reversed(self._for_subscription(subscription_id))
            if status is None or d.status == status
        ]
        return [d.model_copy(deep=True) for d in items[offset : offset + limit]], len(items)

    async def list_retryable(self, subscription_id: UUID) -> List[WebhookDelivery]:
        return [
            d.model_copy(deep=True)
            for d in self._for_subscription(subscription_id)
            if d.status in (DeliveryStatus.FAILED, DeliveryStatus.RETRYING)
        ]

    async def begin_attempt(
        self,
        delivery_id: UUID,
        *,
        expected_attempts: int,
        status: DeliveryStatus,
        lease_until: datetime,
        from_statuses: Collection[DeliveryStatus] = OUTSTANDING_STATUSES,
    ) -> WebhookDelivery | None:
        self.begin_calls += 1
        current = self._db.deliveries.get(delivery_id)
        if (
            current is None
            or current.attempts != expected_attempts
            or current.status not in from_statuses
        ):
            return None
        return self._set(
            current, attempts=current.attempts + 1, status=status, next_retry_at=lease_until
        )

    async def record_outcome(
        self,
        delivery_id: UUID,
        *,
        attempts: int,
        result: DeliveryResultDTO,
        next_retry_at: datetime | None,
    ) -> WebhookDelivery | None:
        current = self._db.deliveries.get(delivery_id)
        if current is None or current.attempts != attempts or current.status not in IN_FLIGHT:
            return None
        recorded = self._set(
            current,
            status=result.status,
            response_status=result.response_status,
            response_body=result.response_body,
            response_time_ms=result.response_time_ms,
            error=result.error,
            next_retry_at=next_retry_at,
        )
        sub = self._db.subscriptions.get(current.subscription_id)
        if sub is not None:
            now = _now()
            counters: dict[str, Any] = {
                "last_triggered_at": now,
                "total_sent": sub.total_sent + 1,
                "updated_at": now,
            }
            if result.success:
                counters.update(consecutive_failures=0, last_success_at=now)
            else:
                counters.update(
                    total_failed=sub.total_failed + 1,
                    consecutive_failures=sub.consecutive_failures + 1,
                    last_error_at=now,
                    last_error=result.error,
                )
            self._db.subscriptions[sub.id] = sub.model_copy(update=counters)
        return recorded

    async def abandon(self, delivery_id: UUID, *, error: str) -> WebhookDelivery | None:
        current = self._db.deliveries.get(delivery_id)
        if current is None or current.status not in IN_FLIGHT:
            return None
        return self._set(current, status=DeliveryStatus.FAILED, error=error, next_retry_at=None)

    async def abandon_outstanding(self, subscription_id: UUID, *, error: str) -> int:
        count = 0
        for delivery in self._for_subscription(subscription_id):
            if delivery.status in IN_FLIGHT:
                self._set(delivery, status=DeliveryStatus.FAILED, error=error, next_retry_at=None)
                count += 1
        return count

    async def claim_stale(
        self, *, due_before: datetime, lease_until: datetime, limit: int = 100
    ) -> List[WebhookDelivery]:
        due = sorted(
            (
                d
                for d in self._db.deliveries.values()
                if d.status in IN_FLIGHT and d.next_retry_at is not None and d.next_retry_at <= due_before
            ),
            key=lambda d: (d.next_retry_at, self._db.order[d.id]),
        )
        return [self._set(d, next_retry_at=lease_until) for d in due[:limit]]

    async def stats(self, subscription_id: UUID) -> DeliveryStats:
        items = self._for_subscription(subscription_id)
        times = [d.response_time_ms for d in items if d.response_time_ms is not None]
        return DeliveryStats(
            total=len(items),
            success=sum(1 for d in items if d.status == DeliveryStatus.SUCCESS),
            failed=sum(1 for d in items if d.status == DeliveryStatus.FAILED),
            pending=sum(1 for d in items if d.status in IN_FLIGHT),
            avg_response_time_ms=sum(times) / len(times) if times else 0.0,
        )
