"""Storage contracts the services depend on.

The asyncpg repositories in this package implement them; any durable store
offering the same operations can be swapped in.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Collection, List, Protocol, Tuple
from uuid import UUID

from webhook_service.domain.dto import DeliveryCreateDTO, DeliveryResultDTO, WebhookCreateDTO
from webhook_service.domain.enums import OUTSTANDING_STATUSES, DeliveryStatus
from webhook_service.domain.models import DeliveryStats, WebhookDelivery, WebhookSubscription


class SubscriptionStore(Protocol):
    async def create(
        self, dto: WebhookCreateDTO, *, secret: str, created_by: UUID | None
    ) -> WebhookSubscription: ...

    async def get(self, subscription_id: UUID) -> WebhookSubscription: ...

    async def list_all(
        self, *, limit: int = 50, offset: int = 0
    ) -> Tuple[List[WebhookSubscription], int]: ...

    async def list_active_for_event(self, event_type: str) -> List[WebhookSubscription]: ...

    async def update(self, subscription_id: UUID, changes: dict[str, Any]) -> WebhookSubscription: ...

    async def set_secret(self, subscription_id: UUID, secret: str) -> WebhookSubscription: ...

    async def delete(self, subscription_id: UUID) -> None: ...


class DeliveryLog(Protocol):
    async def create(self, dto: DeliveryCreateDTO) -> WebhookDelivery: ...

    async def get(self, delivery_id: UUID) -> WebhookDelivery: ...

    async def list_by_subscription(
        self,
        subscription_id: UUID,
        *,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookDelivery], int]: ...

    async def list_retryable(self, subscription_id: UUID) -> List[WebhookDelivery]: ...

    async def begin_attempt(
        self,
        delivery_id: UUID,
        *,
        expected_attempts: int,
        status: DeliveryStatus,
        lease_until: datetime,
        from_statuses: Collection[DeliveryStatus] = OUTSTANDING_STATUSES,
    ) -> WebhookDelivery | None: ...

    async def record_outcome(
        self,
        delivery_id: UUID,
        *,
        attempts: int,
        result: DeliveryResultDTO,
        next_retry_at: datetime | None,
    ) -> WebhookDelivery | None: ...

    async def abandon(self, delivery_id: UUID, *, error: str) -> WebhookDelivery | None: ...

    async def abandon_outstanding(self, subscription_id: UUID, *, error: str) -> int: ...

    async def claim_stale(
        self, *, due_before: datetime, lease_until: datetime, limit: int = 100
    ) -> List[WebhookDelivery]: ...

    async def stats(self, subscription_id: UUID) -> DeliveryStats: ...
