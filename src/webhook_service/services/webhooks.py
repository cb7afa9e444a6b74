"""Webhook domain service (subscriptions, event fan-out, delivery log)."""
from __future__ import annotations

import asyncio
from typing import Any, List
from uuid import UUID, uuid4

import structlog

from webhook_service.core.exceptions import ConfigurationError, NotFoundError
from webhook_service.domain.dto import DeliveryCreateDTO, WebhookCreateDTO, WebhookUpdateDTO
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.events import DomainEvent
from webhook_service.domain.models import (
    DeliveryOutcome,
    RetrySummary,
    SubscriptionStats,
    WebhookDelivery,
    WebhookSubscription,
)
from webhook_service.repositories.protocols import DeliveryLog, SubscriptionStore
from webhook_service.services.matcher import match
from webhook_service.services.payloads import build_payload, sample_event, serialize_payload
from webhook_service.services.retry import DISABLED_ERROR, RetryCoordinator
from webhook_service.services.signer import generate_secret

logger = structlog.get_logger(__name__)


class WebhookService:
    def __init__(
        self,
        subscription_repository: SubscriptionStore,
        delivery_repository: DeliveryLog,
        coordinator: RetryCoordinator,
    ):
        self._subscriptions = subscription_repository
        self._deliveries = delivery_repository
        self._coordinator = coordinator

    # --- subscriptions ------------------------------------------------------

    async def create_subscription(
        self, dto: WebhookCreateDTO, *, created_by: UUID | None = None
    ) -> WebhookSubscription:
        subscription = await self._subscriptions.create(
            dto, secret=dto.secret or generate_secret(), created_by=created_by
        )
        logger.info(
            "webhook_created",
            subscription_id=str(subscription.id),
            events=subscription.events,
            is_active=subscription.is_active,
        )
        return subscription

    async def get_subscription(self, subscription_id: UUID) -> WebhookSubscription:
        return await self._subscriptions.get(subscription_id)

    async def list_subscriptions(
        self, *, limit: int = 50, offset: int = 0
    ) -> tuple[List[WebhookSubscription], int]:
        return await self._subscriptions.list_all(limit=limit, offset=offset)

    async def update_subscription(
        self, subscription_id: UUID, dto: WebhookUpdateDTO
    ) -> WebhookSubscription:
        current = await self._subscriptions.get(subscription_id)
        changes = dto.changes()
        if not changes:
            return current
        is_active = changes.get("is_active", current.is_active)
        events = changes.get("events", current.events)
        if is_active and not events:
            raise ConfigurationError("events must be a non-empty list for an active webhook")
        updated = await self._subscriptions.update(subscription_id, changes)
        if current.is_active and not updated.is_active:
            await self._stop_outstanding(subscription_id)
        logger.info("webhook_updated", subscription_id=str(subscription_id), fields=sorted(changes))
        return updated

    async def activate(self, subscription_id: UUID) -> WebhookSubscription:
        current = await self._subscriptions.get(subscription_id)
        if not current.events:
            raise ConfigurationError("Cannot activate a webhook without events")
        if current.is_active:
            return current
        updated = await self._subscriptions.update(subscription_id, {"is_active": True})
        logger.info("webhook_activated", subscription_id=str(subscription_id))
        return updated

    async def deactivate(self, subscription_id: UUID) -> WebhookSubscription:
        updated = await self._subscriptions.update(subscription_id, {"is_active": False})
        await self._stop_outstanding(subscription_id)
        logger.info("webhook_deactivated", subscription_id=str(subscription_id))
        return updated

    async def regenerate_secret(self, subscription_id: UUID) -> WebhookSubscription:
        updated = await self._subscriptions.set_secret(subscription_id, generate_secret())
        logger.warning("webhook_secret_regenerated", subscription_id=str(subscription_id))
        return updated

    async def delete_subscription(self, subscription_id: UUID) -> None:
        self._coordinator.cancel_subscription(subscription_id)
        await self._subscriptions.delete(subscription_id)
        logger.info("webhook_deleted", subscription_id=str(subscription_id))

    async def _stop_outstanding(self, subscription_id: UUID) -> None:
        cancelled = self._coordinator.cancel_subscription(subscription_id)
        abandoned = await self._deliveries.abandon_outstanding(subscription_id, error=DISABLED_ERROR)
        if cancelled or abandoned:
            logger.info(
                "webhook_outstanding_stopped",
                subscription_id=str(subscription_id),
                cancelled=cancelled,
                abandoned=abandoned,
            )

    # --- events -------------------------------------------------------------

    async def emit(self, event: DomainEvent) -> List[WebhookDelivery]:
        """Fan an event out to every matching subscription.

        Never raises: a failure for one subscription is logged and the others
        still get their delivery.
        """
        try:
            candidates = await self._subscriptions.list_active_for_event(event.type)
        except Exception:
            logger.exception("webhook_emit_failed", event_type=event.type)
            return []

        deliveries: List[WebhookDelivery] = []
        for subscription in match(event, candidates):
            try:
                delivery = await self._enqueue(subscription, event)
            except Exception:
                logger.exception(
                    "webhook_enqueue_failed", event_type=event.type, subscription_id=str(subscription.id)
                )
                continue
            self._coordinator.submit(delivery)
            deliveries.append(delivery)
        logger.info(
            "webhook_event_emitted",
            event_type=event.type,
            entity_id=event.entity_id,
            matched=len(deliveries),
        )
        return deliveries

    def emit_nowait(self, event: DomainEvent) -> asyncio.Task[Any]:
        """Fire-and-forget variant for callers on a request path."""
        return self._coordinator.spawn(self.emit(event), name=f"webhook-emit-{event.type}")

    async def _enqueue(
        self, subscription: WebhookSubscription, event: DomainEvent, *, is_test: bool = False
    ) -> WebhookDelivery:
        delivery_id = uuid4()
        body = serialize_payload(build_payload(subscription, event, delivery_id))
        return await self._deliveries.create(
            DeliveryCreateDTO(
                id=delivery_id,
                subscription_id=subscription.id,
                event=event.type,
                request_url=subscription.url,
                request_body=body,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                entity_name=event.entity_name,
                is_test=is_test,
            )
        )

    async def test_subscription(self, subscription_id: UUID) -> DeliveryOutcome:
        """Send one synthetic event right away, bypassing filters and ``is_active``."""
        subscription = await self._subscriptions.get(subscription_id)
        delivery = await self._enqueue(subscription, sample_event(subscription), is_test=True)
        outcome = await self._coordinator.dispatch_once(delivery.id)
        logger.info(
            "webhook_test_sent",
            subscription_id=str(subscription_id),
            success=outcome.success,
            response_status=outcome.response_status,
        )
        return outcome

    # --- delivery log -------------------------------------------------------

    async def list_logs(
        self,
        subscription_id: UUID,
        *,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[List[WebhookDelivery], int]:
        await self._subscriptions.get(subscription_id)
        return await self._deliveries.list_by_subscription(
            subscription_id, status=status, limit=limit, offset=offset
        )

    async def retry_delivery(self, subscription_id: UUID, delivery_id: UUID) -> RetrySummary:
        delivery = await self._deliveries.get(delivery_id)
        if delivery.subscription_id != subscription_id:
            raise NotFoundError("Webhook delivery not found")
        outcome = await self._coordinator.retry_now(delivery_id)
        return RetrySummary(
            retried=1,
            succeeded=1 if outcome.success else 0,
            failed=0 if outcome.success else 1,
        )

    async def retry_all_failed(self, subscription_id: UUID) -> RetrySummary:
        return await self._coordinator.retry_all_failed(subscription_id)

    async def get_stats(self, subscription_id: UUID) -> SubscriptionStats:
        subscription = await self._subscriptions.get(subscription_id)
        deliveries = await self._deliveries.stats(subscription_id)
        return SubscriptionStats(
            webhook_id=subscription.id,
            total_sent=subscription.total_sent,
            total_failed=subscription.total_failed,
            success_rate=subscription.success_rate,
            consecutive_failures=subscription.consecutive_failures,
            last_triggered_at=subscription.last_triggered_at,
            last_success_at=subscription.last_success_at,
            last_error_at=subscription.last_error_at,
            last_error=subscription.last_error,
            deliveries=deliveries,
        )
