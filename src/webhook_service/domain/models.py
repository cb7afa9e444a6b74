"""Webhook domain primitives."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from webhook_service.domain.enums import DeliveryStatus


class WebhookFilters(BaseModel):
    """Optional predicate narrowing which events of a subscribed type are delivered."""

    owner_id: str | None = None
    pipeline_id: str | None = None
    stage_id: str | None = None
    min_value: float | None = None
    max_value: float | None = None

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())


class WebhookSubscription(BaseModel):
    id: UUID
    name: str
    description: str | None = None
    url: str
    secret: str
    headers: dict[str, str] = Field(default_factory=dict)
    events: list[str] = Field(default_factory=list)
    filters: WebhookFilters | None = None
    is_active: bool = True
    max_retries: int = 3
    timeout_ms: int = 10_000

    last_triggered_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    total_sent: int = 0
    total_failed: int = 0
    consecutive_failures: int = 0

    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> int | None:
        if self.total_sent <= 0:
            return None
        return round((self.total_sent - self.total_failed) / self.total_sent * 100)


class WebhookDelivery(BaseModel):
    id: UUID
    subscription_id: UUID
    event: str
    entity_type: str | None = None
    entity_id: str | None = None
    entity_name: str | None = None
    status: DeliveryStatus
    attempts: int = 0
    request_url: str
    request_body: str
    response_status: int | None = None
    response_body: str | None = None
    response_time_ms: int | None = None
    error: str | None = None
    is_test: bool = False
    next_retry_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class DeliveryOutcome(BaseModel):
    """Result of one dispatch, as reported back to callers."""

    delivery_id: UUID
    success: bool
    status: DeliveryStatus
    attempts: int
    response_status: int | None = None
    response_time_ms: int | None = None
    error: str | None = None


class RetrySummary(BaseModel):
    retried: int = 0
    succeeded: int = 0
    failed: int = 0


class DeliveryStats(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    pending: int = 0
    avg_response_time_ms: float = 0.0


class SubscriptionStats(BaseModel):
    """Health counters of a subscription plus aggregates over its delivery log."""

    webhook_id: UUID
    total_sent: int
    total_failed: int
    success_rate: int | None = None
    consecutive_failures: int
    last_triggered_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    deliveries: DeliveryStats
