"""Outgoing payload construction."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from webhook_service.domain.events import TEST_EVENT, DomainEvent, TriggeredBy
from webhook_service.domain.models import WebhookSubscription


def build_payload(
    subscription: WebhookSubscription,
    event: DomainEvent,
    delivery_id: UUID,
    *,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    occurred_at = (timestamp or datetime.now(timezone.utc)).isoformat()
    return {
        "event": event.type,
        "timestamp": occurred_at,
        "delivery_id": str(delivery_id),
        "webhook_id": str(subscription.id),
        "data": {
            "current": event.attributes,
            "previous": event.previous,
            "changes": event.changes,
        },
        "meta": {
            "triggered_by": event.triggered_by.model_dump() if event.triggered_by else None,
            "source": event.source.value,
            "entity": {
                "type": event.entity_type,
                "id": event.entity_id,
                "name": event.entity_name,
            },
        },
    }


def serialize_payload(payload: dict[str, Any]) -> str:
    """Canonical body text; the exact bytes signed and stored for replay."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def sample_event(subscription: WebhookSubscription) -> DomainEvent:
    """Representative event used by test deliveries."""
    event_type = subscription.events[0] if subscription.events else TEST_EVENT
    entity_type = event_type.split(".", 1)[0] if event_type != TEST_EVENT else "deal"
    now = datetime.now(timezone.utc).isoformat()
    return DomainEvent(
        type=event_type,
        attributes={
            "id": "000000000000000000000000",
            "title": f"Test {entity_type}",
            "value": 50000,
            "status": "open",
            "created_at": now,
        },
        entity_type=entity_type,
        entity_id="000000000000000000000000",
        entity_name=f"Test {entity_type}",
        triggered_by=TriggeredBy(user_id="test", user_name="Test user"),
    )
