"""Event catalog and the inbound domain event contract."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from webhook_service.domain.enums import EventSource

TEST_EVENT = "test"


class EventType(BaseModel):
    value: str
    label: str
    category: str


EVENT_CATALOG: tuple[EventType, ...] = (
    EventType(value="deal.created", label="Deal created", category="Deals"),
    EventType(value="deal.updated", label="Deal updated", category="Deals"),
    EventType(value="deal.stage_changed", label="Deal stage changed", category="Deals"),
    EventType(value="deal.won", label="Deal won", category="Deals"),
    EventType(value="deal.lost", label="Deal lost", category="Deals"),
    EventType(value="deal.deleted", label="Deal deleted", category="Deals"),
    EventType(value="contact.created", label="Contact created", category="Contacts"),
    EventType(value="contact.updated", label="Contact updated", category="Contacts"),
    EventType(value="contact.deleted", label="Contact deleted", category="Contacts"),
    EventType(value="client.created", label="Client created", category="Clients"),
    EventType(value="client.updated", label="Client updated", category="Clients"),
    EventType(value="client.deleted", label="Client deleted", category="Clients"),
    EventType(value="activity.created", label="Activity created", category="Activities"),
    EventType(value="activity.completed", label="Activity completed", category="Activities"),
    EventType(value="quote.created", label="Quote created", category="Quotes"),
    EventType(value="quote.sent", label="Quote sent", category="Quotes"),
    EventType(value="quote.accepted", label="Quote accepted", category="Quotes"),
    EventType(value="quote.rejected", label="Quote rejected", category="Quotes"),
)

EVENT_TYPES: frozenset[str] = frozenset(e.value for e in EVENT_CATALOG)


def is_known_event(event_type: str) -> bool:
    return event_type in EVENT_TYPES


class TriggeredBy(BaseModel):
    user_id: str
    user_name: str | None = None


class DomainEvent(BaseModel):
    """An occurrence raised by the rest of the application.

    ``attributes`` is the flat snapshot of the entity after the change. The
    matcher reads the filterable keys from it (``owner_id``, ``pipeline_id``,
    ``stage_id``, ``value``) and ignores everything else; the whole map is sent
    to receivers as ``data.current``.
    """

    model_config = ConfigDict(extra="forbid")

    type: str = Field(min_length=1)
    attributes: dict[str, Any] = Field(default_factory=dict)
    previous: dict[str, Any] | None = None
    changes: list[str] | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    entity_name: str | None = None
    triggered_by: TriggeredBy | None = None
    source: EventSource = EventSource.WEB
