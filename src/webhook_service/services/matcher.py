"""Event matcher: which subscriptions should receive an event."""
from __future__ import annotations

from numbers import Real
from typing import Any, Iterable, Mapping

from webhook_service.domain.events import DomainEvent
from webhook_service.domain.models import WebhookFilters, WebhookSubscription

_ID_FILTERS = ("owner_id", "pipeline_id", "stage_id")
_MISSING = object()


def _numeric(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    return float(value)


def passes_filters(filters: WebhookFilters | None, attributes: Mapping[str, Any]) -> bool:
    """Every filter the subscription defines must be satisfied; missing attributes fail."""
    if filters is None:
        return True

    for name in _ID_FILTERS:
        expected = getattr(filters, name)
        if expected is None:
            continue
        actual = attributes.get(name, _MISSING)
        if actual is _MISSING or actual is None or str(actual) != str(expected):
            return False

    if filters.min_value is None and filters.max_value is None:
        return True

    value = _numeric(attributes.get("value"))
    if value is None:
        return False
    if filters.min_value is not None and value < filters.min_value:
        return False
    if filters.max_value is not None and value > filters.max_value:
        return False
    return True


def matches(subscription: WebhookSubscription, event: DomainEvent) -> bool:
    return (
        subscription.is_active
        and event.type in subscription.events
        and passes_filters(subscription.filters, event.attributes)
    )


def match(event: DomainEvent, subscriptions: Iterable[WebhookSubscription]) -> list[WebhookSubscription]:
    return [sub for sub in subscriptions if matches(sub, event)]
