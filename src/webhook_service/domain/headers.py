"""Outbound delivery header names."""
from __future__ import annotations

CONTENT_TYPE_HEADER = "Content-Type"
USER_AGENT_HEADER = "User-Agent"
WEBHOOK_ID_HEADER = "X-Webhook-Id"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
SIGNATURE_HEADER = "X-Webhook-Signature"

# Set by the dispatcher on every request; subscription static headers never override them.
RESERVED_HEADERS: frozenset[str] = frozenset(
    name.lower()
    for name in (
        CONTENT_TYPE_HEADER,
        USER_AGENT_HEADER,
        WEBHOOK_ID_HEADER,
        EVENT_HEADER,
        DELIVERY_ID_HEADER,
        TIMESTAMP_HEADER,
        SIGNATURE_HEADER,
    )
)


def is_reserved_header(name: str) -> bool:
    return name.strip().lower() in RESERVED_HEADERS
