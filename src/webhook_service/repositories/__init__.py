"""Repository package exports."""

from webhook_service.repositories.deliveries import WebhookDeliveryRepository
from webhook_service.repositories.protocols import DeliveryLog, SubscriptionStore
from webhook_service.repositories.subscriptions import WebhookSubscriptionRepository

__all__ = [
    "DeliveryLog",
    "SubscriptionStore",
    "WebhookDeliveryRepository",
    "WebhookSubscriptionRepository",
]
