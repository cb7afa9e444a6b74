"""Domain services exports."""

from webhook_service.services.dispatcher import WebhookDispatcher
from webhook_service.services.retry import RetryCoordinator
from webhook_service.services.webhooks import WebhookService

__all__ = [
    "RetryCoordinator",
    "WebhookDispatcher",
    "WebhookService",
]
