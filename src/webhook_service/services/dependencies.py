"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from aiohttp import web

from webhook_service.services.webhooks import WebhookService

SUBSCRIPTION_STORE_KEY = "webhook_subscription_store"
DELIVERY_LOG_KEY = "webhook_delivery_log"
DISPATCHER_KEY = "webhook_dispatcher"
COORDINATOR_KEY = "webhook_retry_coordinator"

_WEBHOOK_SERVICE_KEY = "webhook_service"

USER_ID_HEADER = "X-User-Id"


@dataclass
class UserContext:
    user_id: UUID


async def require_current_user(request: web.Request) -> UserContext:
    """Operator identity forwarded by the API gateway."""
    user_header = request.headers.get(USER_ID_HEADER)
    if user_header is None:
        raise web.HTTPUnauthorized(reason=f"Header {USER_ID_HEADER} is required")
    try:
        user_id = UUID(user_header)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {USER_ID_HEADER}") from exc
    return UserContext(user_id=user_id)


async def get_webhook_service(request: web.Request) -> WebhookService:
    service = request.get(_WEBHOOK_SERVICE_KEY)
    if service is None:
        app = request.app
        service = WebhookService(
            app[SUBSCRIPTION_STORE_KEY],
            app[DELIVERY_LOG_KEY],
            app[COORDINATOR_KEY],
        )
        request[_WEBHOOK_SERVICE_KEY] = service
    return service
