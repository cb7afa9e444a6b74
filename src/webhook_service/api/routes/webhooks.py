"""Webhook subscription endpoints."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from aiohttp import web
from pydantic import BaseModel, ConfigDict, ValidationError

from webhook_service.api.utils import page_body, page_params, parse_uuid, read_json, validation_error
from webhook_service.core.exceptions import (
    ConfigurationError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from webhook_service.domain.dto import WebhookCreateDTO, WebhookUpdateDTO
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.events import EVENT_CATALOG
from webhook_service.domain.models import WebhookSubscription
from webhook_service.services.dependencies import get_webhook_service, require_current_user
from webhook_service.settings import settings

routes = web.RouteTableDef()


class RetryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_id: str | None = None


def mask_secret(secret: str) -> str:
    return "*" * 8 + secret[-4:]


def subscription_payload(sub: WebhookSubscription, *, reveal_secret: bool = False) -> dict[str, Any]:
    payload = sub.model_dump(mode="json")
    if not reveal_secret:
        payload["secret"] = mask_secret(sub.secret)
    return payload


@contextmanager
def service_errors() -> Iterator[None]:
    """Translate service exceptions into HTTP errors."""
    try:
        yield
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except InvalidStatusTransitionError as exc:
        raise web.HTTPConflict(text=str(exc)) from exc
    except ConfigurationError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc


@routes.get("/api/v1/webhooks/events")
async def list_event_types(request: web.Request):
    await require_current_user(request)
    return web.json_response(
        {
            "events": [
                {"value": e.value, "label": e.label, "category": e.category}
                for e in EVENT_CATALOG
            ]
        }
    )


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    await require_current_user(request)
    service = await get_webhook_service(request)
    page = page_params(request)
    items, total = await service.list_subscriptions(limit=page.limit, offset=page.offset)
    return web.json_response(
        page_body("webhooks", [subscription_payload(item) for item in items], total=total, page=page)
    )


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    user = await require_current_user(request)
    body = await read_json(request)
    try:
        dto = WebhookCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise validation_error(exc) from exc
    service = await get_webhook_service(request)
    sub = await service.create_subscription(dto, created_by=user.user_id)
    return web.json_response(subscription_payload(sub, reveal_secret=True), status=201)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        sub = await service.get_subscription(webhook_id)
    return web.json_response(subscription_payload(sub))


@routes.put("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request)
    try:
        dto = WebhookUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise validation_error(exc) from exc
    service = await get_webhook_service(request)
    with service_errors():
        sub = await service.update_subscription(webhook_id, dto)
    return web.json_response(subscription_payload(sub))


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        await service.delete_subscription(webhook_id)
    return web.Response(status=204)


@routes.post("/api/v1/webhooks/{webhook_id}/activate")
async def activate_webhook(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        sub = await service.activate(webhook_id)
    return web.json_response(subscription_payload(sub))


@routes.post("/api/v1/webhooks/{webhook_id}/deactivate")
async def deactivate_webhook(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        sub = await service.deactivate(webhook_id)
    return web.json_response(subscription_payload(sub))


@routes.post("/api/v1/webhooks/{webhook_id}/regenerate-secret")
async def regenerate_secret(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        sub = await service.regenerate_secret(webhook_id)
    return web.json_response({"id": str(sub.id), "secret": sub.secret})


@routes.post("/api/v1/webhooks/{webhook_id}/test")
async def test_webhook(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        outcome = await service.test_subscription(webhook_id)
    return web.json_response(outcome.model_dump(mode="json"))


@routes.get("/api/v1/webhooks/{webhook_id}/logs")
async def list_webhook_logs(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    page = page_params(request, max_limit=settings.webhook_logs_max_limit)
    raw_status = request.rel_url.query.get("status")
    status: DeliveryStatus | None = None
    if raw_status:
        try:
            status = DeliveryStatus(raw_status)
        except ValueError as exc:
            raise web.HTTPBadRequest(text="Invalid status") from exc
    service = await get_webhook_service(request)
    with service_errors():
        items, total = await service.list_logs(
            webhook_id, status=status, limit=page.limit, offset=page.offset
        )
    return web.json_response(
        page_body("logs", [item.model_dump(mode="json") for item in items], total=total, page=page)
    )


@routes.get("/api/v1/webhooks/{webhook_id}/stats")
async def webhook_stats(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        stats = await service.get_stats(webhook_id)
    return web.json_response(stats.model_dump(mode="json"))


@routes.post("/api/v1/webhooks/{webhook_id}/retry")
async def retry_webhook(request: web.Request):
    await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request) if request.can_read_body else {}
    try:
        dto = RetryRequest.model_validate(body)
    except ValidationError as exc:
        raise validation_error(exc) from exc
    service = await get_webhook_service(request)
    with service_errors():
        if dto.log_id:
            log_id = parse_uuid(dto.log_id, "log_id")
            summary = await service.retry_delivery(webhook_id, log_id)
        else:
            summary = await service.retry_all_failed(webhook_id)
    return web.json_response(summary.model_dump())

