"""Domain event ingestion."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import read_json, validation_error
from webhook_service.domain.events import DomainEvent
from webhook_service.services.dependencies import get_webhook_service, require_current_user

routes = web.RouteTableDef()


@routes.post("/api/v1/events")
async def ingest_event(request: web.Request):
    """Record deliveries for every matching subscription; sending happens in the background."""
    await require_current_user(request)
    body = await read_json(request)
    try:
        event = DomainEvent.model_validate(body)
    except ValidationError as exc:
        raise validation_error(exc) from exc
    service = await get_webhook_service(request)
    deliveries = await service.emit(event)
    return web.json_response(
        {"event": event.type, "deliveries": [str(d.id) for d in deliveries]},
        status=202,
    )
