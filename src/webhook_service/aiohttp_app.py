"""Application scaffolding: middlewares, CORS, health and body parsing."""
from __future__ import annotations

from typing import Any, Callable

from aiohttp import web
from aiohttp_cors import CorsConfig, ResourceOptions, setup as cors_setup

from webhook_service.middleware.trace import (
    REQUEST_ID_HEADER,
    TRACE_ID_HEADER,
    USER_ID_HEADER,
    create_trace_middleware,
)
from webhook_service.settings import Settings

HealthProbe = Callable[[web.Application], dict[str, Any]]

_HEALTH_PROBES_KEY = "health_probes"

# request bodies are small JSON documents
CLIENT_MAX_SIZE = 1024 ** 2


def create_base_app(settings: Settings) -> tuple[web.Application, CorsConfig]:
    app = web.Application(
        middlewares=[create_trace_middleware(settings.app_name)],
        client_max_size=CLIENT_MAX_SIZE,
    )
    app[_HEALTH_PROBES_KEY] = []
    options = ResourceOptions(
        allow_credentials=True,
        expose_headers=(TRACE_ID_HEADER, REQUEST_ID_HEADER),
        allow_headers=("Content-Type", "Authorization", TRACE_ID_HEADER, REQUEST_ID_HEADER, USER_ID_HEADER),
        allow_methods=("GET", "POST", "PUT", "DELETE", "OPTIONS"),
    )
    cors = cors_setup(app, defaults={origin: options for origin in settings.cors_allowed_origins})
    return app, cors


def add_health_probe(app: web.Application, probe: HealthProbe) -> None:
    """Merge *probe(app)* into the ``/health`` body."""
    app[_HEALTH_PROBES_KEY].append(probe)


def add_healthcheck(app: web.Application, settings: Settings) -> None:
    async def healthcheck(request: web.Request) -> web.Response:
        body: dict[str, Any] = {"status": "ok", "service": settings.app_name, "env": settings.env}
        for probe in request.app[_HEALTH_PROBES_KEY]:
            body.update(probe(request.app))
        return web.json_response(body)

    app.router.add_get("/health", healthcheck)


def add_cors_to_routes(app: web.Application, cors: CorsConfig) -> None:
    for route in list(app.router.routes()):
        cors.add(route)


async def read_json(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data
