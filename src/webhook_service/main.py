"""aiohttp application entrypoint."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from aiohttp import ClientSession, web

from webhook_service.aiohttp_app import (
    add_cors_to_routes,
    add_health_probe,
    add_healthcheck,
    create_base_app,
)
from webhook_service.api.router import setup_routes
from webhook_service.db.migrations import create_migration_runner
from webhook_service.db.pool import close_pool, get_pool
from webhook_service.logging_config import configure_logging
from webhook_service.otel import setup_otel, shutdown_otel
from webhook_service.repositories import WebhookDeliveryRepository, WebhookSubscriptionRepository
from webhook_service.repositories.protocols import DeliveryLog, SubscriptionStore
from webhook_service.services.dependencies import (
    COORDINATOR_KEY,
    DELIVERY_LOG_KEY,
    DISPATCHER_KEY,
    SUBSCRIPTION_STORE_KEY,
)
from webhook_service.services.dispatcher import WebhookDispatcher
from webhook_service.services.retry import RetryCoordinator
from webhook_service.settings import settings
from webhook_service.workers import build_worker

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_WORKER_KEY = "webhook_background_worker"

MIGRATION_PATHS = [
    PROJECT_ROOT / "migrations",
    Path("/app/migrations"),
]


async def start_delivery(app: web.Application) -> None:
    """Wire stores, dispatcher, coordinator and the recovery worker."""
    if app.get(SUBSCRIPTION_STORE_KEY) is None:
        pool = await get_pool()
        app[SUBSCRIPTION_STORE_KEY] = WebhookSubscriptionRepository(pool)
        app[DELIVERY_LOG_KEY] = WebhookDeliveryRepository(pool)

    dispatcher = WebhookDispatcher(app[DELIVERY_LOG_KEY], ClientSession())
    coordinator = RetryCoordinator(app[SUBSCRIPTION_STORE_KEY], app[DELIVERY_LOG_KEY], dispatcher)
    worker = build_worker(coordinator)
    app[DISPATCHER_KEY] = dispatcher
    app[COORDINATOR_KEY] = coordinator
    app[_WORKER_KEY] = worker
    await worker.start(app)


async def stop_delivery(app: web.Application) -> None:
    worker = app.get(_WORKER_KEY)
    if worker is not None:
        await worker.stop(app)
    coordinator: RetryCoordinator | None = app.get(COORDINATOR_KEY)
    if coordinator is not None:
        await coordinator.close()
    dispatcher: WebhookDispatcher | None = app.get(DISPATCHER_KEY)
    if dispatcher is not None:
        await dispatcher.close()


def delivery_probe(app: web.Application) -> dict[str, Any]:
    coordinator: RetryCoordinator | None = app.get(COORDINATOR_KEY)
    if coordinator is None:
        return {"delivery": "stopped"}
    return {"delivery": coordinator.snapshot()}


def create_app(
    *,
    subscriptions: SubscriptionStore | None = None,
    deliveries: DeliveryLog | None = None,
) -> web.Application:
    """Build the application.

    Without explicit stores the PostgreSQL repositories are used and pending
    migrations are applied on startup.
    """
    app, cors = create_base_app(settings)
    setup_otel(app)

    add_healthcheck(app, settings)
    add_health_probe(app, delivery_probe)
    setup_routes(app)

    if subscriptions is not None and deliveries is not None:
        app[SUBSCRIPTION_STORE_KEY] = subscriptions
        app[DELIVERY_LOG_KEY] = deliveries
    else:
        app.on_startup.append(create_migration_runner(MIGRATION_PATHS))
        app.on_cleanup.append(close_pool)

    app.on_startup.append(start_delivery)
    app.on_cleanup.insert(0, stop_delivery)
    app.on_cleanup.append(shutdown_otel)

    add_cors_to_routes(app, cors)
    return app


def main() -> None:
    configure_logging()
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
