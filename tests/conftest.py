from __future__ import annotations

import asyncio
import collections
from dataclasses import dataclass, field

import pytest
from aiohttp import web

from webhook_service.main import create_app
from webhook_service.services.backoff import RetryPolicy
from webhook_service.services.dispatcher import WebhookDispatcher
from webhook_service.services.retry import RetryCoordinator
from webhook_service.services.webhooks import WebhookService

from tests.fakes import FakeDeliveryLog, FakeSubscriptionStore, InMemoryDatabase

FAST_POLICY = RetryPolicy(base_delay_seconds=0.01, max_delay_seconds=0.05)


@dataclass
class ReceivedRequest:
    headers: dict[str, str]
    body: bytes


@dataclass
class Receiver:
    """Scripted webhook endpoint: answers with queued statuses, then ``default_status``."""

    url: str = ""
    default_status: int = 200
    response_text: str = "ok"
    delay: float = 0.0
    statuses: collections.deque = field(default_factory=collections.deque)
    requests: list[ReceivedRequest] = field(default_factory=list)

    def respond_with(self, *statuses: int) -> None:
        self.statuses.extend(statuses)

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.read()
        self.requests.append(ReceivedRequest(headers=dict(request.headers), body=body))
        if self.delay:
            await asyncio.sleep(self.delay)
        status = self.statuses.popleft() if self.statuses else self.default_status
        return web.Response(status=status, text=self.response_text)


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def subscriptions(db):
    return FakeSubscriptionStore(db)


@pytest.fixture
def deliveries(db):
    return FakeDeliveryLog(db)


@pytest.fixture
async def receiver(aiohttp_server):
    recv = Receiver()
    app = web.Application()
    app.router.add_post("/hook", recv.handle)
    server = await aiohttp_server(app)
    recv.url = str(server.make_url("/hook"))
    return recv


@pytest.fixture
async def dispatcher(deliveries):
    disp = WebhookDispatcher(deliveries, policy=FAST_POLICY, lease_grace_seconds=1.0)
    yield disp
    await disp.close()


@pytest.fixture
async def coordinator(subscriptions, deliveries, dispatcher):
    coord = RetryCoordinator(
        subscriptions,
        deliveries,
        dispatcher,
        max_concurrency=4,
        stale_grace_seconds=0.0,
    )
    yield coord
    await coord.close()


@pytest.fixture
def service(subscriptions, deliveries, coordinator):
    return WebhookService(subscriptions, deliveries, coordinator)


@pytest.fixture
async def service_client(aiohttp_client, subscriptions, deliveries):
    app = create_app(subscriptions=subscriptions, deliveries=deliveries)
    return await aiohttp_client(app)
