from __future__ import annotations

import asyncio
import inspect
import uuid
from typing import Any, Awaitable, Callable

from webhook_service.domain.dto import WebhookCreateDTO

DEFAULT_EVENTS = ["deal.created"]


def make_headers(user_id: uuid.UUID | None = None) -> dict[str, str]:
    return {"X-User-Id": str(user_id or uuid.uuid4())}


def webhook_dto(url: str, **overrides: Any) -> WebhookCreateDTO:
    data: dict[str, Any] = {
        "name": "CRM sync",
        "url": url,
        "events": list(DEFAULT_EVENTS),
        "max_retries": 3,
        "timeout_ms": 2000,
    }
    data.update(overrides)
    return WebhookCreateDTO.model_validate(data)


async def wait_until(
    predicate: Callable[[], Any | Awaitable[Any]],
    *,
    timeout: float = 3.0,
    interval: float = 0.01,
) -> None:
    """Poll *predicate* (sync or async) until it returns something truthy."""

    async def poll() -> None:
        while True:
            result = predicate()
            if inspect.isawaitable(result):
                result = await result
            if result:
                return
            await asyncio.sleep(interval)

    await asyncio.wait_for(poll(), timeout=timeout)
