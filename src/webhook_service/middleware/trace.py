"""Per-request correlation ids bound into the structlog context."""
from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Mapping
from uuid import UUID, uuid4

import structlog
from aiohttp import web

TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"
USER_ID_HEADER = "X-User-Id"

logger = structlog.get_logger(__name__)

SENSITIVE_HEADERS = frozenset(
    {"authorization", "cookie", "set-cookie", "x-api-key", "x-webhook-signature"}
)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _uuid_or_new(value: str | None) -> str:
    if value:
        try:
            return str(UUID(value))
        except ValueError:
            pass
    return str(uuid4())


def safe_headers(headers: Mapping[str, str]) -> dict[str, Any]:
    return {name: value for name, value in headers.items() if name.lower() not in SENSITIVE_HEADERS}


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


def create_trace_middleware(service_name: str):
    @web.middleware
    async def trace_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        started = time.monotonic()
        ids = {
            TRACE_ID_HEADER: _uuid_or_new(request.headers.get(TRACE_ID_HEADER)),
            REQUEST_ID_HEADER: _uuid_or_new(request.headers.get(REQUEST_ID_HEADER)),
        }
        request["trace_id"] = ids[TRACE_ID_HEADER]
        request["request_id"] = ids[REQUEST_ID_HEADER]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=ids[TRACE_ID_HEADER],
            request_id=ids[REQUEST_ID_HEADER],
            service=service_name,
            method=request.method,
            path=request.path,
        )
        if USER_ID_HEADER in request.headers:
            structlog.contextvars.bind_contextvars(user_id=request.headers[USER_ID_HEADER])
        logger.debug("http_request_started", remote=request.remote, headers=safe_headers(request.headers))

        try:
            response = await handler(request)
        except web.HTTPException as exc:
            exc.headers.update(ids)
            log = logger.warning if exc.status_code >= 400 else logger.info
            log("http_request_finished", status_code=exc.status_code, duration_ms=_elapsed_ms(started))
            raise
        except Exception:
            logger.exception("http_request_crashed", duration_ms=_elapsed_ms(started))
            raise
        else:
            response.headers.update(ids)
            log = logger.warning if response.status >= 400 else logger.info
            log("http_request_finished", status_code=response.status, duration_ms=_elapsed_ms(started))
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    return trace_middleware
