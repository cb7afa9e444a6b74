"""Request parsing and response shaping shared by the route modules."""
from __future__ import annotations

from typing import Any, NamedTuple, Sequence
from uuid import UUID

from aiohttp import web
from pydantic import ValidationError

from webhook_service.aiohttp_app import read_json

__all__ = ["Page", "page_body", "page_params", "parse_uuid", "read_json", "validation_error"]

DEFAULT_PAGE_SIZE = 50


class Page(NamedTuple):
    limit: int
    offset: int

    @property
    def number(self) -> int:
        return self.offset // self.limit + 1


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(str(value))
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def _query_int(request: web.Request, name: str, default: int) -> int:
    raw = request.rel_url.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"{name} must be an integer") from exc


def page_params(request: web.Request, *, max_limit: int = 100) -> Page:
    """``limit``/``offset`` from the query string; the limit is clamped to *max_limit*."""
    limit = _query_int(request, "limit", DEFAULT_PAGE_SIZE)
    offset = _query_int(request, "offset", 0)
    if limit <= 0:
        limit = min(DEFAULT_PAGE_SIZE, max_limit)
    return Page(limit=min(limit, max_limit), offset=max(offset, 0))


def page_body(key: str, items: Sequence[Any], *, total: int, page: Page) -> dict[str, Any]:
    return {
        key: list(items),
        "total": total,
        "page": page.number,
        "page_size": page.limit,
        "has_more": page.offset + len(items) < total,
    }


def validation_error(exc: ValidationError) -> web.HTTPBadRequest:
    """400 carrying pydantic's error list as the JSON body."""
    return web.HTTPBadRequest(
        text=exc.json(include_url=False, include_context=False),
        content_type="application/json",
    )
