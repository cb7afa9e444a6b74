"""Webhook subscription repository."""
from __future__ import annotations

import json
from typing import Any, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import WebhookCreateDTO
from webhook_service.domain.models import WebhookFilters, WebhookSubscription
from webhook_service.repositories.base import BaseRepository

# Columns an update may touch; everything else is managed by the delivery path.
_UPDATABLE = (
    "name",
    "description",
    "url",
    "headers",
    "events",
    "filters",
    "is_active",
    "max_retries",
    "timeout_ms",
)
_JSON_COLUMNS = {"headers", "filters"}


class WebhookSubscriptionRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @classmethod
    def _to_model(cls, record: Record) -> WebhookSubscription:
        payload = cls._decode_json(dict(record), "headers", "filters")
        payload.pop("total_count", None)
        return WebhookSubscription.model_validate(payload)

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column not in _JSON_COLUMNS:
            return value
        if value is None:
            return None
        if isinstance(value, WebhookFilters):
            value = value.model_dump(exclude_none=True)
        return json.dumps(value)

    async def create(
        self, dto: WebhookCreateDTO, *, secret: str, created_by: UUID | None
    ) -> WebhookSubscription:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_subscriptions (
                name, description, url, secret, headers, events, filters,
                is_active, max_retries, timeout_ms, created_by
            )
            VALUES ($1, $2, $3, $4, $5::jsonb, $6::text[], $7::jsonb, $8, $9, $10, $11)
            RETURNING *
            """,
            dto.name,
            dto.description,
            dto.url,
            secret,
            self._encode("headers", dto.headers),
            dto.events,
            self._encode("filters", dto.filters),
            dto.is_active,
            dto.max_retries,
            dto.timeout_ms,
            created_by,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, subscription_id: UUID) -> WebhookSubscription:
        record = await self._fetchrow(
            "SELECT * FROM webhook_subscriptions WHERE id = $1",
            subscription_id,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def list_all(
        self, *, limit: int = 50, offset: int = 0
    ) -> Tuple[List[WebhookSubscription], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_subscriptions
            ORDER BY created_at DESC
            LIMIT $1 OFFSET $2
            """,
            limit,
            offset,
        )
        items: List[WebhookSubscription] = []
        total: int | None = None
        for rec in records:
            total_value = rec["total_count"]
            if total_value is not None:
                total = int(total_value)
            items.append(self._to_model(rec))
        if total is None:
            record = await self._fetchrow("SELECT COUNT(*) AS total FROM webhook_subscriptions")
            total = int(record["total"]) if record else 0
        return items, total

    async def list_active_for_event(self, event_type: str) -> List[WebhookSubscription]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_subscriptions
            WHERE is_active = true
              AND $1 = ANY(events)
            ORDER BY created_at ASC
            """,
            event_type,
        )
        return [self._to_model(r) for r in records]

    async def update(self, subscription_id: UUID, changes: dict[str, Any]) -> WebhookSubscription:
        assignments: list[str] = []
        values: list[Any] = [subscription_id]
        for column in _UPDATABLE:
            if column not in changes:
                continue
            values.append(self._encode(column, changes[column]))
            cast = {"headers": "::jsonb", "filters": "::jsonb", "events": "::text[]"}.get(column, "")
            assignments.append(f"{column} = ${len(values)}{cast}")
        if not assignments:
            return await self.get(subscription_id)
        assignments.append("updated_at = now()")
        record = await self._fetchrow(
            f"""
            UPDATE webhook_subscriptions
            SET {", ".join(assignments)}
            WHERE id = $1
            RETURNING *
            """,
            *values,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def set_secret(self, subscription_id: UUID, secret: str) -> WebhookSubscription:
        record = await self._fetchrow(
            """
            UPDATE webhook_subscriptions
            SET secret = $2,
                updated_at = now()
            WHERE id = $1
            RETURNING *
            """,
            subscription_id,
            secret,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def delete(self, subscription_id: UUID) -> None:
        # webhook_deliveries rows go with it (ON DELETE CASCADE)
        record = await self._fetchrow(
            "DELETE FROM webhook_subscriptions WHERE id = $1 RETURNING id",
            subscription_id,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")
