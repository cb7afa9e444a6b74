"""Webhook delivery log repository."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Collection, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import DeliveryCreateDTO, DeliveryResultDTO
from webhook_service.domain.enums import OUTSTANDING_STATUSES, DeliveryStatus
from webhook_service.domain.models import DeliveryStats, WebhookDelivery
from webhook_service.repositories.base import BaseRepository


class WebhookDeliveryRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookDelivery:
        payload = dict(record)
        payload.pop("total_count", None)
        return WebhookDelivery.model_validate(payload)

    async def create(self, dto: DeliveryCreateDTO) -> WebhookDelivery:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_deliveries (
                id, subscription_id, event, entity_type, entity_id, entity_name,
                request_url, request_body, is_test, status, attempts, next_retry_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, 'pending', 0, now())
            RETURNING *
            """,
            dto.id,
            dto.subscription_id,
            dto.event,
            dto.entity_type,
            dto.entity_id,
            dto.entity_name,
            dto.request_url,
            dto.request_body,
            dto.is_test,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, delivery_id: UUID) -> WebhookDelivery:
        record = await self._fetchrow(
            "SELECT * FROM webhook_deliveries WHERE id = $1",
            delivery_id,
        )
        if record is None:
            raise NotFoundError("Webhook delivery not found")
        return self._to_model(record)

    async def list_by_subscription(
        self,
        subscription_id: UUID,
        *,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookDelivery], int]:
        where = ["subscription_id = $1"]
        values: list[Any] = [subscription_id]
        idx = 2
        if status is not None:
            where.append(f"status = ${idx}")
            values.append(status.value)
            idx += 1
        where_sql = " AND ".join(where)
        query = f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_deliveries
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """
        values.extend([limit, offset])
        records = await self._fetch(query, *values)
        items: List[WebhookDelivery] = []
        total: int | None = None
        for rec in records:
            total_value = rec["total_count"]
            if total_value is not None:
                total = int(total_value)
            items.append(self._to_model(rec))
        if total is None:
            record = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM webhook_deliveries WHERE {where_sql}",
                *values[: idx - 1],
            )
            total = int(record["total"]) if record else 0
        return items, total

    async def list_retryable(self, subscription_id: UUID) -> List[WebhookDelivery]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_deliveries
            WHERE subscription_id = $1
              AND status IN ('failed', 'retrying')
            ORDER BY created_at ASC
            """,
            subscription_id,
        )
        return [self._to_model(r) for r in records]

    async def begin_attempt(
        self,
        delivery_id: UUID,
        *,
        expected_attempts: int,
        status: DeliveryStatus,
        lease_until: datetime,
        from_statuses: Collection[DeliveryStatus] = OUTSTANDING_STATUSES,
    ) -> WebhookDelivery | None:
        """Claim the next attempt of a delivery.

        Compare-and-set on ``attempts`` and on the current status being one of
        *from_statuses*: returns ``None`` when another worker already started an
        attempt or the delivery settled meanwhile.

        Side-effects:
          - attempts += 1
          - status -> *status*
          - next_retry_at -> *lease_until* (keeps the recovery sweep away while in flight)
        """
        record = await self._fetchrow(
            """
            UPDATE webhook_deliveries
            SET attempts = attempts + 1,
                status = $3,
                next_retry_at = $4,
                updated_at = now()
            WHERE id = $1
              AND attempts = $2
              AND status = ANY($5::text[])
            RETURNING *
            """,
            delivery_id,
            expected_attempts,
            status.value,
            lease_until,
            [s.value for s in from_statuses],
        )
        return self._to_model(record) if record is not None else None

    async def record_outcome(
        self,
        delivery_id: UUID,
        *,
        attempts: int,
        result: DeliveryResultDTO,
        next_retry_at: datetime | None,
    ) -> WebhookDelivery | None:
        """Write the attempt result and the subscription counters in one statement.

        The guard on ``attempts`` and in-flight status makes this the single
        writer for the attempt: a result for an attempt that is no longer
        current is dropped and ``None`` is returned.
        """
        record = await self._fetchrow(
            """
            WITH d AS (
                UPDATE webhook_deliveries
                SET status = $3,
                    response_status = $4,
                    response_body = $5,
                    response_time_ms = $6,
                    error = $7,
                    next_retry_at = $8,
                    updated_at = now()
                WHERE id = $1
                  AND attempts = $2
                  AND status IN ('pending', 'retrying')
                RETURNING *
            ),
            counters AS (
                UPDATE webhook_subscriptions AS s
                SET last_triggered_at = now(),
                    total_sent = s.total_sent + 1,
                    total_failed = s.total_failed + CASE WHEN $9 THEN 0 ELSE 1 END,
                    consecutive_failures = CASE WHEN $9 THEN 0 ELSE s.consecutive_failures + 1 END,
                    last_success_at = CASE WHEN $9 THEN now() ELSE s.last_success_at END,
                    last_error_at = CASE WHEN $9 THEN s.last_error_at ELSE now() END,
                    last_error = CASE WHEN $9 THEN s.last_error ELSE $7 END,
                    updated_at = now()
                FROM d
                WHERE s.id = d.subscription_id
                RETURNING s.id
            )
            SELECT d.* FROM d
            """,
            delivery_id,
            attempts,
            result.status.value,
            result.response_status,
            result.response_body,
            result.response_time_ms,
            result.error,
            next_retry_at,
            result.success,
        )
        return self._to_model(record) if record is not None else None

    async def abandon(self, delivery_id: UUID, *, error: str) -> WebhookDelivery | None:
        """Terminally fail an outstanding delivery without sending it."""
        record = await self._fetchrow(
            """
            UPDATE webhook_deliveries
            SET status = 'failed',
                error = $2,
                next_retry_at = NULL,
                updated_at = now()
            WHERE id = $1
              AND status IN ('pending', 'retrying')
            RETURNING *
            """,
            delivery_id,
            error,
        )
        return self._to_model(record) if record is not None else None

    async def abandon_outstanding(self, subscription_id: UUID, *, error: str) -> int:
        result = await self._execute(
            """
            UPDATE webhook_deliveries
            SET status = 'failed',
                error = $2,
                next_retry_at = NULL,
                updated_at = now()
            WHERE subscription_id = $1
              AND status IN ('pending', 'retrying')
            """,
            subscription_id,
            error,
        )
        return self._affected(result)

    async def claim_stale(
        self, *, due_before: datetime, lease_until: datetime, limit: int = 100
    ) -> List[WebhookDelivery]:
        """
        Atomically claim deliveries left behind in ``pending``/``retrying``.

        Uses row-level locking (FOR UPDATE SKIP LOCKED) so concurrent sweeps
        won't claim the same delivery; the claim pushes ``next_retry_at`` to
        *lease_until*.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                records = await conn.fetch(
                    """
                    WITH cte AS (
                        SELECT id
                        FROM webhook_deliveries
                        WHERE status IN ('pending', 'retrying')
                          AND next_retry_at <= $1
                        ORDER BY next_retry_at ASC, created_at ASC
                        FOR UPDATE SKIP LOCKED
                        LIMIT $3
                    )
                    UPDATE webhook_deliveries d
                    SET next_retry_at = $2,
                        updated_at = now()
                    FROM cte
                    WHERE d.id = cte.id
                    RETURNING d.*
                    """,
                    due_before,
                    lease_until,
                    limit,
                )
        return [self._to_model(r) for r in records]

    async def stats(self, subscription_id: UUID) -> DeliveryStats:
        record = await self._fetchrow(
            """
            SELECT COUNT(*) AS total,
                   COUNT(*) FILTER (WHERE status = 'success') AS success,
                   COUNT(*) FILTER (WHERE status = 'failed') AS failed,
                   COUNT(*) FILTER (WHERE status IN ('pending', 'retrying')) AS pending,
                   COALESCE(AVG(response_time_ms), 0) AS avg_response_time_ms
            FROM webhook_deliveries
            WHERE subscription_id = $1
            """,
            subscription_id,
        )
        if record is None:
            return DeliveryStats()
        return DeliveryStats(
            total=int(record["total"]),
            success=int(record["success"]),
            failed=int(record["failed"]),
            pending=int(record["pending"]),
            avg_response_time_ms=float(record["avg_response_time_ms"]),
        )
