"""asyncpg repositories against a real PostgreSQL.

Set ``WEBHOOK_TEST_DATABASE_URL`` to a disposable database to run these; the
webhook tables in it are dropped and recreated.
"""
from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from webhook_service.core.exceptions import NotFoundError
from webhook_service.db.migrations import apply_migrations, load_migrations
from webhook_service.domain.dto import DeliveryCreateDTO, DeliveryResultDTO
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.models import WebhookFilters
from webhook_service.repositories import WebhookDeliveryRepository, WebhookSubscriptionRepository

from tests.utils import webhook_dto

DATABASE_URL = os.environ.get("WEBHOOK_TEST_DATABASE_URL")
MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"

pytestmark = pytest.mark.skipif(not DATABASE_URL, reason="WEBHOOK_TEST_DATABASE_URL not set")


@pytest.fixture
async def pool():
    import asyncpg

    conn = await asyncpg.connect(DATABASE_URL)
    try:
        await conn.execute(
            "DROP TABLE IF EXISTS webhook_deliveries, webhook_subscriptions, schema_migrations"
        )
        await apply_migrations(conn, load_migrations(MIGRATIONS_DIR))
    finally:
        await conn.close()
    pool = await asyncpg.create_pool(DATABASE_URL, max_size=4)
    yield pool
    await pool.close()


@pytest.fixture
def subs_repo(pool):
    return WebhookSubscriptionRepository(pool)


@pytest.fixture
def deliveries_repo(pool):
    return WebhookDeliveryRepository(pool)


async def _delivery(deliveries_repo, subscription_id):
    delivery_id = uuid.uuid4()
    return await deliveries_repo.create(
        DeliveryCreateDTO(
            id=delivery_id,
            subscription_id=subscription_id,
            event="deal.created",
            request_url="https://example.com/hook",
            request_body='{"event":"deal.created"}',
        )
    )


async def test_subscription_crud(subs_repo):
    sub = await subs_repo.create(
        webhook_dto(
            "https://example.com/hook",
            headers={"Authorization": "Bearer abc"},
            filters=WebhookFilters(owner_id="u1", min_value=10),
        ),
        secret="s" * 32,
        created_by=None,
    )
    assert sub.headers == {"Authorization": "Bearer abc"}
    assert sub.filters == WebhookFilters(owner_id="u1", min_value=10)

    updated = await subs_repo.update(sub.id, {"events": ["deal.won"], "filters": None})
    assert updated.events == ["deal.won"]
    assert updated.filters is None

    assert [s.id for s in await subs_repo.list_active_for_event("deal.won")] == [sub.id]
    assert await subs_repo.list_active_for_event("deal.created") == []

    rotated = await subs_repo.set_secret(sub.id, "t" * 32)
    assert rotated.secret == "t" * 32

    items, total = await subs_repo.list_all()
    assert total == 1 and items[0].id == sub.id


async def test_attempt_compare_and_set(subs_repo, deliveries_repo):
    sub = await subs_repo.create(webhook_dto("https://example.com/hook"), secret="s" * 32, created_by=None)
    delivery = await _delivery(deliveries_repo, sub.id)
    lease = datetime.now(timezone.utc) + timedelta(seconds=30)

    claimed = await deliveries_repo.begin_attempt(
        delivery.id, expected_attempts=0, status=DeliveryStatus.PENDING, lease_until=lease
    )
    assert claimed is not None and claimed.attempts == 1
    assert await deliveries_repo.begin_attempt(
        delivery.id, expected_attempts=0, status=DeliveryStatus.PENDING, lease_until=lease
    ) is None


async def test_record_outcome_updates_counters_atomically(subs_repo, deliveries_repo):
    sub = await subs_repo.create(webhook_dto("https://example.com/hook"), secret="s" * 32, created_by=None)
    delivery = await _delivery(deliveries_repo, sub.id)
    lease = datetime.now(timezone.utc) + timedelta(seconds=30)
    await deliveries_repo.begin_attempt(
        delivery.id, expected_attempts=0, status=DeliveryStatus.PENDING, lease_until=lease
    )

    failure = DeliveryResultDTO(
        success=False,
        status=DeliveryStatus.RETRYING,
        response_status=500,
        response_body="boom",
        response_time_ms=12,
        error="HTTP 500",
    )
    recorded = await deliveries_repo.record_outcome(
        delivery.id, attempts=1, result=failure, next_retry_at=lease
    )
    assert recorded is not None and recorded.status == DeliveryStatus.RETRYING
    # second write for the same attempt is dropped
    assert await deliveries_repo.record_outcome(
        delivery.id, attempts=2, result=failure, next_retry_at=lease
    ) is None

    refreshed = await subs_repo.get(sub.id)
    assert (refreshed.total_sent, refreshed.total_failed, refreshed.consecutive_failures) == (1, 1, 1)
    assert refreshed.last_error == "HTTP 500"

    await deliveries_repo.begin_attempt(
        delivery.id, expected_attempts=1, status=DeliveryStatus.RETRYING, lease_until=lease
    )
    success = DeliveryResultDTO(
        success=True, status=DeliveryStatus.SUCCESS, response_status=200, response_time_ms=8
    )
    await deliveries_repo.record_outcome(delivery.id, attempts=2, result=success, next_retry_at=None)

    refreshed = await subs_repo.get(sub.id)
    assert (refreshed.total_sent, refreshed.total_failed, refreshed.consecutive_failures) == (2, 1, 0)
    assert refreshed.success_rate == 50

    stats = await deliveries_repo.stats(sub.id)
    assert (stats.total, stats.success, stats.failed, stats.pending) == (1, 1, 0, 0)
    assert stats.avg_response_time_ms == 8


async def test_claim_stale_and_abandon(subs_repo, deliveries_repo):
    sub = await subs_repo.create(webhook_dto("https://example.com/hook"), secret="s" * 32, created_by=None)
    first = await _delivery(deliveries_repo, sub.id)
    second = await _delivery(deliveries_repo, sub.id)
    now = datetime.now(timezone.utc) + timedelta(seconds=1)

    claimed = await deliveries_repo.claim_stale(
        due_before=now, lease_until=now + timedelta(minutes=5), limit=1
    )
    assert len(claimed) == 1
    claimed_again = await deliveries_repo.claim_stale(
        due_before=now, lease_until=now + timedelta(minutes=5)
    )
    assert {d.id for d in claimed + claimed_again} == {first.id, second.id}

    assert await deliveries_repo.abandon_outstanding(sub.id, error="Webhook disabled or deleted") == 2
    _, total = await deliveries_repo.list_by_subscription(sub.id, status=DeliveryStatus.FAILED)
    assert total == 2
    assert {d.id for d in await deliveries_repo.list_retryable(sub.id)} == {first.id, second.id}


async def test_delete_cascades(subs_repo, deliveries_repo):
    sub = await subs_repo.create(webhook_dto("https://example.com/hook"), secret="s" * 32, created_by=None)
    delivery = await _delivery(deliveries_repo, sub.id)

    await subs_repo.delete(sub.id)

    with pytest.raises(NotFoundError):
        await deliveries_repo.get(delivery.id)
    with pytest.raises(NotFoundError):
        await subs_repo.delete(sub.id)


async def test_failed_row_is_claimable_only_from_failed(subs_repo, deliveries_repo):
    sub = await subs_repo.create(webhook_dto("https://example.com/hook"), secret="s" * 32, created_by=None)
    delivery = await _delivery(deliveries_repo, sub.id)
    await deliveries_repo.abandon(delivery.id, error="Webhook disabled or deleted")
    lease = datetime.now(timezone.utc) + timedelta(seconds=30)

    assert await deliveries_repo.begin_attempt(
        delivery.id, expected_attempts=0, status=DeliveryStatus.PENDING, lease_until=lease
    ) is None
    reopened = await deliveries_repo.begin_attempt(
        delivery.id,
        expected_attempts=0,
        status=DeliveryStatus.RETRYING,
        lease_until=lease,
        from_statuses={DeliveryStatus.FAILED},
    )
    assert reopened is not None and reopened.status == DeliveryStatus.RETRYING
