"""Single delivery attempt: sign, POST, record."""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone

import structlog
from aiohttp import ClientError, ClientSession

from webhook_service.domain import headers as h
from webhook_service.domain.dto import DeliveryResultDTO
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.models import DeliveryOutcome, WebhookDelivery, WebhookSubscription
from webhook_service.otel import get_tracer
from webhook_service.repositories.protocols import DeliveryLog
from webhook_service.services.backoff import RetryPolicy
from webhook_service.services.locks import KeyedLocks
from webhook_service.services.signer import signature_header
from webhook_service.services.state_machine import (
    claimable_statuses,
    is_success_status,
    status_after_failure,
    status_after_success,
    status_for_manual_retry,
)
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

TRUNCATION_MARKER = "... (truncated)"
UNREADABLE_BODY = "[Unable to read response body]"


def truncate_body(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def build_headers(
    subscription: WebhookSubscription,
    delivery: WebhookDelivery,
    body_bytes: bytes,
    *,
    timestamp: str,
    user_agent: str,
) -> dict[str, str]:
    """Static subscription headers first, then the reserved ones on top."""
    result = {
        name: value
        for name, value in subscription.headers.items()
        if not h.is_reserved_header(name)
    }
    result.update(
        {
            h.CONTENT_TYPE_HEADER: "application/json",
            h.USER_AGENT_HEADER: user_agent,
            h.WEBHOOK_ID_HEADER: str(subscription.id),
            h.EVENT_HEADER: delivery.event,
            h.DELIVERY_ID_HEADER: str(delivery.id),
            h.TIMESTAMP_HEADER: timestamp,
            h.SIGNATURE_HEADER: signature_header(subscription.secret, body_bytes),
        }
    )
    return result


class WebhookDispatcher:
    """Performs one HTTP attempt for a delivery and writes the result back.

    The attempt is claimed with a compare-and-set on ``attempts`` before the
    request goes out and the result is recorded under the same guard, so an
    attempt that lost the race (or was abandoned meanwhile) never overwrites
    the log. Counter updates are serialized per subscription.
    """

    def __init__(
        self,
        deliveries: DeliveryLog,
        session: ClientSession | None = None,
        *,
        policy: RetryPolicy | None = None,
        user_agent: str | None = None,
        response_body_max_chars: int | None = None,
        lease_grace_seconds: float | None = None,
    ) -> None:
        self._deliveries = deliveries
        self._session = session
        self._owns_session = session is None
        self._policy = policy or RetryPolicy(
            settings.webhook_retry_base_delay_seconds,
            settings.webhook_retry_max_delay_seconds,
        )
        self._user_agent = user_agent or settings.webhook_user_agent
        self._max_chars = response_body_max_chars or settings.webhook_response_body_max_chars
        self._lease_grace = (
            settings.webhook_stale_grace_seconds
            if lease_grace_seconds is None
            else lease_grace_seconds
        )
        self._subscription_locks = KeyedLocks()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def deliver(
        self,
        subscription: WebhookSubscription,
        delivery: WebhookDelivery,
        *,
        manual: bool = False,
    ) -> DeliveryOutcome | None:
        """Run one attempt.

        Returns ``None`` when there was nothing to do: the delivery is no longer
        outstanding, another attempt claimed it first, or the result arrived
        after the attempt stopped being current.
        """
        if delivery.status in (DeliveryStatus.PENDING, DeliveryStatus.RETRYING):
            target = delivery.status
        elif manual:
            target = status_for_manual_retry(delivery.status)
        else:
            return None

        log = logger.bind(
            delivery_id=str(delivery.id),
            subscription_id=str(subscription.id),
            event_type=delivery.event,
        )
        timeout_s = subscription.timeout_ms / 1000
        now = datetime.now(timezone.utc)
        claimed = await self._deliveries.begin_attempt(
            delivery.id,
            expected_attempts=delivery.attempts,
            status=target,
            lease_until=now + timedelta(seconds=timeout_s + self._lease_grace),
            from_statuses=claimable_statuses(manual=manual),
        )
        if claimed is None:
            log.info("webhook_attempt_skipped", reason="already claimed or settled")
            return None

        tracer = get_tracer(__name__)
        with tracer.start_as_current_span(
            "webhook.deliver",
            attributes={
                "webhook.id": str(subscription.id),
                "webhook.delivery_id": str(delivery.id),
                "webhook.event": delivery.event,
                "webhook.attempt": claimed.attempts,
            },
        ) as span:
            result = await self._send(subscription, claimed, timeout_s=timeout_s, manual=manual)
            if result.response_status is not None:
                span.set_attribute("http.response.status_code", result.response_status)

        next_retry_at = None
        if result.status == DeliveryStatus.RETRYING:
            next_retry_at = datetime.now(timezone.utc) + timedelta(
                seconds=self._policy.delay_for(claimed.attempts)
            )

        async with self._subscription_locks.hold(subscription.id):
            recorded = await self._deliveries.record_outcome(
                claimed.id,
                attempts=claimed.attempts,
                result=result,
                next_retry_at=next_retry_at,
            )
        if recorded is None:
            log.warning("webhook_result_dropped", attempt=claimed.attempts, success=result.success)
            return None

        log_method = log.info if result.success else log.warning
        log_method(
            "webhook_attempt_finished",
            attempt=recorded.attempts,
            status=recorded.status.value,
            response_status=result.response_status,
            response_time_ms=result.response_time_ms,
            error=result.error,
        )
        return DeliveryOutcome(
            delivery_id=recorded.id,
            success=result.success,
            status=recorded.status,
            attempts=recorded.attempts,
            response_status=result.response_status,
            response_time_ms=result.response_time_ms,
            error=result.error,
        )

    async def _send(
        self,
        subscription: WebhookSubscription,
        delivery: WebhookDelivery,
        *,
        timeout_s: float,
        manual: bool,
    ) -> DeliveryResultDTO:
        body_bytes = delivery.request_body.encode("utf-8")
        headers = build_headers(
            subscription,
            delivery,
            body_bytes,
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_agent=self._user_agent,
        )
        response_status: int | None = None
        response_body: str | None = None
        error: str | None = None
        started = time.monotonic()
        try:
            response_status, reason, response_body = await asyncio.wait_for(
                self._post(delivery.request_url, body_bytes, headers), timeout=timeout_s
            )
            if not is_success_status(response_status):
                error = f"HTTP {response_status}" + (f": {reason}" if reason else "")
        except asyncio.TimeoutError:
            error = f"Request timed out after {subscription.timeout_ms} ms"
        except (ClientError, OSError, ValueError) as exc:
            error = str(exc) or type(exc).__name__
        elapsed_ms = int((time.monotonic() - started) * 1000)

        success = error is None
        if success:
            status = status_after_success(delivery.status)
        else:
            status = status_after_failure(
                delivery.status,
                attempts=delivery.attempts,
                max_retries=subscription.max_retries,
                manual=manual,
            )
        return DeliveryResultDTO(
            success=success,
            status=status,
            response_status=response_status,
            response_body=response_body,
            response_time_ms=elapsed_ms,
            error=error,
        )

    async def _post(
        self, url: str, body_bytes: bytes, headers: dict[str, str]
    ) -> tuple[int, str | None, str]:
        async with self._get_session().post(url, data=body_bytes, headers=headers) as resp:
            try:
                text = await resp.text(errors="replace")
            except ClientError:
                text = UNREADABLE_BODY
            return resp.status, resp.reason, truncate_body(text, self._max_chars)
