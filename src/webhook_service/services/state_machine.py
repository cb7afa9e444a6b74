"""Delivery status transitions."""
from __future__ import annotations

from webhook_service.core.exceptions import InvalidStatusTransitionError
from webhook_service.domain.enums import OUTSTANDING_STATUSES, DeliveryStatus

DELIVERY_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.SUCCESS, DeliveryStatus.FAILED},
    DeliveryStatus.FAILED: {DeliveryStatus.RETRYING},
    DeliveryStatus.RETRYING: {DeliveryStatus.SUCCESS, DeliveryStatus.FAILED},
    DeliveryStatus.SUCCESS: set(),
}

RETRYABLE_STATUSES = frozenset({DeliveryStatus.FAILED, DeliveryStatus.RETRYING})


def validate_delivery_transition(current: DeliveryStatus, new: DeliveryStatus) -> None:
    allowed = DELIVERY_TRANSITIONS.get(current, set())
    if new not in allowed:
        raise InvalidStatusTransitionError(
            f"Invalid delivery status transition: {current.value} → {new.value}"
        )


def claimable_statuses(*, manual: bool) -> frozenset[DeliveryStatus]:
    """Statuses an attempt may claim a delivery from; only manual ones reopen `failed`."""
    if manual:
        return OUTSTANDING_STATUSES | {DeliveryStatus.FAILED}
    return OUTSTANDING_STATUSES


def is_success_status(status_code: int | None) -> bool:
    return status_code is not None and 200 <= status_code < 300


def status_after_failure(
    current: DeliveryStatus, *, attempts: int, max_retries: int, manual: bool = False
) -> DeliveryStatus:
    """Resolve where a failed attempt leaves the delivery.

    ``attempts`` counts the attempt that just failed. Automatic attempts move on
    to ``retrying`` while ``attempts <= max_retries``; a manual retry is a
    one-shot and always ends in ``failed``.
    """
    validate_delivery_transition(current, DeliveryStatus.FAILED)
    if manual or attempts > max_retries:
        return DeliveryStatus.FAILED
    validate_delivery_transition(DeliveryStatus.FAILED, DeliveryStatus.RETRYING)
    return DeliveryStatus.RETRYING


def status_after_success(current: DeliveryStatus) -> DeliveryStatus:
    validate_delivery_transition(current, DeliveryStatus.SUCCESS)
    return DeliveryStatus.SUCCESS


def status_for_manual_retry(current: DeliveryStatus) -> DeliveryStatus:
    """Manual retries re-enter the loop through ``retrying``."""
    if current not in RETRYABLE_STATUSES:
        raise InvalidStatusTransitionError(
            f"Only failed or retrying deliveries can be retried (status: {current.value})"
        )
    if current == DeliveryStatus.FAILED:
        validate_delivery_transition(current, DeliveryStatus.RETRYING)
    return DeliveryStatus.RETRYING
