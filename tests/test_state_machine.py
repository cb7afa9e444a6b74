from __future__ import annotations

import pytest

from webhook_service.core.exceptions import InvalidStatusTransitionError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.services.backoff import RetryPolicy, backoff_seconds
from webhook_service.services.state_machine import (
    is_success_status,
    status_after_failure,
    status_after_success,
    status_for_manual_retry,
    validate_delivery_transition,
)

PENDING = DeliveryStatus.PENDING
SUCCESS = DeliveryStatus.SUCCESS
FAILED = DeliveryStatus.FAILED
RETRYING = DeliveryStatus.RETRYING


@pytest.mark.parametrize(
    "current, new",
    [(PENDING, SUCCESS), (PENDING, FAILED), (FAILED, RETRYING), (RETRYING, SUCCESS), (RETRYING, FAILED)],
)
def test_allowed_transitions(current, new):
    validate_delivery_transition(current, new)


@pytest.mark.parametrize(
    "current, new",
    [
        (SUCCESS, FAILED),
        (SUCCESS, RETRYING),
        (FAILED, SUCCESS),
        (PENDING, RETRYING),
        (SUCCESS, SUCCESS),
        (FAILED, FAILED),
    ],
)
def test_rejected_transitions(current, new):
    with pytest.raises(InvalidStatusTransitionError):
        validate_delivery_transition(current, new)


def test_failure_keeps_retrying_while_attempts_within_budget():
    # max_retries=2: attempts 1 and 2 retry, attempt 3 is terminal
    assert status_after_failure(PENDING, attempts=1, max_retries=2) == RETRYING
    assert status_after_failure(RETRYING, attempts=2, max_retries=2) == RETRYING
    assert status_after_failure(RETRYING, attempts=3, max_retries=2) == FAILED


def test_zero_retries_fail_immediately():
    assert status_after_failure(PENDING, attempts=1, max_retries=0) == FAILED


def test_manual_failure_is_terminal():
    assert status_after_failure(RETRYING, attempts=1, max_retries=5, manual=True) == FAILED


def test_success_is_terminal():
    assert status_after_success(RETRYING) == SUCCESS
    with pytest.raises(InvalidStatusTransitionError):
        status_after_success(SUCCESS)


def test_manual_retry_only_from_failed_or_retrying():
    assert status_for_manual_retry(FAILED) == RETRYING
    assert status_for_manual_retry(RETRYING) == RETRYING
    for status in (PENDING, SUCCESS):
        with pytest.raises(InvalidStatusTransitionError):
            status_for_manual_retry(status)


@pytest.mark.parametrize("code, ok", [(200, True), (204, True), (299, True), (301, False), (500, False), (None, False)])
def test_is_success_status(code, ok):
    assert is_success_status(code) is ok


def test_backoff_doubles_and_caps():
    assert [backoff_seconds(n, base=5, cap=300) for n in range(1, 9)] == [
        5, 10, 20, 40, 80, 160, 300, 300,
    ]


def test_retry_policy_uses_its_own_curve():
    policy = RetryPolicy(base_delay_seconds=0.5, max_delay_seconds=1.0)
    assert policy.delay_for(1) == 0.5
    assert policy.delay_for(2) == 1.0
    assert policy.delay_for(10) == 1.0
