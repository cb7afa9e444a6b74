import logging

from webhook_service.logging_config import REDACTED, _resolve_level, single_line_processor


def test_secrets_are_redacted_at_any_depth():
    event = single_line_processor(
        None,
        "info",
        {
            "event": "webhook_created",
            "secret": "abc123",
            "request": {"headers": {"X-Webhook-Signature": "sha256=ff", "Accept": "*/*"}},
        },
    )
    assert event["secret"] == REDACTED
    assert event["request"]["headers"] == {"X-Webhook-Signature": REDACTED, "Accept": "*/*"}


def test_line_breaks_are_escaped():
    event = single_line_processor(
        None, "error", {"event": "boom", "exception": "Traceback\n  line\tx", "lines": ["a\nb"]}
    )
    assert event["exception"] == "Traceback\\n  line\\tx"
    assert event["lines"] == ["a\\nb"]


def test_level_names_resolve():
    assert _resolve_level("debug") == logging.DEBUG
    assert _resolve_level(logging.WARNING) == logging.WARNING
    assert _resolve_level("nonsense") == logging.INFO
