"""structlog setup: one key=value line per event on stdout."""
from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

import structlog

from webhook_service.settings import settings

# never written out verbatim: subscription secrets and computed signatures
REDACTED_KEYS = frozenset({"secret", "signature", "authorization", "x-webhook-signature"})
REDACTED = "[redacted]"

_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n", "\r": "\\r", "\t": "\\t"})


def _flatten(value: Any) -> Any:
    if isinstance(value, str):
        return value.translate(_ESCAPES)
    if isinstance(value, (list, tuple)):
        return [_flatten(item) for item in value]
    if isinstance(value, dict):
        return {k: REDACTED if str(k).lower() in REDACTED_KEYS else _flatten(v) for k, v in value.items()}
    return value


def single_line_processor(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Redact secrets and escape line breaks, tracebacks included."""
    for key in list(event_dict):
        if key.lower() in REDACTED_KEYS:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _flatten(event_dict[key])
    return event_dict


class _OneLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return super().format(record).translate(_ESCAPES)


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = settings.log_level
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: int | str | None = None) -> None:
    numeric = _resolve_level(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_OneLineFormatter("%(message)s"))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric)

    # aiohttp access lines go through the same handler
    access = logging.getLogger("aiohttp.access")
    access.handlers = []
    access.propagate = True
    access.setLevel(numeric)

    # timestamp=... level=warning logger=webhook_service.services.dispatcher event=webhook_attempt_finished delivery_id=...
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            single_line_processor,
            structlog.processors.KeyValueRenderer(
                key_order=["timestamp", "level", "logger", "event"],
                drop_missing=True,
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
