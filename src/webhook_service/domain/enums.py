"""Domain enums."""
from __future__ import annotations

from enum import Enum


class DeliveryStatus(str, Enum):
    """Delivery attempt lifecycle states."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


# not settled yet: an automatic attempt may only claim these
OUTSTANDING_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.RETRYING})


class EventSource(str, Enum):
    """Where the originating domain change came from."""

    WEB = "web"
    API = "api"
    WORKFLOW = "workflow"
    IMPORT = "import"
