"""Pydantic DTOs for repository/service layers."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.events import is_known_event
from webhook_service.domain.headers import is_reserved_header
from webhook_service.domain.models import WebhookFilters

MIN_RETRIES = 0
MAX_RETRIES = 10
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 30_000

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


def normalize_url(value: str) -> str:
    value = value.strip()
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise ValueError(f"Invalid webhook URL: {value!r}") from exc
    return value


def normalize_events(values: list[str]) -> list[str]:
    events = [e.strip() for e in values if e and e.strip()]
    events = list(dict.fromkeys(events))
    unknown = [e for e in events if not is_known_event(e)]
    if unknown:
        raise ValueError(f"Unknown event type(s): {', '.join(unknown)}")
    return events


def normalize_headers(headers: dict[str, str]) -> dict[str, str]:
    result: dict[str, str] = {}
    for name, value in headers.items():
        name = name.strip()
        if not name:
            raise ValueError("Header names must be non-empty")
        if is_reserved_header(name):
            raise ValueError(f"Header {name!r} is set by the dispatcher and cannot be overridden")
        result[name] = value
    return result


def check_filters(filters: WebhookFilters | None) -> WebhookFilters | None:
    if filters is None:
        return None
    if (
        filters.min_value is not None
        and filters.max_value is not None
        and filters.min_value > filters.max_value
    ):
        raise ValueError("filters.min_value must not exceed filters.max_value")
    return None if filters.is_empty() else filters


class WebhookCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    url: str
    secret: str | None = Field(default=None, min_length=16)
    headers: dict[str, str] = Field(default_factory=dict)
    events: list[str] = Field(default_factory=list)
    filters: WebhookFilters | None = None
    is_active: bool = True
    max_retries: int = Field(default=3, ge=MIN_RETRIES, le=MAX_RETRIES)
    timeout_ms: int = Field(default=10_000, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        return normalize_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str]) -> list[str]:
        return normalize_events(value)

    @field_validator("headers")
    @classmethod
    def validate_headers(cls, value: dict[str, str]) -> dict[str, str]:
        return normalize_headers(value)

    @field_validator("filters")
    @classmethod
    def validate_filters(cls, value: WebhookFilters | None) -> WebhookFilters | None:
        return check_filters(value)

    @model_validator(mode="after")
    def active_requires_events(self) -> "WebhookCreateDTO":
        if self.is_active and not self.events:
            raise ValueError("events must be a non-empty list for an active webhook")
        return self


class WebhookUpdateDTO(BaseModel):
    """Partial update; cross-field rules are checked against the stored row by the service."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    url: str | None = None
    headers: dict[str, str] | None = None
    events: list[str] | None = None
    filters: WebhookFilters | None = None
    is_active: bool | None = None
    max_retries: int | None = Field(default=None, ge=MIN_RETRIES, le=MAX_RETRIES)
    timeout_ms: int | None = Field(default=None, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str | None) -> str | None:
        return None if value is None else normalize_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else normalize_events(value)

    @field_validator("headers")
    @classmethod
    def validate_headers(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        return None if value is None else normalize_headers(value)

    @field_validator("filters")
    @classmethod
    def validate_filters(cls, value: WebhookFilters | None) -> WebhookFilters | None:
        return check_filters(value)

    def changes(self) -> dict[str, Any]:
        """Fields explicitly provided by the caller (``filters: null`` clears filters)."""
        result: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None and name not in _NULLABLE_FIELDS:
                continue
            result[name] = value
        return result


_NULLABLE_FIELDS = frozenset({"description", "filters"})


class DeliveryCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: UUID
    subscription_id: UUID
    event: str
    request_url: str
    request_body: str
    entity_type: str | None = None
    entity_id: str | None = None
    entity_name: str | None = None
    is_test: bool = False


class DeliveryResultDTO(BaseModel):
    """Everything one dispatch writes back to the delivery log."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    status: DeliveryStatus
    response_status: int | None = None
    response_body: str | None = None
    response_time_ms: int | None = None
    error: str | None = None
