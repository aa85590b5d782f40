"""Schemas for PayPal webhook events and subscription lifecycle."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a PayPal subscription."""

    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED})

_RUNNING = {
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.SUSPENDED,
    SubscriptionStatus.PAYMENT_FAILED,
    SubscriptionStatus.CANCELLED,
    SubscriptionStatus.EXPIRED,
}

# Valid status transitions; ``None`` is a subscription not yet stored.
TRANSITIONS: dict[SubscriptionStatus | None, frozenset[SubscriptionStatus]] = {
    None: frozenset(SubscriptionStatus),
    SubscriptionStatus.CREATED: frozenset(_RUNNING | {SubscriptionStatus.CREATED}),
    SubscriptionStatus.ACTIVE: frozenset(_RUNNING),
    SubscriptionStatus.SUSPENDED: frozenset(_RUNNING),
    SubscriptionStatus.PAYMENT_FAILED: frozenset(_RUNNING),
    SubscriptionStatus.CANCELLED: frozenset({SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.EXPIRED: frozenset({SubscriptionStatus.EXPIRED}),
}

# Statuses reported by GET /v1/billing/subscriptions/{id}
_PROVIDER_STATUS = {
    "APPROVAL_PENDING": SubscriptionStatus.CREATED,
    "APPROVED": SubscriptionStatus.CREATED,
    "ACTIVE": SubscriptionStatus.ACTIVE,
    "SUSPENDED": SubscriptionStatus.SUSPENDED,
    "CANCELLED": SubscriptionStatus.CANCELLED,
    "EXPIRED": SubscriptionStatus.EXPIRED,
}

TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "transmission_id": "paypal-transmission-id",
    "cert_id": "paypal-cert-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


_DATETIME = TypeAdapter(datetime)


def parse_paypal_time(value: Any) -> datetime | None:
    """Lenient RFC 3339 parsing; unparseable values become None."""
    if value is None or value == "":
        return None
    try:
        return as_utc(_DATETIME.validate_python(value))
    except ValidationError:
        return None


def status_from_provider(value: Any) -> SubscriptionStatus | None:
    return _PROVIDER_STATUS.get(str(value or "").strip().upper())


def can_transition(current: SubscriptionStatus | None, target: SubscriptionStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def should_apply(
    current: SubscriptionStatus | None,
    last_event_at: datetime | None,
    target: SubscriptionStatus,
    event_at: datetime,
) -> bool:
    """Decide whether an event may overwrite the stored status.

    Events older than the last applied one are dropped, and terminal
    statuses never change.
    """
    last = as_utc(last_event_at)
    if last is not None and last > as_utc(event_at):
        return False
    return can_transition(current, target)


class TransmissionMetadata(BaseModel):
    """The five ``paypal-*`` headers used to authenticate a delivery."""

    model_config = ConfigDict(frozen=True)

    auth_algo: str | None = None
    transmission_id: str | None = None
    cert_id: str | None = None
    transmission_sig: str | None = None
    transmission_time: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> TransmissionMetadata:
        values = {}
        for attr, header in TRANSMISSION_HEADERS.items():
            values[attr] = str(headers.get(header) or "").strip() or None
        return cls(**values)

    def missing(self) -> list[str]:
        return [
            header
            for attr, header in TRANSMISSION_HEADERS.items()
            if not getattr(self, attr)
        ]


class WebhookEvent(BaseModel):
    """A parsed PayPal webhook notification."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    event_type: str = ""
    resource: dict[str, Any] = Field(default_factory=dict)
    event_id: str | None = Field(default=None, alias="id")
    create_time: datetime | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @field_validator("event_type", mode="before")
    @classmethod
    def strip_event_type(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("event_id", mode="before")
    @classmethod
    def event_id_text(cls, value: Any) -> str | None:
        return str(value or "").strip() or None

    @field_validator("resource", mode="before")
    @classmethod
    def resource_object(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("create_time", mode="before")
    @classmethod
    def lenient_create_time(cls, value: Any) -> datetime | None:
        return parse_paypal_time(value)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> WebhookEvent:
        return cls.model_validate({**payload, "raw": payload})

    @property
    def subscription_id(self) -> str | None:
        """Subscription the event refers to, if any."""
        value = self.resource.get("billing_agreement_id") or self.resource.get("id")
        return str(value) if value else None
