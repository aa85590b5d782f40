"""PayPal webhook event dispatch."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from stockpulse.schemas.paypal import SubscriptionStatus, WebhookEvent

from api.services.subscription_updater import SubscriptionStateUpdater

logger = logging.getLogger(__name__)

OUTCOME_APPLIED = "applied"
OUTCOME_SKIPPED = "skipped"
OUTCOME_PAYMENT_RECORDED = "payment_recorded"
OUTCOME_IGNORED = "ignored"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class StateTransition:
    """What an event asks the billing store to do."""

    subscription_id: str | None
    status: SubscriptionStatus | None = None
    payment_status: str | None = None


@dataclass(frozen=True)
class DispatchOutcome:
    event_type: str
    subscription_id: str | None
    outcome: str
    handled: bool


def _subscription_status(status: SubscriptionStatus) -> Callable[[dict[str, Any]], StateTransition]:
    def handler(resource: dict[str, Any]) -> StateTransition:
        value = resource.get("id")
        return StateTransition(subscription_id=str(value) if value else None, status=status)

    return handler


def _sale(payment_status: str) -> Callable[[dict[str, Any]], StateTransition]:
    def handler(resource: dict[str, Any]) -> StateTransition:
        value = resource.get("billing_agreement_id")
        return StateTransition(
            subscription_id=str(value) if value else None,
            payment_status=payment_status,
        )

    return handler


EVENT_HANDLERS: dict[str, Callable[[dict[str, Any]], StateTransition]] = {
    "BILLING.SUBSCRIPTION.CREATED": _subscription_status(SubscriptionStatus.CREATED),
    "BILLING.SUBSCRIPTION.ACTIVATED": _subscription_status(SubscriptionStatus.ACTIVE),
    "BILLING.SUBSCRIPTION.CANCELLED": _subscription_status(SubscriptionStatus.CANCELLED),
    "BILLING.SUBSCRIPTION.SUSPENDED": _subscription_status(SubscriptionStatus.SUSPENDED),
    "BILLING.SUBSCRIPTION.EXPIRED": _subscription_status(SubscriptionStatus.EXPIRED),
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": _subscription_status(
        SubscriptionStatus.PAYMENT_FAILED
    ),
    "PAYMENT.SALE.COMPLETED": _sale("COMPLETED"),
    "PAYMENT.SALE.DENIED": _sale("DENIED"),
}


def resolve_transition(event: WebhookEvent) -> StateTransition | None:
    handler = EVENT_HANDLERS.get(event.event_type)
    if handler is None:
        return None
    return handler(event.resource)


class WebhookDispatcher:
    """Routes verified webhook events to the subscription state updater."""

    def __init__(self, updater: SubscriptionStateUpdater) -> None:
        self._updater = updater

    async def dispatch(
        self,
        event: WebhookEvent,
        *,
        received_at: datetime | None = None,
    ) -> DispatchOutcome:
        """Apply one event. Raises PersistenceError if the store fails."""
        transition = resolve_transition(event)
        if transition is None:
            logger.info("Unhandled PayPal webhook event: %s", event.event_type)
            return DispatchOutcome(
                event_type=event.event_type,
                subscription_id=event.subscription_id,
                outcome=OUTCOME_IGNORED,
                handled=False,
            )

        if transition.payment_status is not None:
            await self._updater.record_payment(
                transition.subscription_id,
                transition.payment_status,
                event.resource,
            )
            return DispatchOutcome(
                event_type=event.event_type,
                subscription_id=transition.subscription_id,
                outcome=OUTCOME_PAYMENT_RECORDED,
                handled=True,
            )

        if not transition.subscription_id or transition.status is None:
            logger.warning("PayPal %s event without resource id", event.event_type)
            return DispatchOutcome(
                event_type=event.event_type,
                subscription_id=None,
                outcome=OUTCOME_IGNORED,
                handled=False,
            )

        event_at = event.create_time or received_at or datetime.now(UTC)
        changed = await self._updater.apply_status(
            transition.subscription_id,
            transition.status,
            event_at,
            event.resource,
        )
        return DispatchOutcome(
            event_type=event.event_type,
            subscription_id=transition.subscription_id,
            outcome=OUTCOME_APPLIED if changed else OUTCOME_SKIPPED,
            handled=True,
        )
