"""Idempotent, monotonic persistence of PayPal subscription state."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from stockpulse.config import Settings, get_settings
from stockpulse.exceptions import PersistenceError
from stockpulse.models import PayPalPayment, PayPalSubscription
from stockpulse.schemas.paypal import (
    SubscriptionStatus,
    as_utc,
    parse_paypal_time,
    should_apply,
    status_from_provider,
)

logger = logging.getLogger(__name__)


def _as_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _current_status(record: PayPalSubscription | None) -> SubscriptionStatus | None:
    if record is None:
        return None
    try:
        return SubscriptionStatus(record.status)
    except ValueError:
        return None


class SubscriptionStateUpdater:
    """Applies webhook-derived state to the subscription store.

    Each write runs in a savepoint so a failure leaves the surrounding
    request transaction usable (the event log is written after it).
    """

    def __init__(self, db: AsyncSession, settings: Settings | None = None) -> None:
        self._db = db
        self._settings = settings or get_settings()

    async def _load_for_update(self, subscription_id: str) -> PayPalSubscription | None:
        result = await self._db.execute(
            select(PayPalSubscription)
            .where(PayPalSubscription.subscription_id == subscription_id)
            .with_for_update()
        )
        return result.scalars().first()

    def _refresh_details(self, record: PayPalSubscription, resource: dict[str, Any]) -> None:
        plan_id = str(resource.get("plan_id") or "").strip()
        if plan_id:
            record.plan_id = plan_id
            plan = self._settings.plan_catalog().get(plan_id)
            if plan:
                record.plan_type = plan[0]

        subscriber = resource.get("subscriber")
        if isinstance(subscriber, dict) and subscriber.get("email_address"):
            record.subscriber_email = str(subscriber["email_address"]).strip().lower()

        started = parse_paypal_time(resource.get("start_time"))
        if started:
            record.current_period_start = started

        billing_info = resource.get("billing_info")
        if isinstance(billing_info, dict):
            next_billing = parse_paypal_time(billing_info.get("next_billing_time"))
            if next_billing:
                record.current_period_end = next_billing

    async def _apply_locked(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        event_at: datetime,
        resource: dict[str, Any],
        plan_type: str | None,
    ) -> bool:
        record = await self._load_for_update(subscription_id)
        current = _current_status(record)
        if not should_apply(current, record.last_event_at if record else None, status, event_at):
            logger.info(
                "Skipping stale PayPal update subscription=%s current=%s target=%s at=%s",
                subscription_id,
                current.value if current else None,
                status.value,
                event_at.isoformat(),
            )
            return False

        now = datetime.now(UTC)
        if record is None:
            record = PayPalSubscription(subscription_id=subscription_id, status=status.value)
            self._db.add(record)
        changed = current is None or current != status

        record.status = status.value
        record.last_event_at = as_utc(event_at)
        record.updated_at = now
        self._refresh_details(record, resource)
        if plan_type:
            record.plan_type = plan_type
        await self._db.flush()

        if changed:
            logger.info(
                "PayPal subscription %s: %s -> %s",
                subscription_id,
                current.value if current else "NONE",
                status.value,
            )
        return changed

    async def apply_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        event_at: datetime,
        resource: dict[str, Any] | None = None,
        *,
        plan_type: str | None = None,
    ) -> bool:
        """Upsert the subscription to *status*; return True if the status changed.

        Stale events (older than the last applied one) and transitions out
        of a terminal status are no-ops.
        """
        resource = resource or {}
        for attempt in range(2):
            try:
                async with self._db.begin_nested():
                    return await self._apply_locked(
                        subscription_id, status, event_at, resource, plan_type
                    )
            except IntegrityError as exc:
                # Lost a first-insert race; the row now exists, so lock and retry.
                if attempt:
                    raise PersistenceError(
                        f"Could not store PayPal subscription {subscription_id}"
                    ) from exc
                logger.info("Concurrent insert for PayPal subscription %s; retrying", subscription_id)
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Could not store PayPal subscription {subscription_id}: {exc}"
                ) from exc
        return False

    async def apply_provider_details(
        self,
        details: dict[str, Any],
        *,
        plan_type: str | None = None,
    ) -> PayPalSubscription | None:
        """Store subscription details fetched from the PayPal API."""
        subscription_id = str(details.get("id") or "").strip()
        status = status_from_provider(details.get("status"))
        if not subscription_id or status is None:
            logger.warning(
                "Ignoring PayPal subscription details id=%s status=%s",
                subscription_id,
                details.get("status"),
            )
            return None
        event_at = parse_paypal_time(details.get("update_time")) or datetime.now(UTC)
        await self.apply_status(subscription_id, status, event_at, details, plan_type=plan_type)
        return await self.get(subscription_id)

    async def get(self, subscription_id: str) -> PayPalSubscription | None:
        result = await self._db.execute(
            select(PayPalSubscription).where(PayPalSubscription.subscription_id == subscription_id)
        )
        return result.scalars().first()

    async def change_plan(self, subscription_id: str, plan_id: str) -> PayPalSubscription | None:
        """Record a plan switch made at PayPal; status is left to webhooks."""
        try:
            async with self._db.begin_nested():
                record = await self._load_for_update(subscription_id)
                if record is None:
                    logger.warning("Plan change for unknown PayPal subscription %s", subscription_id)
                    return None
                previous = record.plan_id
                self._refresh_details(record, {"plan_id": plan_id})
                record.updated_at = datetime.now(UTC)
                await self._db.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not change plan of PayPal subscription {subscription_id}: {exc}"
            ) from exc
        logger.info("PayPal subscription %s plan %s -> %s", subscription_id, previous, plan_id)
        return record

    async def list_payments(self, subscription_id: str, limit: int = 10) -> list[PayPalPayment]:
        result = await self._db.execute(
            select(PayPalPayment)
            .where(PayPalPayment.subscription_id == subscription_id)
            .order_by(PayPalPayment.created_at.desc(), PayPalPayment.payment_id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def record_payment(
        self,
        subscription_id: str | None,
        payment_status: str,
        resource: dict[str, Any],
    ) -> bool:
        """Store a completed or denied sale once; return False for repeats."""
        payment_id = str(resource.get("id") or "").strip()
        if not payment_id:
            logger.warning("PayPal sale event without payment id (status=%s)", payment_status)
            return False

        amount = resource.get("amount")
        amount = amount if isinstance(amount, dict) else {}
        try:
            async with self._db.begin_nested():
                existing = await self._db.execute(
                    select(PayPalPayment.id).where(
                        PayPalPayment.payment_id == payment_id,
                        PayPalPayment.status == payment_status,
                    )
                )
                if existing.scalars().first() is not None:
                    logger.info("PayPal payment %s already recorded as %s", payment_id, payment_status)
                    return False

                self._db.add(
                    PayPalPayment(
                        payment_id=payment_id,
                        subscription_id=subscription_id,
                        status=payment_status,
                        amount=_as_decimal(amount.get("total")),
                        currency=amount.get("currency"),
                        reason_code=resource.get("reason_code"),
                        raw_payload=resource,
                    )
                )
                await self._db.flush()
        except IntegrityError:
            logger.info("PayPal payment %s recorded concurrently", payment_id)
            return False
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not record PayPal payment {payment_id}: {exc}") from exc

        logger.info(
            "PayPal payment %s %s subscription=%s amount=%s %s",
            payment_id,
            payment_status,
            subscription_id,
            amount.get("total"),
            amount.get("currency"),
        )
        return True
