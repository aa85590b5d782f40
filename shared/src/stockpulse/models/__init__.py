"""SQLAlchemy ORM models for StockPulse."""

from stockpulse.models.base import Base
from stockpulse.models.paypal_payment import PayPalPayment
from stockpulse.models.paypal_subscription import PayPalSubscription
from stockpulse.models.paypal_webhook_event import PayPalWebhookEvent

__all__ = [
    "Base",
    "PayPalPayment",
    "PayPalSubscription",
    "PayPalWebhookEvent",
]
