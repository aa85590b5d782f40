"""FastAPI dependency injection."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from stockpulse.database import get_session_factory
from stockpulse.services.paypal_client import PayPalClient

from api.services.event_log import EventLogRecorder
from api.services.subscription_updater import SubscriptionStateUpdater
from api.services.webhook_dispatcher import WebhookDispatcher


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_paypal_client(request: Request) -> PayPalClient:
    """Shared PayPal client created once per application."""
    client = getattr(request.app.state, "paypal_client", None)
    if client is None:
        client = PayPalClient()
        request.app.state.paypal_client = client
    return client


def get_subscription_updater(db: AsyncSession = Depends(get_db)) -> SubscriptionStateUpdater:
    return SubscriptionStateUpdater(db)


def get_dispatcher(
    updater: SubscriptionStateUpdater = Depends(get_subscription_updater),
) -> WebhookDispatcher:
    return WebhookDispatcher(updater)


def get_event_log(db: AsyncSession = Depends(get_db)) -> EventLogRecorder:
    return EventLogRecorder(db)
