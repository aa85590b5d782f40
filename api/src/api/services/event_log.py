"""Append-only record of processed PayPal webhook events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from stockpulse.models import PayPalWebhookEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessedEventLogEntry:
    event_type: str
    subscription_id: str | None
    raw_payload: dict[str, Any]
    outcome: str
    event_id: str | None = None
    error: str | None = None
    processed_at: datetime | None = None


class EventLogRecorder:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def record(self, entry: ProcessedEventLogEntry) -> bool:
        """Append *entry*; failures are logged and reported as False."""
        try:
            async with self._db.begin_nested():
                self._db.add(
                    PayPalWebhookEvent(
                        event_id=entry.event_id,
                        event_type=entry.event_type,
                        subscription_id=entry.subscription_id,
                        outcome=entry.outcome,
                        error=entry.error,
                        raw_payload=entry.raw_payload,
                        processed_at=entry.processed_at or datetime.now(UTC),
                    )
                )
                await self._db.flush()
        except SQLAlchemyError:
            logger.exception(
                "Failed to record PayPal webhook event %s (%s)",
                entry.event_id,
                entry.event_type,
            )
            return False
        return True
