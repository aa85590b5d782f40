"""PayPal webhook receiver."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from stockpulse.exceptions import (
    AuthError,
    ConfigurationError,
    PersistenceError,
    VerificationFailure,
    VerificationUnavailable,
)
from stockpulse.schemas.paypal import TransmissionMetadata, WebhookEvent, parse_paypal_time
from stockpulse.services.paypal_client import PayPalClient

from api.dependencies import get_db, get_dispatcher, get_event_log, get_paypal_client
from api.responses import error_response, method_not_allowed
from api.services.event_log import EventLogRecorder, ProcessedEventLogEntry
from api.services.webhook_dispatcher import OUTCOME_FAILED, DispatchOutcome, WebhookDispatcher

logger = logging.getLogger(__name__)
router = APIRouter()

UNKNOWN_EVENT_TYPE = "UNKNOWN"


async def _verify_delivery(
    paypal: PayPalClient,
    payload: dict,
    metadata: TransmissionMetadata,
) -> None:
    if not await paypal.verify_webhook_signature(payload, metadata):
        raise VerificationFailure("PayPal did not confirm the webhook signature")


@router.post("/webhook")
async def paypal_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    paypal: PayPalClient = Depends(get_paypal_client),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    event_log: EventLogRecorder = Depends(get_event_log),
):
    try:
        try:
            payload = json.loads(await request.body())
        except ValueError:
            return error_response(400, "Invalid webhook payload")
        if not isinstance(payload, dict):
            return error_response(400, "Invalid webhook payload")

        metadata = TransmissionMetadata.from_headers(request.headers)
        try:
            await _verify_delivery(paypal, payload, metadata)
        except VerificationFailure:
            logger.warning(
                "Rejected PayPal webhook transmission_id=%s", metadata.transmission_id
            )
            return error_response(401, "Invalid signature")
        except (ConfigurationError, AuthError, VerificationUnavailable) as exc:
            logger.error("PayPal webhook verification unavailable: %s", exc)
            return error_response(500, "Webhook processing failed", str(exc))

        event = WebhookEvent.from_payload(payload)
        if not event.event_type:
            logger.warning("Verified PayPal webhook without event_type id=%s", event.event_id)
        else:
            logger.info("PayPal webhook: %s id=%s", event.event_type, event.event_id)

        failure: PersistenceError | None = None
        try:
            outcome = await dispatcher.dispatch(
                event,
                received_at=parse_paypal_time(metadata.transmission_time),
            )
        except PersistenceError as exc:
            logger.error("PayPal webhook %s not applied: %s", event.event_type, exc)
            failure = exc
            outcome = DispatchOutcome(
                event_type=event.event_type,
                subscription_id=event.subscription_id,
                outcome=OUTCOME_FAILED,
                handled=True,
            )

        await event_log.record(
            ProcessedEventLogEntry(
                event_type=event.event_type or UNKNOWN_EVENT_TYPE,
                subscription_id=outcome.subscription_id or event.subscription_id,
                raw_payload=payload,
                outcome=outcome.outcome,
                event_id=event.event_id,
                error=str(failure) if failure else None,
            )
        )

        if failure is not None:
            # Non-2xx makes PayPal redeliver; the log entry above still commits.
            return error_response(500, "Webhook processing failed", str(failure))
        return {"success": True, "eventType": event.event_type or None}
    except Exception as exc:
        logger.exception("PayPal webhook processing failed")
        await db.rollback()
        return error_response(500, "Webhook processing failed", str(exc))


@router.api_route(
    "/webhook",
    methods=["GET", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def paypal_webhook_method_not_allowed():
    return method_not_allowed("POST")
