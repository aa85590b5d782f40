"""PayPal plan, subscription and checkout endpoints."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from stockpulse.config import get_settings
from stockpulse.exceptions import PersistenceError
from stockpulse.models import PayPalPayment, PayPalSubscription
from stockpulse.schemas.paypal import SubscriptionStatus, as_utc
from stockpulse.services.paypal_client import PayPalClient

from api.dependencies import get_paypal_client, get_subscription_updater
from api.responses import error_response
from api.services.paypal_billing import (
    PLAN_CONFIGS,
    build_catalog_plan,
    build_checkout_url,
    build_custom_plan,
    build_product,
    build_subscription,
    find_link,
    map_paypal_exception,
    validate_catalog_plan,
)
from api.services.subscription_updater import SubscriptionStateUpdater

logger = logging.getLogger(__name__)
router = APIRouter()


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreatePlanRequest(_CamelModel):
    plan_type: str = Field(alias="planType")


class CreateSubscriptionRequest(_CamelModel):
    plan_id: str = Field(alias="planId", min_length=1)
    plan_type: str = Field(alias="planType", min_length=1)
    amount: str = Field(min_length=1)
    currency: str = Field(default="JPY", min_length=3, max_length=3)
    interval: str = "month"


class ConfirmSubscriptionRequest(_CamelModel):
    subscription_id: str = Field(alias="subscriptionID", min_length=1)
    plan_id: str = Field(alias="planId", min_length=1)
    plan_name: str = Field(alias="planName")


class ChangePlanRequest(_CamelModel):
    subscription_id: str = Field(alias="subscriptionId", min_length=1)
    new_plan_id: str = Field(alias="newPlanId", min_length=1)


class CreateInvoiceRequest(_CamelModel):
    plan_name: str | None = Field(default=None, alias="planName")
    amount: str | None = None
    currency: str | None = None
    product_type: str | None = Field(default=None, alias="productType")
    stock_symbol: str | None = Field(default=None, alias="stockSymbol")


def _serialize(record: PayPalSubscription) -> dict:
    def iso(value: datetime | None) -> str | None:
        value = as_utc(value)
        return value.isoformat() if value else None

    return {
        "subscriptionId": record.subscription_id,
        "status": record.status,
        "planId": record.plan_id,
        "planType": record.plan_type,
        "subscriberEmail": record.subscriber_email,
        "currentPeriodStart": iso(record.current_period_start),
        "currentPeriodEnd": iso(record.current_period_end),
        "lastEventAt": iso(record.last_event_at),
        "updatedAt": iso(record.updated_at),
    }


def _serialize_payment(payment: PayPalPayment) -> dict:
    created = as_utc(payment.created_at)
    return {
        "paymentId": payment.payment_id,
        "status": payment.status,
        "amount": str(payment.amount) if payment.amount is not None else None,
        "currency": payment.currency,
        "reasonCode": payment.reason_code,
        "createdAt": created.isoformat() if created else None,
    }


def is_active(record: PayPalSubscription | None, now: datetime | None = None) -> bool:
    if record is None or record.status != SubscriptionStatus.ACTIVE.value:
        return False
    period_end = as_utc(record.current_period_end)
    if period_end is None:
        return True
    return period_end > (now or datetime.now(UTC))


def _paypal_error(exc: Exception):
    status_code, message = map_paypal_exception(exc)
    logger.warning("PayPal billing call failed (%s): %s", status_code, exc)
    return error_response(status_code, message, getattr(exc, "detail", None))


def _persistence_error(exc: PersistenceError):
    logger.error("PayPal subscription not stored: %s", exc)
    return error_response(500, "Could not store subscription", str(exc))


@router.post("/create-plan")
async def create_plan(
    req: CreatePlanRequest,
    paypal: PayPalClient = Depends(get_paypal_client),
):
    if req.plan_type not in PLAN_CONFIGS:
        return error_response(400, "Invalid plan type", req.plan_type)
    settings = get_settings()
    try:
        product = await paypal.create_product(build_product(settings))
        plan = await paypal.create_plan(
            build_catalog_plan(str(product.get("id") or ""), req.plan_type, settings)
        )
    except Exception as exc:
        return _paypal_error(exc)
    logger.info("Created PayPal %s plan %s", req.plan_type, plan.get("id"))
    return {"success": True, "product": product, "plan": plan}


@router.post("/create-subscription")
async def create_subscription(
    req: CreateSubscriptionRequest,
    paypal: PayPalClient = Depends(get_paypal_client),
    updater: SubscriptionStateUpdater = Depends(get_subscription_updater),
):
    settings = get_settings()
    try:
        plan = await paypal.get_plan(req.plan_id)
        if plan is None:
            body = build_custom_plan(
                f"ai-stock-analysis-{req.plan_type}",
                req.plan_type,
                req.amount,
                req.currency,
                req.interval,
            )
            plan = await paypal.create_plan(body)
            logger.info("Created PayPal plan %s for %s", plan.get("id"), req.plan_type)
        plan_id = str(plan.get("id") or req.plan_id)
        subscription = await paypal.create_subscription(build_subscription(plan_id, settings))
    except ValueError as exc:
        return error_response(400, "Invalid subscription request", str(exc))
    except Exception as exc:
        return _paypal_error(exc)

    subscription_id = str(subscription.get("id") or "").strip()
    if not subscription_id:
        return error_response(502, "PayPal request failed", "Subscription id missing")

    try:
        await updater.apply_status(
            subscription_id,
            SubscriptionStatus.CREATED,
            datetime.now(UTC),
            {"plan_id": plan_id},
            plan_type=req.plan_type,
        )
    except PersistenceError as exc:
        return _persistence_error(exc)
    return {
        "subscriptionId": subscription_id,
        "approvalUrl": find_link(subscription, "approve"),
        "planId": plan_id,
    }


@router.post("/subscription/confirm")
async def confirm_subscription(
    req: ConfirmSubscriptionRequest,
    paypal: PayPalClient = Depends(get_paypal_client),
    updater: SubscriptionStateUpdater = Depends(get_subscription_updater),
):
    settings = get_settings()
    problem = validate_catalog_plan(req.plan_id, req.plan_name, settings)
    if problem:
        logger.warning("Rejected subscription confirm %s: %s", req.subscription_id, problem)
        return error_response(400, "Invalid plan", problem, success=False)

    try:
        details = await paypal.get_subscription(req.subscription_id)
    except Exception as exc:
        return _paypal_error(exc)

    plan_type = settings.plan_catalog()[req.plan_id][0]
    try:
        record = await updater.apply_provider_details(details, plan_type=plan_type)
    except PersistenceError as exc:
        return _persistence_error(exc)
    if record is None:
        return error_response(502, "PayPal request failed", "Unexpected subscription details")
    return {
        "success": True,
        "hasActiveSubscription": is_active(record),
        "subscription": _serialize(record),
    }


@router.get("/subscription/{subscription_id}")
async def get_subscription_status(
    subscription_id: str,
    refresh: bool = False,
    paypal: PayPalClient = Depends(get_paypal_client),
    updater: SubscriptionStateUpdater = Depends(get_subscription_updater),
):
    record = None
    if refresh:
        try:
            details = await paypal.get_subscription(subscription_id)
            record = await updater.apply_provider_details(details)
        except Exception as exc:
            # Stored state is still a valid answer.
            logger.warning("PayPal refresh failed for %s: %s", subscription_id, exc)
    if record is None:
        record = await updater.get(subscription_id)

    if record is None:
        return {
            "hasActiveSubscription": False,
            "planType": None,
            "status": "NONE",
            "subscription": None,
        }
    return {
        "hasActiveSubscription": is_active(record),
        "planType": record.plan_type,
        "status": record.status,
        "subscription": _serialize(record),
    }


@router.post("/change-subscription-plan")
async def change_subscription_plan(
    req: ChangePlanRequest,
    paypal: PayPalClient = Depends(get_paypal_client),
    updater: SubscriptionStateUpdater = Depends(get_subscription_updater),
):
    plan = get_settings().plan_catalog().get(req.new_plan_id)
    if plan is None:
        logger.warning(
            "Rejected plan change for %s: unknown plan %s", req.subscription_id, req.new_plan_id
        )
        return error_response(400, "Invalid plan", f"Invalid plan id: {req.new_plan_id}", success=False)

    try:
        await paypal.update_subscription_plan(req.subscription_id, req.new_plan_id)
    except Exception as exc:
        return _paypal_error(exc)

    try:
        record = await updater.change_plan(req.subscription_id, req.new_plan_id)
    except PersistenceError as exc:
        return _persistence_error(exc)
    return {
        "success": True,
        "subscriptionId": req.subscription_id,
        "planId": req.new_plan_id,
        "planType": plan[0],
        "subscription": _serialize(record) if record else None,
    }


@router.get("/subscription/{subscription_id}/payments")
async def list_subscription_payments(
    subscription_id: str,
    limit: int = Query(10, ge=1, le=100),
    updater: SubscriptionStateUpdater = Depends(get_subscription_updater),
):
    payments = await updater.list_payments(subscription_id, limit=limit)
    return {
        "success": True,
        "subscriptionId": subscription_id,
        "payments": [_serialize_payment(p) for p in payments],
    }


@router.post("/create-invoice")
async def create_invoice(req: CreateInvoiceRequest):
    if not req.amount or not req.currency:
        return error_response(400, "Missing required fields", "amount and currency are required")
    url = build_checkout_url(
        product_type=req.product_type,
        amount=req.amount,
        currency=req.currency,
        plan_name=req.plan_name,
        stock_symbol=req.stock_symbol,
        settings=get_settings(),
    )
    return {"success": True, "url": url}
