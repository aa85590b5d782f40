"""PayPal catalog, plan and subscription request builders."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

from stockpulse.config import Settings
from stockpulse.exceptions import AuthError, ConfigurationError, PayPalAPIError

logger = logging.getLogger(__name__)

PLAN_CONFIGS: dict[str, dict[str, str]] = {
    "monthly": {
        "name": "株式分析 月額プラン",
        "description": "AI駆動株式分析サービス月額プラン（1,000円/月）",
        "interval_unit": "MONTH",
        "price": "1000",
    },
    "yearly": {
        "name": "株式分析 年額プラン",
        "description": "AI駆動株式分析サービス年額プラン（10,000円/年）",
        "interval_unit": "YEAR",
        "price": "10000",
    },
}

INTERVAL_UNITS = {"month": "MONTH", "monthly": "MONTH", "year": "YEAR", "yearly": "YEAR"}

PAYPAL_CHECKOUT_URL = "https://www.paypal.com/cgi-bin/webscr"


def build_product(settings: Settings) -> dict[str, Any]:
    site_url = settings.site_url.rstrip("/")
    return {
        "name": "株式分析サービス",
        "description": "AI駆動の株式テクニカル分析サービス",
        "type": "SERVICE",
        "category": "SOFTWARE",
        "home_url": site_url,
    }


def _billing_cycle(interval_unit: str, price: str, currency: str) -> dict[str, Any]:
    return {
        "frequency": {"interval_unit": interval_unit, "interval_count": 1},
        "tenure_type": "REGULAR",
        "sequence": 1,
        "total_cycles": 0,
        "pricing_scheme": {"fixed_price": {"value": price, "currency_code": currency}},
    }


_PAYMENT_PREFERENCES = {
    "auto_bill_outstanding": True,
    "setup_fee_failure_action": "CONTINUE",
    "payment_failure_threshold": 3,
}


def build_catalog_plan(product_id: str, plan_type: str, settings: Settings) -> dict[str, Any]:
    """Plan body for one of the fixed pricing-page plans (JPY, 10% tax)."""
    config = PLAN_CONFIGS.get(plan_type)
    if config is None:
        raise ValueError(f"Invalid plan type: {plan_type}")
    return {
        "product_id": product_id,
        "name": config["name"],
        "description": config["description"],
        "status": "ACTIVE",
        "billing_cycles": [
            _billing_cycle(config["interval_unit"], config["price"], settings.paypal_currency)
        ],
        "payment_preferences": dict(_PAYMENT_PREFERENCES),
        "taxes": {"percentage": "10", "inclusive": False},
    }


def build_custom_plan(
    product_id: str,
    plan_type: str,
    amount: str,
    currency: str,
    interval: str,
) -> dict[str, Any]:
    interval_unit = INTERVAL_UNITS.get(interval.strip().lower())
    if interval_unit is None:
        raise ValueError(f"Invalid interval: {interval}")
    return {
        "product_id": product_id,
        "name": f"AI Stock Analysis - {plan_type}",
        "description": f"AI-powered stock analysis subscription - {plan_type} plan",
        "status": "ACTIVE",
        "billing_cycles": [_billing_cycle(interval_unit, amount, currency)],
        "payment_preferences": dict(_PAYMENT_PREFERENCES),
    }


def build_subscription(plan_id: str, settings: Settings, now: datetime | None = None) -> dict[str, Any]:
    current = now or datetime.now(UTC)
    site_url = settings.site_url.rstrip("/")
    return {
        "plan_id": plan_id,
        "start_time": (current + timedelta(minutes=1)).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "application_context": {
            "brand_name": settings.paypal_brand_name,
            "locale": "ja-JP",
            "shipping_preference": "NO_SHIPPING",
            "user_action": "SUBSCRIBE_NOW",
            "payment_method": {
                "payer_selected": "PAYPAL",
                "payee_preferred": "IMMEDIATE_PAYMENT_REQUIRED",
            },
            "return_url": f"{site_url}/subscription/success",
            "cancel_url": f"{site_url}/subscription/cancel",
        },
    }


def find_link(resource: dict[str, Any], rel: str) -> str | None:
    for link in resource.get("links") or []:
        if isinstance(link, dict) and link.get("rel") == rel:
            return link.get("href")
    return None


def validate_catalog_plan(plan_id: str, plan_name: str, settings: Settings) -> str | None:
    """Return an error message if the plan id/name pair is not offered."""
    plan = settings.plan_catalog().get(plan_id)
    if plan is None:
        return f"Invalid plan id: {plan_id}"
    expected_name = plan[1]
    if expected_name != plan_name:
        return f"Plan name mismatch: {plan_name} (expected {expected_name})"
    return None


def build_checkout_url(
    *,
    product_type: str | None,
    amount: str,
    currency: str,
    plan_name: str | None,
    stock_symbol: str | None,
    settings: Settings,
) -> str:
    """PayPal Standard checkout link for a one-off stock or a monthly plan."""
    site_url = settings.site_url.rstrip("/")
    params: dict[str, str] = {"business": settings.paypal_client_id}
    if product_type == "single_stock":
        params.update(
            {
                "cmd": "_xclick",
                "item_name": f"{stock_symbol or ''} 永久分析権".strip(),
                "amount": amount,
            }
        )
    else:
        params.update(
            {
                "cmd": "_xclick-subscriptions",
                "item_name": plan_name or "",
                "a3": amount,
                "p3": "1",
                "t3": "M",
            }
        )
    params.update(
        {
            "currency_code": currency,
            "return": f"{site_url}/payment-success",
            "cancel_return": f"{site_url}/payment-cancel",
        }
    )
    return f"{PAYPAL_CHECKOUT_URL}?{urlencode(params)}"


def map_paypal_exception(exc: Exception) -> tuple[int, str]:
    """Map PayPal client errors to an HTTP status and client-safe message."""
    if isinstance(exc, ConfigurationError):
        return 500, "PayPal is not configured"
    if isinstance(exc, AuthError):
        return 502, "PayPal authentication failed"
    if isinstance(exc, PayPalAPIError):
        if exc.status_code == 404:
            return 404, "PayPal resource not found"
        return 502, "PayPal request failed"
    logger.warning("Unexpected PayPal error: %s", exc.__class__.__name__)
    return 500, "Internal server error"
