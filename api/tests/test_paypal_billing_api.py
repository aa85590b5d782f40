"""Tests for PayPal plan, subscription and checkout endpoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest
from api.dependencies import get_subscription_updater
from api.services.subscription_updater import SubscriptionStateUpdater
from httpx import AsyncClient
from stockpulse.exceptions import PersistenceError

STANDARD_PLAN = "P-38H32373Y6043933CNB7A3AQ"
PREMIUM_PLAN = "P-TEST_PREMIUM"


def _details(status="ACTIVE", next_billing=None, update_time="2024-05-01T10:00:00Z"):
    next_billing = next_billing or datetime.now(UTC) + timedelta(days=30)
    return {
        "id": "I-SUB1",
        "status": status,
        "plan_id": STANDARD_PLAN,
        "update_time": update_time,
        "subscriber": {"email_address": "Buyer@Example.com"},
        "billing_info": {"next_billing_time": next_billing.strftime("%Y-%m-%dT%H:%M:%SZ")},
    }


@pytest.mark.asyncio
async def test_create_catalog_plan(client: AsyncClient, fake_paypal):
    response = await client.post("/api/paypal/create-plan", json={"planType": "monthly"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["product"]["id"] == "PROD-1"
    plan = fake_paypal.created_plans[0]
    assert plan["product_id"] == "PROD-1"
    assert plan["taxes"] == {"percentage": "10", "inclusive": False}
    cycle = plan["billing_cycles"][0]
    assert cycle["frequency"]["interval_unit"] == "MONTH"
    assert cycle["pricing_scheme"]["fixed_price"] == {"value": "1000", "currency_code": "JPY"}


@pytest.mark.asyncio
async def test_create_plan_rejects_unknown_type(client: AsyncClient, fake_paypal):
    response = await client.post("/api/paypal/create-plan", json={"planType": "weekly"})

    assert response.status_code == 400
    assert fake_paypal.created_products == []


@pytest.mark.asyncio
async def test_create_subscription_reuses_existing_plan(client: AsyncClient, fake_paypal, store):
    fake_paypal.plans["P-EXISTING"] = {"id": "P-EXISTING"}

    response = await client.post(
        "/api/paypal/create-subscription",
        json={
            "planId": "P-EXISTING",
            "planType": "monthly",
            "amount": "1000",
            "currency": "JPY",
            "interval": "month",
        },
    )

    assert response.status_code == 200
    assert response.json() == {
        "subscriptionId": "I-NEW-1",
        "approvalUrl": "https://paypal.test/approve/I-NEW-1",
        "planId": "P-EXISTING",
    }
    assert fake_paypal.created_plans == []
    assert fake_paypal.created_subscriptions[0]["plan_id"] == "P-EXISTING"
    records = await store.subscriptions()
    assert [(r.subscription_id, r.status, r.plan_type) for r in records] == [
        ("I-NEW-1", "CREATED", "monthly")
    ]


@pytest.mark.asyncio
async def test_create_subscription_creates_missing_plan(client: AsyncClient, fake_paypal):
    response = await client.post(
        "/api/paypal/create-subscription",
        json={
            "planId": "P-UNKNOWN",
            "planType": "premium",
            "amount": "3000",
            "currency": "JPY",
            "interval": "year",
        },
    )

    assert response.status_code == 200
    assert response.json()["planId"] == "P-NEW-1"
    plan = fake_paypal.created_plans[0]
    assert plan["product_id"] == "ai-stock-analysis-premium"
    assert plan["billing_cycles"][0]["frequency"]["interval_unit"] == "YEAR"


@pytest.mark.asyncio
async def test_confirm_rejects_plan_name_mismatch(client: AsyncClient, fake_paypal):
    response = await client.post(
        "/api/paypal/subscription/confirm",
        json={"subscriptionID": "I-SUB1", "planId": STANDARD_PLAN, "planName": "プレミアム"},
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_confirm_stores_paypal_details(client: AsyncClient, fake_paypal, store):
    fake_paypal.subscriptions["I-SUB1"] = _details()

    response = await client.post(
        "/api/paypal/subscription/confirm",
        json={"subscriptionID": "I-SUB1", "planId": STANDARD_PLAN, "planName": "スタンダード"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["hasActiveSubscription"] is True
    assert body["subscription"]["subscriberEmail"] == "buyer@example.com"
    records = await store.subscriptions()
    assert [(r.status, r.plan_type) for r in records] == [("ACTIVE", "standard")]


@pytest.mark.asyncio
async def test_confirm_unknown_subscription_is_not_found(client: AsyncClient):
    response = await client.post(
        "/api/paypal/subscription/confirm",
        json={"subscriptionID": "I-MISSING", "planId": STANDARD_PLAN, "planName": "スタンダード"},
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_status_of_unknown_subscription(client: AsyncClient):
    response = await client.get("/api/paypal/subscription/I-NOPE")

    assert response.status_code == 200
    assert response.json() == {
        "hasActiveSubscription": False,
        "planType": None,
        "status": "NONE",
        "subscription": None,
    }


@pytest.mark.asyncio
async def test_status_is_inactive_after_period_end(client: AsyncClient, fake_paypal):
    fake_paypal.subscriptions["I-SUB1"] = _details(
        next_billing=datetime.now(UTC) - timedelta(days=1)
    )
    await client.post(
        "/api/paypal/subscription/confirm",
        json={"subscriptionID": "I-SUB1", "planId": STANDARD_PLAN, "planName": "スタンダード"},
    )

    response = await client.get("/api/paypal/subscription/I-SUB1")

    body = response.json()
    assert body["status"] == "ACTIVE"
    assert body["planType"] == "standard"
    assert body["hasActiveSubscription"] is False


@pytest.mark.asyncio
async def test_status_refresh_falls_back_to_stored_record(client: AsyncClient, fake_paypal):
    fake_paypal.subscriptions["I-SUB1"] = _details()
    await client.post(
        "/api/paypal/subscription/confirm",
        json={"subscriptionID": "I-SUB1", "planId": STANDARD_PLAN, "planName": "スタンダード"},
    )
    del fake_paypal.subscriptions["I-SUB1"]

    response = await client.get("/api/paypal/subscription/I-SUB1", params={"refresh": "true"})

    assert response.status_code == 200
    assert response.json()["hasActiveSubscription"] is True


@pytest.mark.asyncio
async def test_status_refresh_applies_cancellation(client: AsyncClient, fake_paypal):
    fake_paypal.subscriptions["I-SUB1"] = _details()
    await client.post(
        "/api/paypal/subscription/confirm",
        json={"subscriptionID": "I-SUB1", "planId": STANDARD_PLAN, "planName": "スタンダード"},
    )
    fake_paypal.subscriptions["I-SUB1"] = _details(
        status="CANCELLED", update_time="2024-05-02T10:00:00Z"
    )

    response = await client.get("/api/paypal/subscription/I-SUB1", params={"refresh": "true"})

    assert response.json()["status"] == "CANCELLED"
    assert response.json()["hasActiveSubscription"] is False


@pytest.mark.asyncio
async def test_invoice_requires_amount_and_currency(client: AsyncClient):
    response = await client.post("/api/paypal/create-invoice", json={"planName": "スタンダード"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_single_stock_invoice_link(client: AsyncClient):
    response = await client.post(
        "/api/paypal/create-invoice",
        json={
            "amount": "500",
            "currency": "JPY",
            "productType": "single_stock",
            "stockSymbol": "7203",
        },
    )

    assert response.status_code == 200
    url = urlparse(response.json()["url"])
    params = parse_qs(url.query)
    assert url.netloc == "www.paypal.com"
    assert params["cmd"] == ["_xclick"]
    assert params["amount"] == ["500"]
    assert params["item_name"] == ["7203 永久分析権"]
    assert params["business"] == ["client-id"]


class FailingUpdater:
    async def apply_status(self, *args, **kwargs):
        raise PersistenceError("Could not store PayPal subscription I-NEW-1")

    async def apply_provider_details(self, *args, **kwargs):
        raise PersistenceError("Could not store PayPal subscription I-SUB1")

    async def change_plan(self, *args, **kwargs):
        raise PersistenceError("Could not change plan of PayPal subscription I-SUB1")


@pytest.mark.asyncio
async def test_create_subscription_storage_failure_is_json_500(app, client: AsyncClient):
    app.dependency_overrides[get_subscription_updater] = FailingUpdater

    response = await client.post(
        "/api/paypal/create-subscription",
        json={"planId": "P-UNKNOWN", "planType": "basic", "amount": "500"},
    )

    assert response.status_code == 500
    assert response.json() == {
        "error": "Could not store subscription",
        "details": "Could not store PayPal subscription I-NEW-1",
    }


@pytest.mark.asyncio
async def test_confirm_storage_failure_is_json_500(app, client: AsyncClient, fake_paypal):
    app.dependency_overrides[get_subscription_updater] = FailingUpdater
    fake_paypal.subscriptions["I-SUB1"] = _details()

    response = await client.post(
        "/api/paypal/subscription/confirm",
        json={"subscriptionID": "I-SUB1", "planId": STANDARD_PLAN, "planName": "スタンダード"},
    )

    assert response.status_code == 500
    assert response.json()["error"] == "Could not store subscription"


@pytest.mark.asyncio
async def test_change_plan_updates_paypal_and_store(client: AsyncClient, fake_paypal, store):
    fake_paypal.subscriptions["I-SUB1"] = _details()
    await client.post(
        "/api/paypal/subscription/confirm",
        json={"subscriptionID": "I-SUB1", "planId": STANDARD_PLAN, "planName": "スタンダード"},
    )

    response = await client.post(
        "/api/paypal/change-subscription-plan",
        json={"subscriptionId": "I-SUB1", "newPlanId": PREMIUM_PLAN},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["planType"] == "premium"
    assert body["subscription"]["planId"] == PREMIUM_PLAN
    assert body["subscription"]["status"] == "ACTIVE"
    assert fake_paypal.plan_changes == [("I-SUB1", PREMIUM_PLAN)]
    records = await store.subscriptions()
    assert [(r.plan_id, r.plan_type, r.status) for r in records] == [
        (PREMIUM_PLAN, "premium", "ACTIVE")
    ]


@pytest.mark.asyncio
async def test_change_plan_rejects_unknown_plan(client: AsyncClient, fake_paypal):
    fake_paypal.subscriptions["I-SUB1"] = _details()

    response = await client.post(
        "/api/paypal/change-subscription-plan",
        json={"subscriptionId": "I-SUB1", "newPlanId": "P-ELSEWHERE"},
    )

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert fake_paypal.plan_changes == []


@pytest.mark.asyncio
async def test_change_plan_of_unknown_subscription_is_not_found(client: AsyncClient, store):
    response = await client.post(
        "/api/paypal/change-subscription-plan",
        json={"subscriptionId": "I-MISSING", "newPlanId": PREMIUM_PLAN},
    )

    assert response.status_code == 404
    assert await store.subscriptions() == []


@pytest.mark.asyncio
async def test_change_plan_storage_failure_is_json_500(app, client: AsyncClient, fake_paypal):
    app.dependency_overrides[get_subscription_updater] = FailingUpdater
    fake_paypal.subscriptions["I-SUB1"] = _details()

    response = await client.post(
        "/api/paypal/change-subscription-plan",
        json={"subscriptionId": "I-SUB1", "newPlanId": PREMIUM_PLAN},
    )

    assert response.status_code == 500
    assert response.json()["error"] == "Could not store subscription"


@pytest.mark.asyncio
async def test_payment_history_lists_recorded_sales(client: AsyncClient, db_session):
    updater = SubscriptionStateUpdater(db_session)
    await updater.record_payment(
        "I-SUB1", "COMPLETED", {"id": "SALE-1", "amount": {"total": "1000", "currency": "JPY"}}
    )
    await updater.record_payment("I-SUB1", "DENIED", {"id": "SALE-2", "reason_code": "REFUSED"})
    await updater.record_payment("I-OTHER", "COMPLETED", {"id": "SALE-3"})
    await db_session.commit()

    response = await client.get("/api/paypal/subscription/I-SUB1/payments")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    payments = {p["paymentId"]: p for p in body["payments"]}
    assert set(payments) == {"SALE-1", "SALE-2"}
    assert Decimal(payments["SALE-1"]["amount"]) == Decimal("1000")
    assert payments["SALE-1"]["currency"] == "JPY"
    assert payments["SALE-2"]["status"] == "DENIED"
    assert payments["SALE-2"]["reasonCode"] == "REFUSED"


@pytest.mark.asyncio
async def test_payment_history_limit_is_bounded(client: AsyncClient):
    response = await client.get("/api/paypal/subscription/I-SUB1/payments", params={"limit": 0})

    assert response.status_code == 422
