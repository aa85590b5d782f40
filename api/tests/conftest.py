"""API test configuration."""

from __future__ import annotations

from typing import Any

import pytest
from api.dependencies import get_db, get_paypal_client
from api.main import create_app
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from stockpulse.config import reset_settings_cache
from stockpulse.exceptions import PayPalAPIError
from stockpulse.models import Base, PayPalPayment, PayPalSubscription, PayPalWebhookEvent


class FakePayPalClient:
    """Stand-in for PayPalClient with canned responses."""

    def __init__(self) -> None:
        self.verify_result: bool | Exception = True
        self.plans: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.created_products: list[dict[str, Any]] = []
        self.created_plans: list[dict[str, Any]] = []
        self.created_subscriptions: list[dict[str, Any]] = []
        self.verified: list[dict[str, Any]] = []
        self.plan_changes: list[tuple[str, str]] = []

    async def verify_webhook_signature(self, webhook_event, metadata) -> bool:
        self.verified.append(webhook_event)
        if isinstance(self.verify_result, Exception):
            raise self.verify_result
        return self.verify_result and not metadata.missing()

    async def create_product(self, product):
        self.created_products.append(product)
        return {"id": "PROD-1", **product}

    async def create_plan(self, plan):
        self.created_plans.append(plan)
        plan_id = f"P-NEW-{len(self.created_plans)}"
        self.plans[plan_id] = {"id": plan_id, **plan}
        return self.plans[plan_id]

    async def get_plan(self, plan_id):
        return self.plans.get(plan_id)

    async def create_subscription(self, subscription):
        self.created_subscriptions.append(subscription)
        return {
            "id": "I-NEW-1",
            "status": "APPROVAL_PENDING",
            "links": [
                {"rel": "approve", "href": "https://paypal.test/approve/I-NEW-1"},
                {"rel": "self", "href": "https://paypal.test/v1/billing/subscriptions/I-NEW-1"},
            ],
        }

    async def get_subscription(self, subscription_id):
        details = self.subscriptions.get(subscription_id)
        if details is None:
            raise PayPalAPIError("not found", status_code=404, detail={"name": "RESOURCE_NOT_FOUND"})
        return details

    async def update_subscription_plan(self, subscription_id, plan_id) -> None:
        if subscription_id not in self.subscriptions:
            raise PayPalAPIError("not found", status_code=404, detail={"name": "RESOURCE_NOT_FOUND"})
        self.plan_changes.append((subscription_id, plan_id))

    async def close(self) -> None:
        return None


@pytest.fixture(autouse=True)
def _paypal_env(monkeypatch):
    monkeypatch.setenv("PAYPAL_CLIENT_ID", "client-id")
    monkeypatch.setenv("PAYPAL_CLIENT_SECRET", "client-secret")
    monkeypatch.setenv("PAYPAL_WEBHOOK_ID", "WH-TEST")
    monkeypatch.setenv("SKIP_MIGRATION_CHECK", "true")
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN.
    @event.listens_for(eng.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_paypal():
    return FakePayPalClient()


@pytest.fixture
def app(session_factory, fake_paypal):
    a = create_app()

    async def _override_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    a.dependency_overrides[get_db] = _override_db
    a.dependency_overrides[get_paypal_client] = lambda: fake_paypal
    return a


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class StoreReader:
    """Reads committed rows through a fresh session."""

    def __init__(self, session_factory) -> None:
        self._factory = session_factory

    async def _all(self, model):
        async with self._factory() as session:
            result = await session.execute(select(model))
            return list(result.scalars().all())

    async def subscriptions(self) -> list[PayPalSubscription]:
        return await self._all(PayPalSubscription)

    async def events(self) -> list[PayPalWebhookEvent]:
        return await self._all(PayPalWebhookEvent)

    async def payments(self) -> list[PayPalPayment]:
        return await self._all(PayPalPayment)


@pytest.fixture
def store(session_factory):
    return StoreReader(session_factory)
