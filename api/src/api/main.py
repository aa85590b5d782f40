"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from stockpulse.config import get_settings
from stockpulse.database import close_engine

from api.routers import health, paypal_billing, paypal_webhook
from api.services.migrations import ensure_schema_current

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    try:
        await ensure_schema_current()
        yield
    finally:
        paypal_client = getattr(app.state, "paypal_client", None)
        if paypal_client is not None:
            await paypal_client.close()
        await close_engine()


def _warn_missing_paypal_config() -> None:
    settings = get_settings()
    if not settings.paypal_client_id or not settings.paypal_client_secret:
        logger.warning("PAYPAL_CLIENT_ID/PAYPAL_CLIENT_SECRET not set; PayPal calls will fail")
    if not settings.paypal_webhook_id:
        logger.warning("PAYPAL_WEBHOOK_ID not set; webhooks cannot be verified")


def _configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app() -> FastAPI:
    _configure_logging()
    app = FastAPI(title="StockPulse API", version="0.1.0", lifespan=lifespan)
    settings = get_settings()
    _warn_missing_paypal_config()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.site_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(health.router, tags=["health"])
    app.include_router(paypal_webhook.router, prefix="/api/paypal", tags=["paypal"])
    app.include_router(paypal_billing.router, prefix="/api/paypal", tags=["paypal"])
    return app


app = create_app()
