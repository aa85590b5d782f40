"""Liveness and readiness checks."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from stockpulse.config import get_settings
from stockpulse.database import get_session

from api.services.migrations import revision_state

router = APIRouter()


async def _migration_status(session: AsyncSession) -> str:
    if get_settings().skip_migration_check:
        return "skipped"
    try:
        async with session.begin_nested():
            state = await revision_state(await session.connection())
    except SQLAlchemyError:
        return "unknown"
    if state is None:
        return "unknown"
    return "current" if state.is_current else "pending"


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": "stockpulse-api"}


@router.get("/health/ready")
async def readiness_check():
    settings = get_settings()
    paypal_configured = bool(
        settings.paypal_client_id and settings.paypal_client_secret and settings.paypal_webhook_id
    )
    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
            migrations = await _migration_status(session)
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "database": "error", "error": str(exc)},
        )
    body = {
        "status": "ready" if migrations != "pending" else "not_ready",
        "database": "ok",
        "migrations": migrations,
        "paypal": {"configured": paypal_configured, "mode": settings.paypal_mode},
    }
    if migrations == "pending":
        return JSONResponse(status_code=503, content=body)
    return body
