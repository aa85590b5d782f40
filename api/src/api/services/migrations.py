"""Alembic revision checks shared by startup and readiness."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection
from stockpulse.config import get_settings
from stockpulse.database import get_engine

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[4]


@dataclass(frozen=True)
class RevisionState:
    applied: frozenset[str]
    heads: frozenset[str]

    @property
    def is_current(self) -> bool:
        return not self.heads or self.applied == self.heads


def script_heads(root: Path = REPO_ROOT) -> frozenset[str] | None:
    """Head revisions shipped with the code, or None without an alembic.ini."""
    ini = root / "alembic.ini"
    if not ini.exists():
        return None
    cfg = AlembicConfig(str(ini))
    cfg.set_main_option("script_location", str(root / "alembic"))
    return frozenset(ScriptDirectory.from_config(cfg).get_heads())


async def applied_revisions(connection: AsyncConnection) -> frozenset[str]:
    result = await connection.execute(text("SELECT version_num FROM alembic_version"))
    return frozenset(str(value) for value in result.scalars() if value)


async def revision_state(connection: AsyncConnection) -> RevisionState | None:
    heads = script_heads()
    if heads is None:
        return None
    return RevisionState(applied=await applied_revisions(connection), heads=heads)


async def ensure_schema_current() -> None:
    """Refuse to start against a database that is behind the shipped migrations."""
    if get_settings().skip_migration_check:
        return
    try:
        async with get_engine().connect() as connection:
            state = await revision_state(connection)
    except SQLAlchemyError as exc:
        raise RuntimeError(
            "Could not read the alembic revision. Run `alembic upgrade head` first."
        ) from exc

    if state is None:
        logger.warning("alembic.ini not found; schema revision not checked")
        return
    if not state.is_current:
        raise RuntimeError(
            f"Database is at {sorted(state.applied)} but the code expects "
            f"{sorted(state.heads)}. Run `alembic upgrade head`."
        )
