"""Async SQLAlchemy engine with per-user row-level security.

Provides:
- Base: Declarative base for all CRM tables
- get_session(): Plain session (signup, login, health checks)
- user_session(): Session that sets app.current_user_id for RLS policies
- init_db() / close_db(): Startup and shutdown hooks
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.crm.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=10,
            max_overflow=5,
            echo=False,
        )

        # Reset session variables on every checkout so a previous user's
        # RLS identity never leaks into the next request
        @event.listens_for(_engine.sync_engine, "checkout")
        def reset_user_context(dbapi_conn: Any, connection_record: Any, connection_proxy: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("RESET ALL")
            cursor.close()

    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for all CRM models (public schema)."""


# ── Session Factories ───────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession with no user scoping."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@asynccontextmanager
async def user_session(user_id: str) -> AsyncGenerator[AsyncSession, None]:
    """Open a session whose connection carries the RLS user variable.

    The variable is set with is_local=false on a dedicated connection, so it
    survives the commits issued by the repository. The checkout listener
    clears it before the connection is handed out again.
    """
    engine = get_engine()
    async with engine.connect() as conn:
        await conn.execute(
            text("SELECT set_config('app.current_user_id', :uid, false)"),
            {"uid": user_id},
        )
        await conn.commit()
        async with AsyncSession(bind=conn, expire_on_commit=False) as session:
            yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Verify connectivity on startup. Tables are owned by Alembic."""
    engine = get_engine()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
