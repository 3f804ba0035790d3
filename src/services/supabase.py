"""Supabase Postgres access with RLS context.

Every user-bound connection runs as the ``authenticated`` role with
``app.current_user_id`` set for the transaction, so Postgres Row-Level Security
policies see the correct identity.  Scheduler invocations instead run as
``service_role``, which bypasses RLS and can reach every user's rows.

Uses ``asyncpg`` for direct database access; the Supabase Python client
doesn't support transaction-scoped session variables.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("groofit.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.supabase_db_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=30,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)",
        s.db_pool_min_size,
        s.db_pool_max_size,
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(
    user_id: uuid.UUID | None = None,
    elevated: bool = False,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection inside a transaction with the RLS context set.

    Usage::

        async with get_connection(user_id=ctx.user_id) as conn:
            row = await conn.fetchrow("SELECT * FROM fitbit_credentials WHERE user_id = $1", ctx.user_id)

    The role and ``app.current_user_id`` are scoped to the current transaction
    so they disappear automatically when the connection is returned to the pool.

    Args:
        user_id:  Authenticated user; statements run under RLS as this user.
        elevated: Run as ``service_role`` (scheduler principal).
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if elevated:
                await conn.execute("SET LOCAL ROLE service_role")
            elif user_id:
                await conn.execute("SET LOCAL ROLE authenticated")
                # SET LOCAL cannot take bind parameters
                await conn.execute(
                    "SELECT set_config('app.current_user_id', $1, true)", str(user_id)
                )

            yield conn
