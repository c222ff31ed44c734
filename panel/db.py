"""
Database connection pool and RLS-scoped connection managers.

All database access goes through user_conn() or system_conn().
Never use pool.acquire() directly outside this module and the change
listener, which needs a dedicated connection of its own.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager

import asyncpg

from panel.config import settings

pool: asyncpg.Pool | None = None


async def init_pool(dsn: str | None = None) -> asyncpg.Pool:
    """
    Initialize the connection pool.
    Called once when a workspace opens against Postgres.
    """
    global pool
    dsn = dsn or settings.DATABASE_URL
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable is required")
    if pool is None:
        pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=settings.DB_POOL_MIN_SIZE,
            max_size=settings.DB_POOL_MAX_SIZE,
            command_timeout=settings.DB_COMMAND_TIMEOUT,
            init=_init_connection,
        )
    return pool


async def close_pool() -> None:
    """
    Close the connection pool.
    Called when the workspace closes.
    """
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    """
    Initialize each new connection.
    JSON columns (and json_agg results) decode to Python dicts/lists.
    """
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )
    await conn.set_type_codec(
        "json",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


def _require_pool() -> asyncpg.Pool:
    if pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return pool


@asynccontextmanager
async def user_conn(user_id: str):
    """
    Acquire a connection scoped to the signed-in user via RLS.

    Usage:
        async with user_conn(session.user_id) as conn:
            rows = await conn.fetch('SELECT * FROM "Employee"')

    The whole block runs in one transaction; app.user_id is set LOCAL so it
    never leaks to the next borrower of the connection.
    """
    async with _require_pool().acquire() as conn:
        async with conn.transaction():
            await conn.execute(
                "SELECT set_config('app.user_id', $1, true)",
                str(user_id),
            )
            yield conn


@asynccontextmanager
async def system_conn():
    """
    Acquire a connection without user scoping.

    For migrations, seeding and tests only. If a panel operation reaches for
    this, it is probably doing it wrong.
    """
    async with _require_pool().acquire() as conn:
        async with conn.transaction():
            await conn.execute("SELECT set_config('app.user_id', '', true)")
            yield conn
