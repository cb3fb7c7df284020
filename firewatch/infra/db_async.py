# firewatch/infra/db_async.py
"""
Process-wide asyncpg pool for the incident store.

The HTTP lifespan, the migration runner and the seed script each open the
pool once with ``init_pool()`` and release it with ``close_pool()``.
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from firewatch.config import settings
from firewatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


async def init_pool() -> None:
    global _pool

    if _pool is not None:
        return

    _pool = await asyncpg.create_pool(
        dsn=settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        timeout=settings.pg_connect_timeout,
        command_timeout=60,
        server_settings={
            "application_name": "firewatch",
            "statement_timeout": str(settings.pg_statement_timeout_ms),
        },
    )
    logger.info(f"Incident store pool ready: size={settings.pg_pool_min}..{settings.pg_pool_max}")


async def close_pool() -> None:
    global _pool

    if _pool is None:
        return

    pool, _pool = _pool, None
    await pool.close()
    logger.info("Incident store pool closed")


async def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")
    return _pool


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a pooled connection.

    With ``autocommit=False`` the block is one transaction: committed when
    it exits normally, rolled back when it raises.
    """
    pool = await get_pool()
    async with pool.acquire() as conn:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
