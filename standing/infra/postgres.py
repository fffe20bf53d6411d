"""AsyncPG pool management."""

from __future__ import annotations

import json
from importlib import resources
from typing import Optional

import asyncpg

from standing.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def init_pool() -> asyncpg.pool.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            dsn=settings.postgres_url,
            min_size=settings.postgres_min_pool_size,
            max_size=settings.postgres_max_pool_size,
            init=_init_connection,
        )
        if settings.postgres_apply_schema:
            await apply_schema(_pool)
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def schema_sql() -> str:
    return resources.files("standing.infra").joinpath("schema.sql").read_text(encoding="utf-8")


async def apply_schema(pool: asyncpg.pool.Pool) -> None:
    """Create tables and indexes if they do not exist yet."""
    async with pool.acquire() as conn:
        await conn.execute(schema_sql())
