from __future__ import annotations

import logging
from typing import Optional

import asyncpg

logger = logging.getLogger("portal")

APPLICATION_NAME = "trade-portal-lifecycle"

portal_db_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool(
    database_url: str,
    *,
    min_size: int = 1,
    max_size: int = 5,
    timeout: int = 10,
) -> Optional[asyncpg.pool.Pool]:
    """Abre el pool de pedidos y cotizaciones del portal.

    Cada WebSocket del feed de cambios retiene una conexion mientras esta
    abierto, por lo que ``max_size`` debe contemplar esos listeners ademas
    de las consultas de la API. Sin ``database_url`` el pool queda vacio y
    los endpoints responden 503.
    """
    global portal_db_pool
    if not database_url:
        portal_db_pool = None
        return None
    portal_db_pool = await asyncpg.create_pool(
        database_url,
        min_size=min_size,
        max_size=max_size,
        timeout=timeout,
        command_timeout=timeout,
        server_settings={"application_name": APPLICATION_NAME},
    )
    logger.info("Pool del portal listo (min=%s, max=%s)", min_size, max_size)
    return portal_db_pool


def set_pool(pool: Optional[asyncpg.pool.Pool]) -> None:
    global portal_db_pool
    portal_db_pool = pool


async def close_pool() -> None:
    global portal_db_pool
    pool = portal_db_pool
    if pool is None:
        return
    try:
        await pool.close()
    finally:
        portal_db_pool = None


def get_pool() -> asyncpg.pool.Pool:
    if portal_db_pool is None:
        raise RuntimeError("Base de pedidos del portal no disponible; revise DATABASE_URL")
    return portal_db_pool
