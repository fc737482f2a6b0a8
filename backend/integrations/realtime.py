"""Feed de cambios sobre LISTEN/NOTIFY de Postgres.

Cada suscripcion retiene una conexion del pool hasta que se llama a la
funcion de baja devuelta. Los triggers de la base publican en el canal
``<tabla>_changes`` un JSON con la fila afectada.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Set, Union

import asyncpg

logger = logging.getLogger("portal.realtime")

WATCHABLE_TABLES = frozenset({"orders", "quotes", "order_issues"})
_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

ChangeHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], Awaitable[None]]


def channel_for(table: str) -> str:
    if table not in WATCHABLE_TABLES or not _IDENT_RE.match(table):
        raise ValueError(f"Tabla sin feed de cambios: {table}")
    return f"{table}_changes"


def decode_payload(table: str, payload: str) -> Dict[str, Any]:
    try:
        data = json.loads(payload) if payload else {}
    except json.JSONDecodeError:
        logger.warning("Payload no JSON en %s: %s", table, payload)
        data = {"raw": payload}
    if not isinstance(data, dict):
        data = {"raw": data}
    data.setdefault("table", table)
    return data


async def subscribe_to_changes(
    pool: asyncpg.pool.Pool,
    table: str,
    on_change: ChangeHandler,
) -> Unsubscribe:
    channel = channel_for(table)
    conn = await pool.acquire()
    loop = asyncio.get_running_loop()
    pending: Set["asyncio.Task[None]"] = set()

    def _handler_done(task: "asyncio.Task[None]") -> None:
        pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Error procesando cambio en %s: %s", table, exc, exc_info=exc)

    def _listener(_conn: Any, _pid: int, _channel: str, payload: str) -> None:
        try:
            result = on_change(decode_payload(table, payload))
            if asyncio.iscoroutine(result):
                task = loop.create_task(result)
                pending.add(task)
                task.add_done_callback(_handler_done)
        except Exception:  # noqa: BLE001
            logger.exception("Error procesando cambio en %s", table)

    try:
        await conn.add_listener(channel, _listener)
    except Exception:
        await pool.release(conn)
        raise
    logger.info("Suscripcion activa en canal %s", channel)

    released = False

    async def unsubscribe() -> None:
        nonlocal released
        if released:
            return
        released = True
        try:
            await conn.remove_listener(channel, _listener)
        except asyncpg.PostgresError as exc:
            logger.warning("No se pudo quitar listener de %s: %s", channel, exc)
        finally:
            for task in list(pending):
                task.cancel()
            await pool.release(conn)
        logger.info("Suscripcion cerrada en canal %s", channel)

    return unsubscribe
