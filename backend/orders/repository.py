from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import asyncpg

ORDER_COLUMNS = """
    o.id,
    o.order_number,
    o.customer_id,
    o.status,
    o.total_amount,
    o.currency,
    o.payment_amount_confirmed,
    o.payment_confirmed_at,
    o.payment_status,
    o.payment_proof_url,
    o.payment_proof_uploaded_at,
    o.payment_verified_at,
    o.payment_reference,
    o.payment_method,
    o.delivery_address_id,
    o.tracking_number,
    o.carrier,
    o.estimated_delivery_date,
    o.created_at,
    q.quote_number
"""

# Columnas que la API puede modificar; el resto lo gobierna la base
UPDATABLE_ORDER_COLUMNS = frozenset(
    {
        "status",
        "tracking_number",
        "carrier",
        "estimated_delivery_date",
        "delivery_address_id",
        "admin_notes",
        "payment_proof_url",
        "payment_proof_uploaded_at",
        "payment_reference",
        "payment_method",
    }
)


def _status_filter(statuses: Optional[Sequence[str]], placeholder: int) -> Tuple[str, List[Any]]:
    if not statuses:
        return "", []
    return f" AND o.status = ANY(${placeholder}::text[])", [list(statuses)]


async def fetch_order(
    conn: asyncpg.Connection,
    order_id: uuid.UUID,
    customer_id: Optional[str] = None,
    *,
    for_update: bool = False,
) -> Optional[asyncpg.Record]:
    sql = f"""
        SELECT {ORDER_COLUMNS}
        FROM orders o
        LEFT JOIN quotes q ON q.id = o.quote_id
        WHERE o.id = $1
    """
    params: List[Any] = [order_id]
    if customer_id is not None:
        sql += " AND o.customer_id = $2"
        params.append(customer_id)
    if for_update:
        sql += " FOR UPDATE OF o"
    return await conn.fetchrow(sql, *params)


async def fetch_orders_for_customer(
    conn: asyncpg.Connection,
    customer_id: str,
    *,
    statuses: Optional[Sequence[str]] = None,
) -> List[asyncpg.Record]:
    extra, extra_params = _status_filter(statuses, 2)
    sql = f"""
        SELECT {ORDER_COLUMNS}
        FROM orders o
        LEFT JOIN quotes q ON q.id = o.quote_id
        WHERE o.customer_id = $1{extra}
        ORDER BY o.created_at DESC
    """
    return await conn.fetch(sql, customer_id, *extra_params)


async def fetch_order_items(
    conn: asyncpg.Connection,
    order_ids: Iterable[uuid.UUID],
) -> Dict[uuid.UUID, List[asyncpg.Record]]:
    ids = list(order_ids)
    grouped: Dict[uuid.UUID, List[asyncpg.Record]] = {order_id: [] for order_id in ids}
    if not ids:
        return grouped
    sql = """
        SELECT id, order_id, product_name, quantity, unit, unit_price, total_price
        FROM order_items
        WHERE order_id = ANY($1::uuid[])
        ORDER BY order_id, id
    """
    for row in await conn.fetch(sql, ids):
        grouped.setdefault(row["order_id"], []).append(row)
    return grouped


async def update_order(
    conn: asyncpg.Connection,
    order_id: uuid.UUID,
    fields: Dict[str, Any],
) -> Optional[asyncpg.Record]:
    invalid = set(fields) - UPDATABLE_ORDER_COLUMNS
    if invalid:
        raise ValueError(f"Columnas no actualizables: {', '.join(sorted(invalid))}")
    if not fields:
        raise ValueError("No hay campos para actualizar")
    assignments = ", ".join(f"{column} = ${idx}" for idx, column in enumerate(fields.keys(), start=1))
    sql = f"""
        UPDATE orders
        SET {assignments}, updated_at = NOW()
        WHERE id = ${len(fields) + 1}
        RETURNING id
    """
    params = list(fields.values()) + [order_id]
    return await conn.fetchrow(sql, *params)


async def insert_order_issue(
    conn: asyncpg.Connection,
    data: Dict[str, Any],
) -> asyncpg.Record:
    sql = """
        INSERT INTO order_issues (
            id,
            order_id,
            customer_id,
            issue_type,
            description,
            source
        ) VALUES ($1,$2,$3,$4,$5,$6)
        RETURNING id, order_id, issue_type, created_at
    """
    return await conn.fetchrow(
        sql,
        data.get("id", uuid.uuid4()),
        data["order_id"],
        data["customer_id"],
        data["issue_type"],
        data["description"],
        data.get("source", "customer_portal"),
    )


async def fetch_quote(
    conn: asyncpg.Connection,
    quote_id: uuid.UUID,
    customer_id: str,
    *,
    for_update: bool = False,
) -> Optional[asyncpg.Record]:
    sql = """
        SELECT id, quote_number, customer_id, status, total_amount, currency, valid_until, created_at
        FROM quotes
        WHERE id = $1 AND customer_id = $2
    """
    if for_update:
        sql += " FOR UPDATE"
    return await conn.fetchrow(sql, quote_id, customer_id)


async def fetch_quotes_for_customer(
    conn: asyncpg.Connection,
    customer_id: str,
    *,
    statuses: Optional[Sequence[str]] = None,
) -> List[asyncpg.Record]:
    sql = """
        SELECT id, quote_number, customer_id, status, total_amount, currency, valid_until, created_at
        FROM quotes
        WHERE customer_id = $1
    """
    params: List[Any] = [customer_id]
    if statuses:
        sql += " AND status = ANY($2::text[])"
        params.append(list(statuses))
    sql += " ORDER BY created_at DESC"
    return await conn.fetch(sql, *params)


async def update_quote_status(
    conn: asyncpg.Connection,
    quote_id: uuid.UUID,
    status: str,
    *,
    customer_notes: Optional[str] = None,
) -> Optional[asyncpg.Record]:
    sql = """
        UPDATE quotes
        SET status = $1,
            customer_notes = COALESCE($2, customer_notes),
            updated_at = NOW()
        WHERE id = $3
        RETURNING id, quote_number, customer_id, status, total_amount, currency, valid_until, created_at
    """
    return await conn.fetchrow(sql, status, customer_notes, quote_id)


async def customer_address_exists(
    conn: asyncpg.Connection,
    address_id: str,
    customer_id: str,
) -> bool:
    sql = """
        SELECT 1
        FROM customer_addresses
        WHERE id = $1 AND customer_id = $2
        LIMIT 1
    """
    return bool(await conn.fetchval(sql, address_id, customer_id))
