from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, get_args

import asyncpg

from integrations import notifications
from integrations.notifications import NotificationClient, notify_in_background
from integrations.storage import ALLOWED_CONTENT_TYPES, StorageClient
from lifecycle.badges import render_badge
from lifecycle.enums import Audience, BadgeVariant, OrderStatus, QuoteStatus
from lifecycle.gates import (
    DEFAULT_PROOF_TTL,
    can_add_delivery_address,
    can_proceed_to_shipping,
    can_report_issue,
    can_respond_to_quote,
    can_upload_payment_proof,
    evaluate_order_actions,
    has_pending_payment_proof,
)
from lifecycle.payments import DEFAULT_CURRENCY, OrderSnapshot
from lifecycle.taxonomy import ALL_FILTER_VALUE, ORDER_TAXONOMY, QUOTE_TAXONOMY, StatusTaxonomy
from lifecycle.transition_errors import parse_status_transition_error

from . import db as portal_db
from .exceptions import (
    ActionNotPermitted,
    OrderNotFoundError,
    OrderTransitionRejected,
    QuoteNotFoundError,
)
from .repository import (
    customer_address_exists,
    fetch_order,
    fetch_order_items,
    fetch_orders_for_customer,
    fetch_quote,
    fetch_quotes_for_customer,
    insert_order_issue,
    update_order,
    update_quote_status,
)
from .schemas import (
    BadgeOut,
    DeliveryAddressPayload,
    IssueReportOut,
    IssueReportPayload,
    OrderActionsOut,
    OrderItemOut,
    OrderListResponse,
    OrderUpdatePayload,
    OrderView,
    PaymentProofOut,
    PaymentMethod,
    PaymentSummaryOut,
    QuoteListResponse,
    QuoteResponsePayload,
    QuoteView,
    SignedUrlOut,
)

DEFAULT_MAX_PROOF_BYTES = 10 * 1024 * 1024


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def resolve_status_filter(taxonomy: StatusTaxonomy, status_filter: Optional[str]) -> Optional[List[str]]:
    """Traduce el valor del filtro a estados; ``all`` o vacio significa sin filtro."""
    value = (status_filter or ALL_FILTER_VALUE).strip()
    if value == ALL_FILTER_VALUE:
        return None
    if value not in taxonomy:
        raise ValueError(f"Estado de filtro no valido: {value}")
    return [value]


def build_order_view(
    record: Mapping[str, Any],
    items: Sequence[Mapping[str, Any]],
    *,
    audience: Audience = Audience.CUSTOMER,
    now: Optional[datetime] = None,
    proof_ttl: timedelta = DEFAULT_PROOF_TTL,
) -> OrderView:
    snapshot = OrderSnapshot.from_record(record, item_count=len(items))
    actions = evaluate_order_actions(snapshot, now=now, proof_ttl=proof_ttl)
    badge = render_badge(
        record.get("status"),
        taxonomy=ORDER_TAXONOMY,
        audience=audience,
        context=snapshot.blocker_context(),
    )
    shipping_blockers: List[str] = []
    if audience == Audience.INTERNAL:
        shipping_blockers = list(can_proceed_to_shipping(snapshot).reasons)
    return OrderView(
        id=str(record["id"]),
        order_number=record["order_number"],
        customer_id=str(record["customer_id"]),
        status=str(record.get("status") or ""),
        currency=snapshot.currency,
        created_at=record.get("created_at"),
        estimated_delivery_date=record.get("estimated_delivery_date"),
        tracking_number=record.get("tracking_number"),
        carrier=record.get("carrier"),
        delivery_address_id=snapshot.delivery_address_id,
        quote_number=record.get("quote_number"),
        has_payment_proof=bool(record.get("payment_proof_url")),
        items=[
            OrderItemOut(
                id=str(item["id"]),
                product_name=item["product_name"],
                quantity=item["quantity"],
                unit=item.get("unit"),
                unit_price=item.get("unit_price"),
                total_price=item.get("total_price"),
            )
            for item in items
        ],
        badge=BadgeOut.model_validate(badge),
        actions=OrderActionsOut.model_validate(actions),
        payment=PaymentSummaryOut(
            total_amount=snapshot.total_amount,
            payment_amount_confirmed=snapshot.payment_amount_confirmed,
            balance_remaining=snapshot.balance_remaining,
            payment_status=snapshot.payment_status,
            has_partial_payment=snapshot.has_partial_payment,
            payment_proof_pending=has_pending_payment_proof(snapshot, now=now, proof_ttl=proof_ttl),
            currency=snapshot.currency,
        ),
        shipping_blockers=shipping_blockers,
    )


def build_quote_view(
    record: Mapping[str, Any],
    *,
    audience: Audience = Audience.CUSTOMER,
    now: Optional[datetime] = None,
) -> QuoteView:
    badge = render_badge(record.get("status"), taxonomy=QUOTE_TAXONOMY, audience=audience)
    return QuoteView(
        id=str(record["id"]),
        quote_number=record["quote_number"],
        customer_id=str(record["customer_id"]),
        status=str(record.get("status") or ""),
        currency=record.get("currency") or DEFAULT_CURRENCY,
        total_amount=record.get("total_amount"),
        valid_until=record.get("valid_until"),
        created_at=record.get("created_at"),
        badge=BadgeOut.model_validate(badge),
        can_respond=can_respond_to_quote(record.get("status"), valid_until=record.get("valid_until"), now=now),
    )


async def _load_order(
    conn: asyncpg.Connection,
    order_id: uuid.UUID,
    customer_id: Optional[str],
    *,
    for_update: bool = False,
) -> asyncpg.Record:
    record = await fetch_order(conn, order_id, customer_id, for_update=for_update)
    if record is None:
        raise OrderNotFoundError("Pedido no encontrado")
    return record


async def _order_view(
    conn: asyncpg.Connection,
    order_id: uuid.UUID,
    customer_id: Optional[str],
    *,
    audience: Audience,
    proof_ttl: timedelta,
) -> OrderView:
    record = await _load_order(conn, order_id, customer_id)
    items = await fetch_order_items(conn, [record["id"]])
    return build_order_view(
        record,
        items.get(record["id"], []),
        audience=audience,
        proof_ttl=proof_ttl,
    )


async def _apply_order_update(conn: asyncpg.Connection, order_id: uuid.UUID, fields: Dict[str, Any]) -> None:
    try:
        async with conn.transaction():
            await update_order(conn, order_id, fields)
    except asyncpg.PostgresError as exc:
        raise OrderTransitionRejected(parse_status_transition_error(exc)) from exc


async def get_order_view(
    order_id: uuid.UUID,
    *,
    customer_id: Optional[str] = None,
    audience: Audience = Audience.CUSTOMER,
    proof_ttl: timedelta = DEFAULT_PROOF_TTL,
) -> OrderView:
    pool = portal_db.get_pool()
    async with pool.acquire() as conn:
        return await _order_view(conn, order_id, customer_id, audience=audience, proof_ttl=proof_ttl)


async def list_customer_orders(
    customer_id: str,
    *,
    status_filter: Optional[str] = None,
    audience: Audience = Audience.CUSTOMER,
    proof_ttl: timedelta = DEFAULT_PROOF_TTL,
) -> OrderListResponse:
    statuses = resolve_status_filter(ORDER_TAXONOMY, status_filter)
    pool = portal_db.get_pool()
    async with pool.acquire() as conn:
        rows = await fetch_orders_for_customer(conn, customer_id, statuses=statuses)
        items = await fetch_order_items(conn, [row["id"] for row in rows])
    now = _now_utc()
    results = [
        build_order_view(row, items.get(row["id"], []), audience=audience, now=now, proof_ttl=proof_ttl)
        for row in rows
    ]
    return OrderListResponse(
        results=results,
        total=len(results),
        status_filter=statuses[0] if statuses else ALL_FILTER_VALUE,
    )


async def update_order_service(
    order_id: uuid.UUID,
    payload: OrderUpdatePayload,
    *,
    proof_ttl: timedelta = DEFAULT_PROOF_TTL,
) -> OrderView:
    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        raise ValueError("No hay cambios para aplicar")
    if isinstance(fields.get("status"), OrderStatus):
        fields["status"] = fields["status"].value
    pool = portal_db.get_pool()
    async with pool.acquire() as conn:
        await _load_order(conn, order_id, None)
        # Las reglas de transicion las aplica la base via triggers
        await _apply_order_update(conn, order_id, fields)
        return await _order_view(conn, order_id, None, audience=Audience.INTERNAL, proof_ttl=proof_ttl)


def _proof_extension(filename: Optional[str], content_type: str) -> str:
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1].strip().lower()
        if ext.isalnum():
            return ext
    return "pdf" if content_type == "application/pdf" else content_type.rsplit("/", 1)[-1]


async def submit_payment_proof(
    order_id: uuid.UUID,
    *,
    customer_id: str,
    filename: Optional[str],
    content_type: str,
    data: bytes,
    payment_reference: str,
    payment_method: str,
    storage: StorageClient,
    bucket: str,
    notifier: Optional[NotificationClient] = None,
    proof_ttl: timedelta = DEFAULT_PROOF_TTL,
    max_bytes: int = DEFAULT_MAX_PROOF_BYTES,
    now: Optional[datetime] = None,
) -> PaymentProofOut:
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValueError("Formato no permitido; use JPG, PNG o PDF")
    if not data:
        raise ValueError("Archivo vacio")
    if len(data) > max_bytes:
        raise ValueError("El archivo supera el tamano maximo permitido")
    reference = (payment_reference or "").strip()
    if not reference:
        raise ValueError("Debe indicar la referencia del pago")
    if payment_method not in get_args(PaymentMethod):
        raise ValueError(f"Medio de pago no valido: {payment_method}")

    current = now or _now_utc()
    pool = portal_db.get_pool()
    async with pool.acquire() as conn:
        # El bloqueo de fila serializa subidas concurrentes del mismo pedido
        async with conn.transaction():
            record = await _load_order(conn, order_id, customer_id, for_update=True)
            snapshot = OrderSnapshot.from_record(record)
            if not can_upload_payment_proof(snapshot, now=current, proof_ttl=proof_ttl):
                raise ActionNotPermitted(
                    "El pedido no admite comprobantes de pago en este momento",
                    reason="payment_proof",
                )
            stamp = int(current.timestamp() * 1000)
            path = f"{customer_id}/{record['order_number']}-{stamp}.{_proof_extension(filename, content_type)}"
            await asyncio.to_thread(storage.upload_file, bucket, path, data, content_type)
            try:
                await _apply_order_update(
                    conn,
                    order_id,
                    {
                        "payment_proof_url": path,
                        "payment_reference": reference,
                        "payment_method": payment_method,
                        "payment_proof_uploaded_at": current,
                    },
                )
            except OrderTransitionRejected:
                await asyncio.to_thread(storage.delete_file, bucket, path)
                raise

    notify_in_background(
        notifier,
        notifications.PAYMENT_PROOF_UPLOADED,
        {
            "orderId": str(record["id"]),
            "orderNumber": record["order_number"],
            "paymentMethod": payment_method,
            "paymentReference": reference,
        },
    )
    return PaymentProofOut(
        order_id=str(record["id"]),
        path=path,
        uploaded_at=current,
        payment_reference=reference,
        payment_method=payment_method,
    )


async def add_delivery_address(
    order_id: uuid.UUID,
    payload: DeliveryAddressPayload,
    *,
    customer_id: str,
    notifier: Optional[NotificationClient] = None,
    proof_ttl: timedelta = DEFAULT_PROOF_TTL,
) -> OrderView:
    pool = portal_db.get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            record = await _load_order(conn, order_id, customer_id, for_update=True)
            if not can_add_delivery_address(OrderSnapshot.from_record(record)):
                raise ActionNotPermitted(
                    "El pedido no admite agregar direccion de entrega",
                    reason="delivery_address",
                )
            if not await customer_address_exists(conn, payload.delivery_address_id, customer_id):
                raise ValueError("Direccion no encontrada para el cliente")
            await _apply_order_update(conn, order_id, {"delivery_address_id": payload.delivery_address_id})
        view = await _order_view(conn, order_id, customer_id, audience=Audience.CUSTOMER, proof_ttl=proof_ttl)

    notify_in_background(
        notifier,
        notifications.DELIVERY_ADDRESS_CONFIRMED,
        {
            "orderId": view.id,
            "orderNumber": view.order_number,
            "deliveryAddressId": payload.delivery_address_id,
        },
    )
    return view


async def report_order_issue(
    order_id: uuid.UUID,
    payload: IssueReportPayload,
    *,
    customer_id: str,
    notifier: Optional[NotificationClient] = None,
) -> IssueReportOut:
    pool = portal_db.get_pool()
    async with pool.acquire() as conn:
        record = await _load_order(conn, order_id, customer_id)
        if not can_report_issue(OrderSnapshot.from_record(record)):
            raise ActionNotPermitted(
                "Solo se pueden reportar problemas de pedidos despachados o entregados",
                reason="issue_report",
            )
        issue = await insert_order_issue(
            conn,
            {
                "id": uuid.uuid4(),
                "order_id": record["id"],
                "customer_id": customer_id,
                "issue_type": payload.issue_type,
                "description": payload.description,
            },
        )

    notify_in_background(
        notifier,
        notifications.ADMIN_ALERT,
        {
            "type": "order_issue",
            "orderNumber": record["order_number"],
            "issueType": payload.issue_type,
            "description": payload.description,
        },
    )
    return IssueReportOut(
        id=str(issue["id"]),
        order_id=str(issue["order_id"]),
        issue_type=issue["issue_type"],
        created_at=issue["created_at"],
    )


async def get_payment_proof_url(
    order_id: uuid.UUID,
    *,
    storage: StorageClient,
    bucket: str,
    expires_in: int,
    customer_id: Optional[str] = None,
) -> SignedUrlOut:
    pool = portal_db.get_pool()
    async with pool.acquire() as conn:
        record = await _load_order(conn, order_id, customer_id)
    stored = record.get("payment_proof_url")
    if not stored:
        raise OrderNotFoundError("El pedido no tiene comprobante de pago")
    path = str(stored)
    # Registros antiguos guardan la URL publica completa
    marker = f"/{bucket}/"
    if path.startswith("http") and marker in path:
        path = path.split(marker, 1)[1]
    url = await asyncio.to_thread(storage.get_signed_url, bucket, path, expires_in)
    return SignedUrlOut(url=url, expires_in=expires_in)


async def list_customer_quotes(
    customer_id: str,
    *,
    status_filter: Optional[str] = None,
    audience: Audience = Audience.CUSTOMER,
) -> QuoteListResponse:
    statuses = resolve_status_filter(QUOTE_TAXONOMY, status_filter)
    pool = portal_db.get_pool()
    async with pool.acquire() as conn:
        rows = await fetch_quotes_for_customer(conn, customer_id, statuses=statuses)
    now = _now_utc()
    results = [build_quote_view(row, audience=audience, now=now) for row in rows]
    return QuoteListResponse(
        results=results,
        total=len(results),
        status_filter=statuses[0] if statuses else ALL_FILTER_VALUE,
    )


async def respond_to_quote(
    quote_id: uuid.UUID,
    payload: QuoteResponsePayload,
    *,
    customer_id: str,
    notifier: Optional[NotificationClient] = None,
    now: Optional[datetime] = None,
) -> QuoteView:
    current = now or _now_utc()
    new_status = QuoteStatus.APPROVED if payload.accept else QuoteStatus.REJECTED
    pool = portal_db.get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            record = await fetch_quote(conn, quote_id, customer_id, for_update=True)
            if record is None:
                raise QuoteNotFoundError("Cotizacion no encontrada")
            if not can_respond_to_quote(record["status"], valid_until=record["valid_until"], now=current):
                raise ActionNotPermitted(
                    "La cotizacion no admite respuesta en su estado actual",
                    reason="quote_response",
                )
            updated = await update_quote_status(conn, quote_id, new_status.value, customer_notes=payload.reason)

    notify_in_background(
        notifier,
        notifications.QUOTE_RESPONSE,
        {
            "quoteId": str(updated["id"]),
            "quoteNumber": updated["quote_number"],
            "action": new_status.value,
            "reason": payload.reason,
        },
    )
    return build_quote_view(updated, now=current)


def preview_badge(
    kind: str,
    status: Optional[str],
    *,
    variant: BadgeVariant = BadgeVariant.DEFAULT,
    audience: Audience = Audience.CUSTOMER,
) -> BadgeOut:
    taxonomy = QUOTE_TAXONOMY if kind == "quotes" else ORDER_TAXONOMY
    return BadgeOut.model_validate(render_badge(status, taxonomy=taxonomy, variant=variant, audience=audience))
