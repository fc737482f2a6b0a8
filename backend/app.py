import os
import asyncio
import logging
import uuid
from datetime import timedelta
from typing import List, Optional, Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Query, UploadFile, File, Form
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

import asyncpg

from integrations.notifications import NotificationClient, NotificationSettings
from integrations.realtime import channel_for, subscribe_to_changes
from integrations.storage import StorageClient, StorageSettings
from lifecycle.enums import Audience, BadgeVariant
from lifecycle.taxonomy import TAXONOMIES
from orders import db as portal_db
from orders import service as order_service
from orders.exceptions import (
    ActionNotPermitted,
    OrderError,
    OrderNotFoundError,
    OrderTransitionRejected,
    QuoteNotFoundError,
    StorageError,
)
from orders.schemas import (
    BadgeOut,
    DeliveryAddressPayload,
    FilterOptionOut,
    IssueReportOut,
    IssueReportPayload,
    OrderListResponse,
    OrderUpdatePayload,
    OrderView,
    PaymentProofOut,
    QuoteListResponse,
    QuoteResponsePayload,
    QuoteView,
    SignedUrlOut,
    StatusDescriptorOut,
    TaxonomyResponse,
)

load_dotenv()

logger = logging.getLogger("portal")
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[PORTAL] %(name)s %(message)s"))
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


def coerce_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def coerce_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def coerce_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def coerce_str(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value).strip()


def parse_allowed_origins(raw: str) -> List[str]:
    if not raw:
        return ["*"]
    parts = [item.strip() for item in raw.split(",") if item.strip()]
    return parts or ["*"]


# ---- Config ----
DATABASE_URL = coerce_str(os.getenv("DATABASE_URL"), "")
PORTAL_DB_MIN_POOL_SIZE = max(1, coerce_int(os.getenv("PORTAL_DB_MIN_POOL_SIZE"), 1))
PORTAL_DB_MAX_POOL_SIZE = max(PORTAL_DB_MIN_POOL_SIZE, coerce_int(os.getenv("PORTAL_DB_MAX_POOL_SIZE"), 5))
PORTAL_DB_TIMEOUT = coerce_int(os.getenv("PORTAL_DB_TIMEOUT"), 10)

BACKEND_URL = coerce_str(os.getenv("BACKEND_URL"), "")
BACKEND_SERVICE_KEY = coerce_str(os.getenv("BACKEND_SERVICE_KEY"), "")
BACKEND_HTTP_TIMEOUT = coerce_float(os.getenv("BACKEND_HTTP_TIMEOUT"), 20.0)
NOTIFICATIONS_ENABLED = coerce_bool(os.getenv("NOTIFICATIONS_ENABLED"), True)

PAYMENT_PROOF_BUCKET = coerce_str(os.getenv("PAYMENT_PROOF_BUCKET"), "payment-proofs") or "payment-proofs"
SIGNED_URL_TTL_SECONDS = max(60, coerce_int(os.getenv("SIGNED_URL_TTL_SECONDS"), 3600))
PAYMENT_PROOF_PENDING_HOURS = max(1, coerce_int(os.getenv("PAYMENT_PROOF_PENDING_HOURS"), 72))
PROOF_TTL = timedelta(hours=PAYMENT_PROOF_PENDING_HOURS)
MAX_PAYMENT_PROOF_BYTES = max(1, coerce_int(os.getenv("MAX_PAYMENT_PROOF_BYTES"), order_service.DEFAULT_MAX_PROOF_BYTES))

FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "*").strip()
ALLOWED_CORS_ORIGINS = parse_allowed_origins(FRONTEND_ORIGIN)
ALLOW_CREDENTIALS = "*" not in ALLOWED_CORS_ORIGINS
if not ALLOW_CREDENTIALS:
    logger.warning("CORS credentials disabled because '*' is present in FRONTEND_ORIGIN")

storage_client = StorageClient(
    StorageSettings(base_url=BACKEND_URL, service_key=BACKEND_SERVICE_KEY, timeout=BACKEND_HTTP_TIMEOUT)
)
notification_client: Optional[NotificationClient] = None
if NOTIFICATIONS_ENABLED:
    notification_client = NotificationClient(
        NotificationSettings(base_url=BACKEND_URL, service_key=BACKEND_SERVICE_KEY, timeout=BACKEND_HTTP_TIMEOUT)
    )

# ---- FastAPI app ----
app = FastAPI(title="Trade Portal Lifecycle API", version="1.0.0")


@app.on_event("startup")
async def init_portal_database_pool():
    if not DATABASE_URL:
        logger.warning("DATABASE_URL no definido. Endpoints de pedidos y cotizaciones permaneceran deshabilitados.")
        await portal_db.close_pool()
        return
    try:
        pool = await portal_db.init_pool(
            DATABASE_URL,
            min_size=PORTAL_DB_MIN_POOL_SIZE,
            max_size=PORTAL_DB_MAX_POOL_SIZE,
            timeout=PORTAL_DB_TIMEOUT,
        )
        if pool is not None:
            logger.info("Pool de base de datos del portal inicializado.")
    except Exception as exc:
        await portal_db.close_pool()
        logger.error("No se pudo inicializar el pool del portal: %s", exc)


@app.on_event("shutdown")
async def shutdown_portal_database_pool():
    await portal_db.close_pool()
    logger.info("Pool de base de datos del portal cerrado.")


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_CORS_ORIGINS,
    allow_credentials=ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


def require_portal_pool() -> asyncpg.pool.Pool:
    try:
        return portal_db.get_pool()
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail="Servicio de pedidos no disponible") from exc


def resolve_taxonomy(kind: str):
    taxonomy = TAXONOMIES.get(kind)
    if taxonomy is None:
        raise HTTPException(status_code=404, detail="Tipo de estado desconocido")
    return taxonomy


def parse_uuid(raw: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{label} invalido")


def order_http_error(exc: OrderError) -> HTTPException:
    if isinstance(exc, (OrderNotFoundError, QuoteNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ActionNotPermitted):
        return HTTPException(status_code=409, detail={"message": str(exc), "reason": exc.reason})
    if isinstance(exc, OrderTransitionRejected):
        parsed = exc.parsed
        return HTTPException(
            status_code=409,
            detail={
                "title": parsed.title,
                "description": parsed.description,
                "action": parsed.action,
                "action_label": parsed.action_label,
            },
        )
    if isinstance(exc, StorageError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/health")
async def health():
    return {"status": "ok", "database": portal_db.portal_db_pool is not None}


# ---- Status taxonomy ----
@app.get("/api/status-taxonomy/{kind}", response_model=TaxonomyResponse)
async def get_status_taxonomy(kind: str, audience: Audience = Query(Audience.CUSTOMER)):
    taxonomy = resolve_taxonomy(kind)
    return TaxonomyResponse(
        kind=kind,
        audience=audience,
        statuses=[StatusDescriptorOut.model_validate(descriptor) for descriptor in taxonomy],
        filter_options=[FilterOptionOut.model_validate(option) for option in taxonomy.filter_options(audience)],
        fallback=StatusDescriptorOut.model_validate(taxonomy.fallback),
    )


@app.get("/api/status-taxonomy/{kind}/filter-options", response_model=List[FilterOptionOut])
async def get_filter_options(kind: str, audience: Audience = Query(Audience.CUSTOMER)):
    taxonomy = resolve_taxonomy(kind)
    return [FilterOptionOut.model_validate(option) for option in taxonomy.filter_options(audience)]


@app.get("/api/status-taxonomy/{kind}/badge", response_model=BadgeOut)
async def preview_status_badge(
    kind: str,
    status: Optional[str] = Query(None),
    variant: BadgeVariant = Query(BadgeVariant.DEFAULT),
    audience: Audience = Query(Audience.CUSTOMER),
):
    resolve_taxonomy(kind)
    return order_service.preview_badge(kind, status, variant=variant, audience=audience)


# ---- Customer orders ----
@app.get("/api/customers/{customer_id}/orders", response_model=OrderListResponse)
async def list_customer_orders_endpoint(customer_id: str, status: Optional[str] = Query(None)):
    require_portal_pool()
    try:
        return await order_service.list_customer_orders(customer_id, status_filter=status, proof_ttl=PROOF_TTL)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al listar pedidos de %s: %s", customer_id, exc)
        raise HTTPException(status_code=500, detail="No se pudieron obtener los pedidos") from exc


@app.get("/api/customers/{customer_id}/orders/{order_id}", response_model=OrderView)
async def get_customer_order_endpoint(customer_id: str, order_id: str):
    require_portal_pool()
    order_uuid = parse_uuid(order_id, "orderId")
    try:
        return await order_service.get_order_view(order_uuid, customer_id=customer_id, proof_ttl=PROOF_TTL)
    except OrderError as exc:
        raise order_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al obtener pedido %s: %s", order_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo obtener el pedido") from exc


@app.post("/api/customers/{customer_id}/orders/{order_id}/payment-proof", response_model=PaymentProofOut)
async def upload_payment_proof_endpoint(
    customer_id: str,
    order_id: str,
    file: UploadFile = File(...),
    payment_reference: str = Form(...),
    payment_method: str = Form("mobile_money"),
):
    require_portal_pool()
    order_uuid = parse_uuid(order_id, "orderId")
    data = await file.read()
    try:
        return await order_service.submit_payment_proof(
            order_uuid,
            customer_id=customer_id,
            filename=file.filename,
            content_type=(file.content_type or "").lower(),
            data=data,
            payment_reference=payment_reference,
            payment_method=payment_method,
            storage=storage_client,
            bucket=PAYMENT_PROOF_BUCKET,
            notifier=notification_client,
            proof_ttl=PROOF_TTL,
            max_bytes=MAX_PAYMENT_PROOF_BYTES,
        )
    except OrderError as exc:
        raise order_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al subir comprobante del pedido %s: %s", order_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo registrar el comprobante") from exc


@app.get("/api/customers/{customer_id}/orders/{order_id}/payment-proof", response_model=SignedUrlOut)
async def get_customer_payment_proof_endpoint(customer_id: str, order_id: str):
    require_portal_pool()
    order_uuid = parse_uuid(order_id, "orderId")
    try:
        return await order_service.get_payment_proof_url(
            order_uuid,
            customer_id=customer_id,
            storage=storage_client,
            bucket=PAYMENT_PROOF_BUCKET,
            expires_in=SIGNED_URL_TTL_SECONDS,
        )
    except OrderError as exc:
        raise order_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al firmar comprobante del pedido %s: %s", order_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo obtener el comprobante") from exc


@app.put("/api/customers/{customer_id}/orders/{order_id}/delivery-address", response_model=OrderView)
async def add_delivery_address_endpoint(customer_id: str, order_id: str, payload: DeliveryAddressPayload):
    require_portal_pool()
    order_uuid = parse_uuid(order_id, "orderId")
    try:
        return await order_service.add_delivery_address(
            order_uuid,
            payload,
            customer_id=customer_id,
            notifier=notification_client,
            proof_ttl=PROOF_TTL,
        )
    except OrderError as exc:
        raise order_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al asignar direccion al pedido %s: %s", order_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo asignar la direccion") from exc


@app.post("/api/customers/{customer_id}/orders/{order_id}/issues", response_model=IssueReportOut, status_code=201)
async def report_order_issue_endpoint(customer_id: str, order_id: str, payload: IssueReportPayload):
    require_portal_pool()
    order_uuid = parse_uuid(order_id, "orderId")
    try:
        return await order_service.report_order_issue(
            order_uuid,
            payload,
            customer_id=customer_id,
            notifier=notification_client,
        )
    except OrderError as exc:
        raise order_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al reportar problema del pedido %s: %s", order_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo registrar el reporte") from exc


# ---- Customer quotes ----
@app.get("/api/customers/{customer_id}/quotes", response_model=QuoteListResponse)
async def list_customer_quotes_endpoint(customer_id: str, status: Optional[str] = Query(None)):
    require_portal_pool()
    try:
        return await order_service.list_customer_quotes(customer_id, status_filter=status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al listar cotizaciones de %s: %s", customer_id, exc)
        raise HTTPException(status_code=500, detail="No se pudieron obtener las cotizaciones") from exc


@app.post("/api/customers/{customer_id}/quotes/{quote_id}/response", response_model=QuoteView)
async def respond_to_quote_endpoint(customer_id: str, quote_id: str, payload: QuoteResponsePayload):
    require_portal_pool()
    quote_uuid = parse_uuid(quote_id, "quoteId")
    try:
        return await order_service.respond_to_quote(
            quote_uuid,
            payload,
            customer_id=customer_id,
            notifier=notification_client,
        )
    except OrderError as exc:
        raise order_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al responder cotizacion %s: %s", quote_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo registrar la respuesta") from exc


# ---- Staff orders ----
@app.get("/api/orders/{order_id}", response_model=OrderView)
async def get_order_endpoint(order_id: str):
    require_portal_pool()
    order_uuid = parse_uuid(order_id, "orderId")
    try:
        return await order_service.get_order_view(order_uuid, audience=Audience.INTERNAL, proof_ttl=PROOF_TTL)
    except OrderError as exc:
        raise order_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al obtener pedido %s: %s", order_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo obtener el pedido") from exc


@app.patch("/api/orders/{order_id}", response_model=OrderView)
async def update_order_endpoint(order_id: str, payload: OrderUpdatePayload):
    require_portal_pool()
    order_uuid = parse_uuid(order_id, "orderId")
    try:
        return await order_service.update_order_service(order_uuid, payload, proof_ttl=PROOF_TTL)
    except OrderTransitionRejected as exc:
        logger.info("Cambio de pedido %s rechazado: %s", order_id, exc.parsed.title)
        raise order_http_error(exc) from exc
    except OrderError as exc:
        raise order_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al actualizar pedido %s: %s", order_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo actualizar el pedido") from exc


@app.get("/api/orders/{order_id}/payment-proof", response_model=SignedUrlOut)
async def get_payment_proof_endpoint(order_id: str):
    require_portal_pool()
    order_uuid = parse_uuid(order_id, "orderId")
    try:
        return await order_service.get_payment_proof_url(
            order_uuid,
            storage=storage_client,
            bucket=PAYMENT_PROOF_BUCKET,
            expires_in=SIGNED_URL_TTL_SECONDS,
        )
    except OrderError as exc:
        raise order_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al firmar comprobante del pedido %s: %s", order_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo obtener el comprobante") from exc


# ---- Change feed (WebSocket) ----
@app.websocket("/ws/changes/{table}")
async def changes_ws_endpoint(websocket: WebSocket, table: str):
    await websocket.accept()
    try:
        channel = channel_for(table)
    except ValueError as exc:
        await websocket.send_json({"type": "error", "error": str(exc)})
        await websocket.close(code=4404)
        return
    pool = portal_db.portal_db_pool
    if pool is None:
        await websocket.send_json({"type": "error", "error": "Servicio de pedidos no disponible"})
        await websocket.close(code=1013)
        return

    async def relay(change):
        try:
            await websocket.send_json({"type": "change", "table": table, "payload": change})
        except Exception as exc:
            logger.debug("No se pudo reenviar cambio de %s: %s", table, exc)

    try:
        unsubscribe = await subscribe_to_changes(pool, table, relay)
    except Exception as exc:
        logger.error("No se pudo suscribir a %s: %s", channel, exc)
        await websocket.send_json({"type": "error", "error": "No se pudo abrir el feed de cambios"})
        await websocket.close(code=1011)
        return

    await websocket.send_json({"type": "subscribed", "table": table, "channel": channel})
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Error en WS de cambios para %s", table)
    finally:
        await unsubscribe()
