"""Reglas que deciden que acciones puede ejecutar un cliente sobre un pedido.

Todas las reglas son funciones puras sobre un OrderSnapshot. Ante datos
faltantes la respuesta es siempre "no permitido"; ninguna regla lanza
excepciones.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Tuple

from .enums import OrderStatus, QuoteStatus, SETTLED_PAYMENT_STATUSES
from .payments import OrderSnapshot, ZERO, to_datetime

DEFAULT_PROOF_TTL = timedelta(hours=72)

PAYMENT_PROOF_STATUSES = frozenset({OrderStatus.ORDER_CONFIRMED, OrderStatus.PENDING_PAYMENT})
DELIVERY_ADDRESS_STATUSES = frozenset({OrderStatus.PAYMENT_RECEIVED, OrderStatus.PROCESSING})
ISSUE_REPORT_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.DELIVERY_FAILED})
TRACKABLE_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})

TRACKING_MESSAGES = {
    OrderStatus.ORDER_CONFIRMED: "Tracking will be available once your payment has been received and the order ships.",
    OrderStatus.PENDING_PAYMENT: "Tracking will be available after your payment is confirmed and the order ships.",
    OrderStatus.PAYMENT_REJECTED: "Please resubmit your payment proof. Tracking starts once the order ships.",
    OrderStatus.PAYMENT_RECEIVED: "Your payment is confirmed. Tracking will be available once the order ships.",
    OrderStatus.PROCESSING: "Your order is being prepared. Tracking will be available once it ships.",
    OrderStatus.READY_TO_SHIP: "Your order is packed and waiting for the courier. Tracking will be available shortly.",
    OrderStatus.DELIVERY_CONFIRMATION_PENDING: "Delivery is awaiting confirmation. We will update you shortly.",
    OrderStatus.ON_HOLD: "Your order is on hold. Tracking will resume once it is released.",
    OrderStatus.DELIVERY_FAILED: "The delivery attempt failed. Please report the issue or contact support.",
    OrderStatus.CANCELLED: "This order was cancelled and will not be shipped.",
}
DEFAULT_TRACKING_MESSAGE = "Tracking is not available for this order yet."


@dataclass(frozen=True, slots=True)
class TrackingGate:
    allowed: bool
    message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ShippingCheck:
    allowed: bool
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class OrderActions:
    can_upload_payment_proof: bool
    can_add_delivery_address: bool
    can_report_issue: bool
    can_track_shipment: bool
    can_reorder: bool
    tracking_message: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def has_pending_payment_proof(
    order: OrderSnapshot,
    *,
    now: Optional[datetime] = None,
    proof_ttl: timedelta = DEFAULT_PROOF_TTL,
) -> bool:
    uploaded_at = order.payment_proof_uploaded_at
    if uploaded_at is None:
        return False
    verified_at = order.payment_verified_at
    if verified_at is not None and verified_at >= uploaded_at:
        return False
    current = now or _utcnow()
    return current - uploaded_at < proof_ttl


def can_upload_payment_proof(
    order: OrderSnapshot,
    *,
    now: Optional[datetime] = None,
    proof_ttl: timedelta = DEFAULT_PROOF_TTL,
) -> bool:
    if order.status not in PAYMENT_PROOF_STATUSES:
        return False
    if has_pending_payment_proof(order, now=now, proof_ttl=proof_ttl):
        return False
    if order.total_amount is None:
        return False
    # Se permiten abonos sucesivos hasta completar el total
    confirmed = order.payment_amount_confirmed or ZERO
    return confirmed < order.total_amount


def can_add_delivery_address(order: OrderSnapshot) -> bool:
    if order.delivery_address_id:
        return False
    return order.status in DELIVERY_ADDRESS_STATUSES


def can_report_issue(order: OrderSnapshot) -> bool:
    return order.status in ISSUE_REPORT_STATUSES


def tracking_gate(order: OrderSnapshot) -> TrackingGate:
    if order.status in TRACKABLE_STATUSES:
        return TrackingGate(allowed=True)
    return TrackingGate(
        allowed=False,
        message=TRACKING_MESSAGES.get(order.status, DEFAULT_TRACKING_MESSAGE),
    )


def can_track_shipment(order: OrderSnapshot) -> bool:
    return tracking_gate(order).allowed


def can_reorder(order: OrderSnapshot) -> bool:
    return order.item_count > 0


def can_proceed_to_shipping(order: OrderSnapshot) -> ShippingCheck:
    reasons = []
    if order.payment_status not in SETTLED_PAYMENT_STATUSES:
        reasons.append("Requires full payment")
    if not order.delivery_address_id:
        reasons.append("Requires delivery address")
    return ShippingCheck(allowed=not reasons, reasons=tuple(reasons))


def can_respond_to_quote(
    status: Any,
    *,
    valid_until: Any = None,
    now: Optional[datetime] = None,
) -> bool:
    if QuoteStatus.from_raw(status) != QuoteStatus.QUOTED:
        return False
    if valid_until is None:
        return True
    expires_at = to_datetime(valid_until)
    if expires_at is None:
        return False
    return (now or _utcnow()) <= expires_at


def evaluate_order_actions(
    order: OrderSnapshot,
    *,
    now: Optional[datetime] = None,
    proof_ttl: timedelta = DEFAULT_PROOF_TTL,
) -> OrderActions:
    tracking = tracking_gate(order)
    return OrderActions(
        can_upload_payment_proof=can_upload_payment_proof(order, now=now, proof_ttl=proof_ttl),
        can_add_delivery_address=can_add_delivery_address(order),
        can_report_issue=can_report_issue(order),
        can_track_shipment=tracking.allowed,
        can_reorder=can_reorder(order),
        tracking_message=tracking.message,
    )
