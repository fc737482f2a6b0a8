from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from .enums import OrderStatus, PaymentStatus

DEFAULT_CURRENCY = (os.getenv("DEFAULT_CURRENCY") or "GHS").strip().upper() or "GHS"
ZERO = Decimal("0")


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.max, tzinfo=timezone.utc)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def balance_remaining(total: Any, confirmed: Any) -> Optional[Decimal]:
    total_amount = to_decimal(total)
    if total_amount is None:
        return None
    return total_amount - (to_decimal(confirmed) or ZERO)


def has_partial_payment(confirmed_at: Any, confirmed: Any, total: Any) -> bool:
    if to_datetime(confirmed_at) is None:
        return False
    total_amount = to_decimal(total)
    confirmed_amount = to_decimal(confirmed)
    if total_amount is None or confirmed_amount is None:
        return False
    return ZERO < confirmed_amount < total_amount


def derive_payment_status(total: Any, confirmed: Any) -> Optional[PaymentStatus]:
    total_amount = to_decimal(total)
    if total_amount is None:
        return None
    confirmed_amount = to_decimal(confirmed) or ZERO
    if confirmed_amount <= ZERO:
        return PaymentStatus.UNPAID
    if confirmed_amount < total_amount:
        return PaymentStatus.PARTIALLY_PAID
    if confirmed_amount == total_amount:
        return PaymentStatus.FULLY_PAID
    return PaymentStatus.OVERPAID


def _payment_status(value: Any) -> Optional[PaymentStatus]:
    if isinstance(value, PaymentStatus):
        return value
    try:
        return PaymentStatus(value)
    except ValueError:
        return None


def _present(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True, slots=True)
class BlockerContext:
    status: OrderStatus
    payment_status: Optional[PaymentStatus] = None
    balance_remaining: Optional[Decimal] = None
    delivery_address_id: Optional[str] = None
    currency: str = DEFAULT_CURRENCY


@dataclass(frozen=True, slots=True)
class OrderSnapshot:
    """Proyeccion inmutable de un pedido con lo que leen las reglas de estado.

    Los campos que no se pueden interpretar quedan en None para que las
    reglas que dependen de ellos nieguen la accion.
    """

    status: OrderStatus
    total_amount: Optional[Decimal] = None
    payment_amount_confirmed: Optional[Decimal] = None
    payment_confirmed_at: Optional[datetime] = None
    recorded_payment_status: Optional[PaymentStatus] = None
    delivery_address_id: Optional[str] = None
    currency: str = DEFAULT_CURRENCY
    payment_proof_uploaded_at: Optional[datetime] = None
    payment_verified_at: Optional[datetime] = None
    item_count: int = 0

    @classmethod
    def from_record(cls, record: Mapping[str, Any], *, item_count: Optional[int] = None) -> "OrderSnapshot":
        data = dict(record)
        if item_count is None:
            items = data.get("order_items")
            item_count = len(items) if isinstance(items, (list, tuple)) else 0
        return cls(
            status=OrderStatus.from_raw(data.get("status")),
            total_amount=to_decimal(data.get("total_amount")),
            payment_amount_confirmed=to_decimal(data.get("payment_amount_confirmed")),
            payment_confirmed_at=to_datetime(data.get("payment_confirmed_at")),
            recorded_payment_status=_payment_status(data.get("payment_status")),
            delivery_address_id=_present(data.get("delivery_address_id")),
            currency=_present(data.get("currency")) or DEFAULT_CURRENCY,
            payment_proof_uploaded_at=to_datetime(data.get("payment_proof_uploaded_at")),
            payment_verified_at=to_datetime(data.get("payment_verified_at")),
            item_count=max(0, int(item_count)),
        )

    @property
    def has_partial_payment(self) -> bool:
        return has_partial_payment(
            self.payment_confirmed_at,
            self.payment_amount_confirmed,
            self.total_amount,
        )

    @property
    def balance_remaining(self) -> Optional[Decimal]:
        return balance_remaining(self.total_amount, self.payment_amount_confirmed)

    @property
    def payment_status(self) -> Optional[PaymentStatus]:
        if self.recorded_payment_status is not None:
            return self.recorded_payment_status
        return derive_payment_status(self.total_amount, self.payment_amount_confirmed)

    def blocker_context(self) -> BlockerContext:
        return BlockerContext(
            status=self.status,
            payment_status=self.payment_status,
            balance_remaining=self.balance_remaining,
            delivery_address_id=self.delivery_address_id,
            currency=self.currency,
        )
