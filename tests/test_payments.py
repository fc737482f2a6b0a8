from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from lifecycle.enums import OrderStatus, PaymentStatus
from lifecycle.payments import (
    OrderSnapshot,
    balance_remaining,
    derive_payment_status,
    has_partial_payment,
    to_datetime,
    to_decimal,
)


def test_partial_payment_math():
    confirmed_at = datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert has_partial_payment(confirmed_at, 400, 1000) is True
    assert balance_remaining(1000, 400) == Decimal("600")


def test_partial_payment_requires_confirmation_timestamp():
    assert has_partial_payment(None, 400, 1000) is False


@pytest.mark.parametrize("confirmed", [0, 1000, 1200])
def test_partial_payment_is_strictly_between_zero_and_total(confirmed):
    assert has_partial_payment("2026-03-01T00:00:00Z", confirmed, 1000) is False


def test_balance_can_go_negative_and_needs_total():
    assert balance_remaining("1000", "1250.50") == Decimal("-250.50")
    assert balance_remaining(None, 10) is None
    assert balance_remaining(500, None) == Decimal("500")


@pytest.mark.parametrize(
    "total, confirmed, expected",
    [
        (1000, 0, PaymentStatus.UNPAID),
        (1000, None, PaymentStatus.UNPAID),
        (1000, 400, PaymentStatus.PARTIALLY_PAID),
        (1000, 1000, PaymentStatus.FULLY_PAID),
        (1000, 1001, PaymentStatus.OVERPAID),
        (None, 400, None),
    ],
)
def test_derive_payment_status(total, confirmed, expected):
    assert derive_payment_status(total, confirmed) == expected


def test_to_decimal_rejects_garbage():
    assert to_decimal("12.5") == Decimal("12.5")
    assert to_decimal(True) is None
    assert to_decimal("abc") is None
    assert to_decimal("NaN") is None
    assert to_decimal(float("inf")) is None


def test_to_datetime_normalizes_to_utc():
    assert to_datetime("2026-03-01T10:00:00Z") == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert to_datetime(datetime(2026, 3, 1)).tzinfo is timezone.utc
    assert to_datetime(date(2026, 3, 1)).date() == date(2026, 3, 1)
    assert to_datetime("yesterday") is None
    assert to_datetime("") is None


def test_snapshot_from_record_is_fail_closed():
    snapshot = OrderSnapshot.from_record(
        {
            "status": "no_such_status",
            "total_amount": "not-a-number",
            "payment_status": "mystery",
            "delivery_address_id": "   ",
            "currency": None,
        }
    )
    assert snapshot.status is OrderStatus.UNKNOWN
    assert snapshot.total_amount is None
    assert snapshot.recorded_payment_status is None
    assert snapshot.delivery_address_id is None
    assert snapshot.currency == "GHS"
    assert snapshot.payment_status is None
    assert snapshot.item_count == 0


def test_snapshot_prefers_recorded_payment_status():
    snapshot = OrderSnapshot.from_record(
        {"status": "payment_received", "total_amount": 1000, "payment_amount_confirmed": 400, "payment_status": "fully_paid"}
    )
    assert snapshot.payment_status is PaymentStatus.FULLY_PAID
    derived = OrderSnapshot.from_record({"status": "payment_received", "total_amount": 1000, "payment_amount_confirmed": 400})
    assert derived.payment_status is PaymentStatus.PARTIALLY_PAID


def test_snapshot_counts_embedded_items():
    snapshot = OrderSnapshot.from_record({"status": "delivered", "order_items": [{"id": 1}, {"id": 2}]})
    assert snapshot.item_count == 2
    assert OrderSnapshot.from_record({"status": "delivered"}, item_count=5).item_count == 5


def test_blocker_context_carries_payment_view():
    snapshot = OrderSnapshot.from_record(
        {
            "status": "processing",
            "total_amount": "1000",
            "payment_amount_confirmed": "400",
            "delivery_address_id": "addr-9",
            "currency": "USD",
        }
    )
    ctx = snapshot.blocker_context()
    assert ctx.status is OrderStatus.PROCESSING
    assert ctx.payment_status is PaymentStatus.PARTIALLY_PAID
    assert ctx.balance_remaining == Decimal("600")
    assert ctx.delivery_address_id == "addr-9"
    assert ctx.currency == "USD"
