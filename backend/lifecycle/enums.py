from __future__ import annotations

from enum import Enum
from typing import Any


class _RawStatus(str, Enum):
    """Estados persistidos como texto; los valores desconocidos caen en UNKNOWN."""

    @classmethod
    def from_raw(cls, value: Any):
        if isinstance(value, cls):
            return value
        if isinstance(value, Enum):
            value = value.value
        if not isinstance(value, str):
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class OrderStatus(_RawStatus):
    ORDER_CONFIRMED = "order_confirmed"
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_RECEIVED = "payment_received"
    PROCESSING = "processing"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    DELIVERY_CONFIRMATION_PENDING = "delivery_confirmation_pending"
    ON_HOLD = "on_hold"
    DELIVERED = "delivered"
    DELIVERY_FAILED = "delivery_failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class QuoteStatus(_RawStatus):
    DRAFT = "draft"
    PENDING = "pending"
    REVIEWED = "reviewed"
    PROCESSING = "processing"
    QUOTED = "quoted"
    APPROVED = "approved"
    CONVERTED = "converted"
    COMPLETED = "completed"
    REJECTED = "rejected"
    DECLINED = "declined"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    FULLY_PAID = "fully_paid"
    OVERPAID = "overpaid"


SETTLED_PAYMENT_STATUSES = {PaymentStatus.FULLY_PAID, PaymentStatus.OVERPAID}


class VisualClass(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    DANGER = "danger"
    NEUTRAL = "neutral"
    PROGRESS = "progress"


class StatusIcon(str, Enum):
    CLOCK = "clock"
    CREDIT_CARD = "credit_card"
    CHECK = "check"
    CHECK_DOUBLE = "check_double"
    SPINNER = "spinner"
    PACKAGE = "package"
    TRUCK = "truck"
    ALERT = "alert"
    BAN = "ban"
    CANCEL = "cancel"
    PAUSE = "pause"
    MAP_PIN = "map_pin"
    FILE = "file"
    FILE_CHECK = "file_check"
    EYE = "eye"


class LifecycleStage(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    TERMINAL = "terminal"


class StatusGroup(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Audience(str, Enum):
    CUSTOMER = "customer"
    INTERNAL = "internal"


class BadgeVariant(str, Enum):
    DEFAULT = "default"
    COMPACT = "compact"
