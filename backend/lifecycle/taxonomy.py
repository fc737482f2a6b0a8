"""Taxonomia de estados de pedidos y cotizaciones.

Fuente unica para etiquetas, clase visual, icono y ayudas de cada estado.
Las tablas se construyen una sola vez al importar el modulo y no se
modifican en tiempo de ejecucion.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

from .enums import (
    Audience,
    LifecycleStage,
    OrderStatus,
    QuoteStatus,
    StatusGroup,
    StatusIcon,
    VisualClass,
)

ALL_FILTER_VALUE = "all"
ALL_FILTER_LABEL = "All Statuses"

_STAGE_ORDER = {
    LifecycleStage.PENDING: 0,
    LifecycleStage.IN_PROGRESS: 1,
    LifecycleStage.TERMINAL: 2,
}


@dataclass(frozen=True, slots=True)
class StatusDescriptor:
    value: str
    customer_label: str
    internal_label: str
    visual_class: VisualClass
    icon: StatusIcon
    description: str
    stage: LifecycleStage
    group: StatusGroup = StatusGroup.ACTIVE
    customer_hint: Optional[str] = None

    def label_for(self, audience: Audience) -> str:
        if audience == Audience.INTERNAL:
            return self.internal_label
        return self.customer_label

    def hint_for(self, audience: Audience) -> Optional[str]:
        if audience == Audience.INTERNAL:
            return self.description or None
        return self.customer_hint or None


@dataclass(frozen=True, slots=True)
class FilterOption:
    value: str
    label: str


class StatusTaxonomy:
    def __init__(
        self,
        name: str,
        descriptors: Sequence[StatusDescriptor],
        fallback: StatusDescriptor,
    ):
        by_value: Dict[str, StatusDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.value in by_value:
                raise ValueError(f"Estado duplicado en taxonomia {name}: {descriptor.value}")
            if descriptor.value == ALL_FILTER_VALUE:
                raise ValueError(f"'{ALL_FILTER_VALUE}' esta reservado para filtros")
            by_value[descriptor.value] = descriptor
        self.name = name
        self.fallback = fallback
        self._by_value = MappingProxyType(by_value)
        # sorted() es estable: dentro de cada etapa se respeta el orden de declaracion
        self._ordered: Tuple[StatusDescriptor, ...] = tuple(
            sorted(descriptors, key=lambda item: _STAGE_ORDER[item.stage])
        )

    def __contains__(self, status: Any) -> bool:
        key = _status_key(status)
        return key is not None and key in self._by_value

    def __iter__(self) -> Iterator[StatusDescriptor]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    @property
    def values(self) -> Tuple[str, ...]:
        return tuple(descriptor.value for descriptor in self._ordered)

    def get(self, status: Any) -> StatusDescriptor:
        key = _status_key(status)
        if key is None:
            return self.fallback
        return self._by_value.get(key, self.fallback)

    def label(self, status: Any, audience: Audience = Audience.CUSTOMER) -> str:
        return self.get(status).label_for(audience)

    def filter_options(self, audience: Audience = Audience.CUSTOMER) -> Tuple[FilterOption, ...]:
        options = [FilterOption(ALL_FILTER_VALUE, ALL_FILTER_LABEL)]
        options.extend(
            FilterOption(descriptor.value, descriptor.label_for(audience))
            for descriptor in self._ordered
        )
        return tuple(options)


def _status_key(status: Any) -> Optional[str]:
    if isinstance(status, Enum):
        status = status.value
    if isinstance(status, str):
        return status
    return None


ORDER_FALLBACK = StatusDescriptor(
    value="unknown",
    customer_label="Processing",
    internal_label="Unknown",
    visual_class=VisualClass.NEUTRAL,
    icon=StatusIcon.CLOCK,
    description="Status unknown",
    stage=LifecycleStage.IN_PROGRESS,
    customer_hint="Please contact support for more information about your order.",
)

QUOTE_FALLBACK = StatusDescriptor(
    value="unknown",
    customer_label="Processing",
    internal_label="Unknown",
    visual_class=VisualClass.NEUTRAL,
    icon=StatusIcon.CLOCK,
    description="Status unknown",
    stage=LifecycleStage.IN_PROGRESS,
    customer_hint="Please contact support for more information about your quote.",
)


ORDER_TAXONOMY = StatusTaxonomy(
    "orders",
    [
        StatusDescriptor(
            value=OrderStatus.ORDER_CONFIRMED.value,
            customer_label="Order Placed",
            internal_label="Order Confirmed",
            visual_class=VisualClass.INFO,
            icon=StatusIcon.CHECK,
            description="Order confirmed, awaiting payment",
            stage=LifecycleStage.PENDING,
            customer_hint="We have received your order and will begin processing it shortly.",
        ),
        StatusDescriptor(
            value=OrderStatus.PENDING_PAYMENT.value,
            customer_label="Payment Required",
            internal_label="Pending Payment",
            visual_class=VisualClass.WARNING,
            icon=StatusIcon.CREDIT_CARD,
            description="Awaiting payment confirmation",
            stage=LifecycleStage.PENDING,
            customer_hint="Please upload your proof of payment to proceed with your order.",
        ),
        StatusDescriptor(
            value=OrderStatus.PAYMENT_REJECTED.value,
            customer_label="Payment Issue",
            internal_label="Payment Rejected",
            visual_class=VisualClass.DANGER,
            icon=StatusIcon.BAN,
            description="Payment proof was rejected",
            stage=LifecycleStage.PENDING,
            customer_hint="There was an issue with your payment proof. Please check the details and resubmit.",
        ),
        StatusDescriptor(
            value=OrderStatus.PAYMENT_RECEIVED.value,
            customer_label="Payment Confirmed",
            internal_label="Payment Received",
            visual_class=VisualClass.SUCCESS,
            icon=StatusIcon.CHECK,
            description="Payment has been confirmed",
            stage=LifecycleStage.IN_PROGRESS,
            customer_hint="Your payment has been verified. We are preparing your order.",
        ),
        StatusDescriptor(
            value=OrderStatus.PROCESSING.value,
            customer_label="Being Prepared",
            internal_label="Processing",
            visual_class=VisualClass.PROGRESS,
            icon=StatusIcon.SPINNER,
            description="Order is being processed",
            stage=LifecycleStage.IN_PROGRESS,
            customer_hint="Your order is being prepared for shipment.",
        ),
        StatusDescriptor(
            value=OrderStatus.READY_TO_SHIP.value,
            customer_label="Ready for Dispatch",
            internal_label="Ready to Ship",
            visual_class=VisualClass.INFO,
            icon=StatusIcon.PACKAGE,
            description="Order is packed and ready",
            stage=LifecycleStage.IN_PROGRESS,
            customer_hint="Your order is packed and waiting to be picked up by the courier.",
        ),
        StatusDescriptor(
            value=OrderStatus.SHIPPED.value,
            customer_label="On the Way",
            internal_label="Shipped",
            visual_class=VisualClass.INFO,
            icon=StatusIcon.TRUCK,
            description="Order has been shipped",
            stage=LifecycleStage.IN_PROGRESS,
            customer_hint="Your order is on its way! Track your delivery using the tracking number.",
        ),
        StatusDescriptor(
            value=OrderStatus.DELIVERY_CONFIRMATION_PENDING.value,
            customer_label="Delivery Pending",
            internal_label="Pending Confirmation",
            visual_class=VisualClass.WARNING,
            icon=StatusIcon.MAP_PIN,
            description="Awaiting delivery confirmation",
            stage=LifecycleStage.IN_PROGRESS,
            customer_hint="Your order delivery is pending confirmation. We will update you shortly.",
        ),
        StatusDescriptor(
            value=OrderStatus.ON_HOLD.value,
            customer_label="On Hold",
            internal_label="On Hold",
            visual_class=VisualClass.NEUTRAL,
            icon=StatusIcon.PAUSE,
            description="Order is temporarily on hold",
            stage=LifecycleStage.IN_PROGRESS,
            customer_hint="Your order is temporarily on hold. We will contact you with more information.",
        ),
        StatusDescriptor(
            value=OrderStatus.DELIVERED.value,
            customer_label="Delivered",
            internal_label="Delivered",
            visual_class=VisualClass.SUCCESS,
            icon=StatusIcon.CHECK_DOUBLE,
            description="Order has been delivered",
            stage=LifecycleStage.TERMINAL,
            group=StatusGroup.COMPLETED,
            customer_hint="Your order has been successfully delivered. Thank you for your business!",
        ),
        StatusDescriptor(
            value=OrderStatus.DELIVERY_FAILED.value,
            customer_label="Delivery Issue",
            internal_label="Delivery Failed",
            visual_class=VisualClass.DANGER,
            icon=StatusIcon.ALERT,
            description="Delivery attempt failed",
            stage=LifecycleStage.TERMINAL,
            customer_hint="There was an issue with delivery. Please verify your address or contact support.",
        ),
        StatusDescriptor(
            value=OrderStatus.CANCELLED.value,
            customer_label="Cancelled",
            internal_label="Cancelled",
            visual_class=VisualClass.DANGER,
            icon=StatusIcon.CANCEL,
            description="Order has been cancelled",
            stage=LifecycleStage.TERMINAL,
            group=StatusGroup.CANCELLED,
            customer_hint="This order has been cancelled. Contact support if you have questions.",
        ),
    ],
    ORDER_FALLBACK,
)


QUOTE_TAXONOMY = StatusTaxonomy(
    "quotes",
    [
        StatusDescriptor(
            value=QuoteStatus.DRAFT.value,
            customer_label="Draft",
            internal_label="Draft",
            visual_class=VisualClass.NEUTRAL,
            icon=StatusIcon.FILE,
            description="Quote request is still a draft",
            stage=LifecycleStage.PENDING,
            customer_hint="This quote request is still being prepared.",
        ),
        StatusDescriptor(
            value=QuoteStatus.PENDING.value,
            customer_label="Under Review",
            internal_label="Pending Review",
            visual_class=VisualClass.WARNING,
            icon=StatusIcon.CLOCK,
            description="Request is waiting for review",
            stage=LifecycleStage.PENDING,
            customer_hint="Our team is reviewing your quote request and will respond shortly.",
        ),
        StatusDescriptor(
            value=QuoteStatus.REVIEWED.value,
            customer_label="Reviewed",
            internal_label="Reviewed",
            visual_class=VisualClass.INFO,
            icon=StatusIcon.EYE,
            description="Request reviewed, quote not yet issued",
            stage=LifecycleStage.IN_PROGRESS,
            customer_hint="Your request has been reviewed and a quote is being priced.",
        ),
        StatusDescriptor(
            value=QuoteStatus.PROCESSING.value,
            customer_label="In Progress",
            internal_label="Processing",
            visual_class=VisualClass.PROGRESS,
            icon=StatusIcon.SPINNER,
            description="Quote is being prepared",
            stage=LifecycleStage.IN_PROGRESS,
            customer_hint="Your quote is being prepared by our team.",
        ),
        StatusDescriptor(
            value=QuoteStatus.QUOTED.value,
            customer_label="Quote Ready",
            internal_label="Quote Sent",
            visual_class=VisualClass.INFO,
            icon=StatusIcon.FILE_CHECK,
            description="Quote sent, waiting for the customer",
            stage=LifecycleStage.IN_PROGRESS,
            customer_hint="A quote has been prepared for you. Please review and accept or decline.",
        ),
        StatusDescriptor(
            value=QuoteStatus.APPROVED.value,
            customer_label="Accepted",
            internal_label="Approved",
            visual_class=VisualClass.SUCCESS,
            icon=StatusIcon.CHECK,
            description="Customer accepted the quote",
            stage=LifecycleStage.TERMINAL,
            group=StatusGroup.COMPLETED,
            customer_hint="You have accepted this quote. An order will be created shortly.",
        ),
        StatusDescriptor(
            value=QuoteStatus.CONVERTED.value,
            customer_label="Order Created",
            internal_label="Converted",
            visual_class=VisualClass.SUCCESS,
            icon=StatusIcon.PACKAGE,
            description="Quote has become an order",
            stage=LifecycleStage.TERMINAL,
            group=StatusGroup.COMPLETED,
            customer_hint="This quote has been converted to an order. View your orders for details.",
        ),
        StatusDescriptor(
            value=QuoteStatus.COMPLETED.value,
            customer_label="Completed",
            internal_label="Completed",
            visual_class=VisualClass.SUCCESS,
            icon=StatusIcon.CHECK_DOUBLE,
            description="Quote has been fulfilled",
            stage=LifecycleStage.TERMINAL,
            group=StatusGroup.COMPLETED,
            customer_hint="This quote process has been completed.",
        ),
        StatusDescriptor(
            value=QuoteStatus.REJECTED.value,
            customer_label="Declined",
            internal_label="Rejected",
            visual_class=VisualClass.DANGER,
            icon=StatusIcon.CANCEL,
            description="Customer declined the quote",
            stage=LifecycleStage.TERMINAL,
            group=StatusGroup.CANCELLED,
            customer_hint="This quote was declined. You can request a new quote if needed.",
        ),
        StatusDescriptor(
            value=QuoteStatus.DECLINED.value,
            customer_label="Request Declined",
            internal_label="Declined",
            visual_class=VisualClass.DANGER,
            icon=StatusIcon.CANCEL,
            description="Request declined by staff",
            stage=LifecycleStage.TERMINAL,
            group=StatusGroup.CANCELLED,
            customer_hint="We are unable to quote this request. Contact support for alternatives.",
        ),
        StatusDescriptor(
            value=QuoteStatus.EXPIRED.value,
            customer_label="Expired",
            internal_label="Expired",
            visual_class=VisualClass.NEUTRAL,
            icon=StatusIcon.ALERT,
            description="Quote validity has passed",
            stage=LifecycleStage.TERMINAL,
            group=StatusGroup.CANCELLED,
            customer_hint="This quote has expired. Please request a new quote if still interested.",
        ),
    ],
    QUOTE_FALLBACK,
)


def get_order_status_config(status: Any) -> StatusDescriptor:
    return ORDER_TAXONOMY.get(status)


def get_quote_status_config(status: Any) -> StatusDescriptor:
    return QUOTE_TAXONOMY.get(status)


def order_filter_options(audience: Audience = Audience.CUSTOMER) -> Tuple[FilterOption, ...]:
    return ORDER_TAXONOMY.filter_options(audience)


def quote_filter_options(audience: Audience = Audience.CUSTOMER) -> Tuple[FilterOption, ...]:
    return QUOTE_TAXONOMY.filter_options(audience)


TAXONOMIES = MappingProxyType({"orders": ORDER_TAXONOMY, "quotes": QUOTE_TAXONOMY})
