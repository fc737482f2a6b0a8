from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Tuple

from .enums import (
    Audience,
    BadgeVariant,
    OrderStatus,
    PaymentStatus,
    SETTLED_PAYMENT_STATUSES,
    StatusIcon,
    VisualClass,
)
from .payments import BlockerContext, ZERO
from .taxonomy import ORDER_TAXONOMY, StatusTaxonomy


@dataclass(frozen=True, slots=True)
class Badge:
    value: str
    label: str
    visual_class: VisualClass
    icon: Optional[StatusIcon]
    animated: bool
    variant: BadgeVariant
    known: bool
    tooltip: Optional[str] = None
    blocker: Optional[str] = None


@dataclass(frozen=True, slots=True)
class BlockerRule:
    name: str
    applies: Callable[[BlockerContext], bool]
    message: Callable[[BlockerContext], str]


def format_amount(amount: Decimal) -> str:
    if amount == amount.to_integral_value():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def _waiting_on_balance(ctx: BlockerContext) -> bool:
    # Sin saldo conocido no se muestra monto
    return (
        ctx.status == OrderStatus.PROCESSING
        and ctx.payment_status == PaymentStatus.PARTIALLY_PAID
        and ctx.balance_remaining is not None
        and ctx.balance_remaining > ZERO
    )


def _missing_address(ctx: BlockerContext) -> bool:
    return ctx.status in (OrderStatus.PROCESSING, OrderStatus.READY_TO_SHIP) and not ctx.delivery_address_id


def _not_fully_paid(ctx: BlockerContext) -> bool:
    return ctx.status == OrderStatus.PAYMENT_RECEIVED and ctx.payment_status not in SETTLED_PAYMENT_STATUSES


def _awaiting_proof(ctx: BlockerContext) -> bool:
    return ctx.status == OrderStatus.PENDING_PAYMENT and ctx.payment_status in (None, PaymentStatus.UNPAID)


# Se evalua en orden; gana la primera regla que aplica
BLOCKER_RULES: Tuple[BlockerRule, ...] = (
    BlockerRule(
        "balance_payment",
        _waiting_on_balance,
        lambda ctx: f"Waiting on balance payment of {ctx.currency} {format_amount(ctx.balance_remaining)}",
    ),
    BlockerRule(
        "delivery_address",
        _missing_address,
        lambda ctx: "Delivery address required before shipment",
    ),
    BlockerRule(
        "full_payment",
        _not_fully_paid,
        lambda ctx: "Order cannot proceed until fully paid",
    ),
    BlockerRule(
        "payment_proof",
        _awaiting_proof,
        lambda ctx: "Waiting for customer to submit payment proof",
    ),
)


def compute_blocker_reason(context: Optional[BlockerContext]) -> Optional[str]:
    if context is None:
        return None
    for rule in BLOCKER_RULES:
        if rule.applies(context):
            return rule.message(context)
    return None


def render_badge(
    status: object,
    *,
    taxonomy: StatusTaxonomy = ORDER_TAXONOMY,
    variant: BadgeVariant = BadgeVariant.DEFAULT,
    audience: Audience = Audience.CUSTOMER,
    context: Optional[BlockerContext] = None,
) -> Badge:
    """Arma el badge de un estado; nunca falla ante estados desconocidos."""
    descriptor = taxonomy.get(status)
    variant = BadgeVariant(variant)
    audience = Audience(audience)
    blocker = compute_blocker_reason(context)
    parts = [text for text in (blocker, descriptor.hint_for(audience)) if text]
    return Badge(
        value=descriptor.value,
        label=descriptor.label_for(audience),
        visual_class=descriptor.visual_class,
        icon=None if variant == BadgeVariant.COMPACT else descriptor.icon,
        animated=descriptor.visual_class == VisualClass.PROGRESS,
        variant=variant,
        known=descriptor is not taxonomy.fallback,
        tooltip="\n".join(parts) if parts else None,
        blocker=blocker,
    )
