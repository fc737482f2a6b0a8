"""Traduce errores de transicion del datastore a mensajes accionables.

Las reglas de transicion viven en triggers de la base; aqui solo se
interpreta el texto que devuelven para mostrar un titulo, una descripcion y
la siguiente accion sugerida.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

_BALANCE_RE = re.compile(r"Balance:?\s*([\d,.\s]+)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ParsedTransitionError:
    title: str
    description: str
    action: Optional[str] = None
    action_label: Optional[str] = None


def _message_of(error: Any) -> str:
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    for attr in ("message", "detail", "details"):
        value = getattr(error, attr, None)
        if value:
            return str(value)
    return str(error)


def parse_status_transition_error(error: Any) -> ParsedTransitionError:
    message = _message_of(error)

    if (
        "Cannot start processing without verified payment" in message
        or "payment must be verified" in message
        or "verified deposit" in message
    ):
        return ParsedTransitionError(
            title="Payment Required",
            description="This order needs a verified deposit before processing can begin.",
            action="verify-payment",
            action_label="Verify Payment",
        )

    if "Cannot ship until fully paid" in message or "fully paid" in message or "balance remaining" in message:
        match = _BALANCE_RE.search(message)
        balance = match.group(1).strip().rstrip(".") if match else "outstanding"
        return ParsedTransitionError(
            title="Balance Payment Required",
            description=f"Cannot proceed to shipping. Outstanding balance: {balance}",
            action="request-balance",
            action_label="Request Balance Payment",
        )

    if "delivery address" in message:
        return ParsedTransitionError(
            title="Address Required",
            description="Customer must provide a delivery address before shipping.",
            action="request-address",
            action_label="Request Address",
        )

    if "status transition" in message:
        return ParsedTransitionError(
            title="Invalid Status Change",
            description="This status transition is not allowed. Please check order requirements.",
            action="view-order",
            action_label="View Order Details",
        )

    if "tracking" in message or "carrier" in message:
        return ParsedTransitionError(
            title="Tracking Details Required",
            description="Please provide carrier and tracking information before marking as shipped.",
        )

    return ParsedTransitionError(
        title="Status Update Failed",
        description=message or "Please check order requirements and try again.",
    )
