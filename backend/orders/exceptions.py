from typing import Optional

from lifecycle.transition_errors import ParsedTransitionError


class OrderError(Exception):
    """Errores base del modulo de pedidos."""


class OrderNotFoundError(OrderError):
    """Se lanza cuando el pedido no existe o no pertenece al cliente."""


class QuoteNotFoundError(OrderError):
    """Se lanza cuando la cotizacion no existe o no pertenece al cliente."""


class ActionNotPermitted(OrderError):
    """La accion solicitada no esta habilitada para el estado actual."""

    def __init__(self, message: str, *, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class OrderTransitionRejected(OrderError):
    """La base rechazo el cambio de estado (trigger o politica)."""

    def __init__(self, parsed: ParsedTransitionError):
        super().__init__(parsed.description)
        self.parsed = parsed


class StorageError(OrderError):
    """Fallo al subir o firmar archivos en el almacenamiento externo."""
