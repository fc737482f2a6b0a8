from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

import requests

logger = logging.getLogger("portal.notifications")

PAYMENT_PROOF_UPLOADED = "notify-payment-proof-uploaded"
DELIVERY_ADDRESS_CONFIRMED = "confirm-delivery-address"
ADMIN_ALERT = "notify-admins"
QUOTE_RESPONSE = "quote-approval"

_pending: Set["asyncio.Task[bool]"] = set()


@dataclass(slots=True)
class NotificationSettings:
    base_url: str
    service_key: str
    timeout: float = 10.0


class NotificationClient:
    def __init__(self, settings: NotificationSettings, session: Optional[requests.Session] = None):
        self._settings = settings
        self._session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self._settings.base_url and self._settings.service_key)

    def invoke(self, name: str, payload: Dict[str, Any]) -> bool:
        """Invoca una funcion remota de notificacion; devuelve False si falla."""
        if not self.enabled:
            logger.info("Notificacion %s omitida: backend no configurado", name)
            return False
        url = f"{self._settings.base_url.rstrip('/')}/functions/v1/{name}"
        headers = {
            "Authorization": f"Bearer {self._settings.service_key}",
            "Content-Type": "application/json",
        }
        try:
            response = self._session.post(url, headers=headers, json=payload, timeout=self._settings.timeout)
        except requests.RequestException as exc:
            logger.warning("No se pudo invocar %s: %s", name, exc)
            return False
        if response.status_code >= 300:
            logger.warning("Funcion %s respondio %s: %s", name, response.status_code, response.text)
            return False
        return True


async def _invoke_safely(client: NotificationClient, name: str, payload: Dict[str, Any]) -> bool:
    try:
        return await asyncio.to_thread(client.invoke, name, payload)
    except Exception as exc:  # noqa: BLE001
        logger.error("Notificacion %s fallo: %s", name, exc)
        return False


def notify_in_background(
    client: Optional[NotificationClient],
    name: str,
    payload: Dict[str, Any],
) -> Optional["asyncio.Task[bool]"]:
    """Agenda la notificacion sin bloquear la respuesta; los fallos solo se registran."""
    if client is None:
        return None
    task = asyncio.get_running_loop().create_task(_invoke_safely(client, name, payload))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task
