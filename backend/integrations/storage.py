from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import requests
from tenacity import RetryError, before_sleep_log, retry, retry_if_exception, stop_after_attempt, wait_exponential

from orders.exceptions import StorageError

logger = logging.getLogger("portal.storage")

ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "application/pdf"})


class TransientStorageResponse(RuntimeError):
    """Respuesta 5xx o 429 del almacenamiento; se reintenta."""

    def __init__(self, response: requests.Response):
        super().__init__(f"HTTP {response.status_code}: {response.text}")
        self.response = response


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (requests.RequestException, TransientStorageResponse))


def _retry_root_cause(exc: RetryError) -> str:
    last = exc.last_attempt.exception()
    if last is None:
        return "sin respuesta"
    return f"{type(last).__name__}: {last}"


@dataclass(slots=True)
class StorageSettings:
    base_url: str
    service_key: str
    timeout: float = 20.0
    max_attempts: int = 3
    backoff_seconds: float = 1.0


class StorageClient:
    """Cliente minimo del almacenamiento de objetos del backend gestionado."""

    def __init__(self, settings: StorageSettings, session: Optional[requests.Session] = None):
        self._settings = settings
        self._session = session or requests.Session()
        self._post_object = retry(
            stop=stop_after_attempt(max(1, settings.max_attempts)),
            wait=wait_exponential(multiplier=settings.backoff_seconds, max=8),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )(self._post_once)

    @property
    def enabled(self) -> bool:
        return bool(self._settings.base_url and self._settings.service_key)

    def _headers(self, content_type: Optional[str] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._settings.service_key}",
            "apikey": self._settings.service_key,
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _object_url(self, *parts: str) -> str:
        base = self._settings.base_url.rstrip("/")
        return f"{base}/storage/v1/object/" + "/".join(quote(part, safe="/") for part in parts)

    def upload_file(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        if not self.enabled:
            raise StorageError("Almacenamiento no configurado")
        url = self._object_url(bucket, path)
        headers = self._headers(content_type)
        headers["x-upsert"] = "false"
        headers["cache-control"] = "3600"
        try:
            response = self._post_object(url, headers=headers, data=data)
        except RetryError as exc:
            cause = _retry_root_cause(exc)
            logger.error("No se pudo subir %s/%s: %s", bucket, path, cause)
            raise StorageError(f"No se pudo subir el archivo: {cause}") from exc
        if response.status_code in (200, 201):
            return path
        logger.error("Subida a %s/%s rechazada: HTTP %s %s", bucket, path, response.status_code, response.text)
        raise StorageError(f"No se pudo subir el archivo: HTTP {response.status_code}")

    def delete_file(self, bucket: str, path: str) -> bool:
        """Borra un objeto huerfano; los fallos solo se registran."""
        if not self.enabled:
            return False
        try:
            response = self._session.delete(
                self._object_url(bucket, path),
                headers=self._headers(),
                timeout=self._settings.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("No se pudo borrar %s/%s: %s", bucket, path, exc)
            return False
        if response.status_code not in (200, 204):
            logger.warning("Borrado de %s/%s respondio %s", bucket, path, response.status_code)
            return False
        return True

    def _post_once(self, url: str, **kwargs) -> requests.Response:
        response = self._session.post(url, timeout=self._settings.timeout, **kwargs)
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientStorageResponse(response)
        return response

    def get_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        if not self.enabled:
            raise StorageError("Almacenamiento no configurado")
        url = self._object_url("sign", bucket, path)
        try:
            response = self._session.post(
                url,
                headers=self._headers("application/json"),
                json={"expiresIn": int(expires_in)},
                timeout=self._settings.timeout,
            )
        except requests.RequestException as exc:
            logger.error("No se pudo firmar %s/%s: %s", bucket, path, exc)
            raise StorageError("No se pudo generar el enlace firmado") from exc
        if response.status_code != 200:
            logger.error("Firma de %s/%s respondio %s: %s", bucket, path, response.status_code, response.text)
            raise StorageError("No se pudo generar el enlace firmado")
        signed = (response.json() or {}).get("signedURL") or ""
        if not signed:
            raise StorageError("Respuesta de firma sin enlace")
        if signed.startswith("http"):
            return signed
        return f"{self._settings.base_url.rstrip('/')}/storage/v1{signed}"
