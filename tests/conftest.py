from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest

from orders import db as portal_db
from orders import service as order_service
from orders.exceptions import StorageError
from orders.repository import UPDATABLE_ORDER_COLUMNS

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
CUSTOMER_ID = "7d3c1c7e-2f0a-4a8e-9d3e-6c1b2a9f0e11"
OTHER_CUSTOMER_ID = "0b8f5d1a-43c2-4f0e-a9a1-5e2d7c6b4a33"


class FakeTransaction:
    """Transaccion anidable; al cerrar la mas externa libera los bloqueos de fila de la tarea."""

    def __init__(self, conn: "FakeConnection"):
        self._conn = conn

    async def __aenter__(self):
        self._conn.transactions += 1
        task = asyncio.current_task()
        self._conn.depth[task] = self._conn.depth.get(task, 0) + 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        task = asyncio.current_task()
        self._conn.depth[task] -= 1
        if self._conn.depth[task] == 0:
            del self._conn.depth[task]
            for lock in self._conn.row_locks.pop(task, []):
                lock.release()
        return False


class FakeConnection:
    def __init__(self):
        self.transactions = 0
        self.listeners: Dict[str, List[Any]] = {}
        self.depth: Dict[Any, int] = {}
        self.row_locks: Dict[Any, List[asyncio.Lock]] = {}

    async def lock_row(self, lock: asyncio.Lock) -> None:
        task = asyncio.current_task()
        if task not in self.depth:
            raise AssertionError("SELECT ... FOR UPDATE fuera de una transaccion")
        await lock.acquire()
        self.row_locks.setdefault(task, []).append(lock)

    def transaction(self):
        return FakeTransaction(self)

    async def add_listener(self, channel, callback):
        self.listeners.setdefault(channel, []).append(callback)

    async def remove_listener(self, channel, callback):
        self.listeners.get(channel, []).remove(callback)

    def notify(self, channel: str, payload: str) -> None:
        for callback in list(self.listeners.get(channel, [])):
            callback(self, 4242, channel, payload)


class _Acquire:
    def __init__(self, pool: "FakePool"):
        self._pool = pool

    async def __aenter__(self):
        self._pool.acquired += 1
        return self._pool.conn

    async def __aexit__(self, exc_type, exc, tb):
        self._pool.released += 1
        return False

    def __await__(self):
        return self.__aenter__().__await__()


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()
        self.acquired = 0
        self.released = 0

    def acquire(self):
        return _Acquire(self)

    async def release(self, conn):
        self.released += 1


class PortalStore:
    """Reemplazo en memoria de orders.repository para las pruebas de servicio."""

    def __init__(self):
        self.orders: Dict[uuid.UUID, Dict[str, Any]] = {}
        self.items: Dict[uuid.UUID, List[Dict[str, Any]]] = {}
        self.quotes: Dict[uuid.UUID, Dict[str, Any]] = {}
        self.addresses: set = set()
        self.issues: List[Dict[str, Any]] = []
        self.updates: List[Tuple[uuid.UUID, Dict[str, Any]]] = []
        self.notifications: List[Tuple[str, Dict[str, Any]]] = []
        self.reject_with: Optional[Exception] = None
        self.row_locks: Dict[uuid.UUID, asyncio.Lock] = {}

    def add_order(self, **fields: Any) -> uuid.UUID:
        order_id = fields.pop("id", None) or uuid.uuid4()
        items = fields.pop("items", None)
        record = {
            "id": order_id,
            "order_number": "ORD-2026-0001",
            "customer_id": CUSTOMER_ID,
            "status": "order_confirmed",
            "total_amount": Decimal("1000"),
            "currency": "GHS",
            "payment_amount_confirmed": Decimal("0"),
            "payment_confirmed_at": None,
            "payment_status": None,
            "payment_proof_url": None,
            "payment_proof_uploaded_at": None,
            "payment_verified_at": None,
            "payment_reference": None,
            "payment_method": None,
            "delivery_address_id": None,
            "tracking_number": None,
            "carrier": None,
            "estimated_delivery_date": None,
            "created_at": NOW - timedelta(days=2),
            "quote_number": "QT-2026-0007",
        }
        record.update(fields)
        self.orders[order_id] = record
        if items is None:
            items = [
                {
                    "id": uuid.uuid4(),
                    "order_id": order_id,
                    "product_name": "Portland cement 50kg",
                    "quantity": Decimal("10"),
                    "unit": "bag",
                    "unit_price": Decimal("100"),
                    "total_price": Decimal("1000"),
                }
            ]
        self.items[order_id] = items
        return order_id

    def add_quote(self, **fields: Any) -> uuid.UUID:
        quote_id = fields.pop("id", None) or uuid.uuid4()
        record = {
            "id": quote_id,
            "quote_number": "QT-2026-0007",
            "customer_id": CUSTOMER_ID,
            "status": "quoted",
            "total_amount": Decimal("2500"),
            "currency": "GHS",
            "valid_until": None,
            "created_at": NOW - timedelta(days=5),
        }
        record.update(fields)
        self.quotes[quote_id] = record
        return quote_id

    async def fetch_order(self, conn, order_id, customer_id=None, *, for_update=False):
        if for_update and order_id in self.orders:
            await conn.lock_row(self.row_locks.setdefault(order_id, asyncio.Lock()))
        record = self.orders.get(order_id)
        if record is None:
            return None
        if customer_id is not None and str(record["customer_id"]) != str(customer_id):
            return None
        return dict(record)

    async def fetch_orders_for_customer(self, conn, customer_id, *, statuses=None):
        rows = [
            dict(record)
            for record in self.orders.values()
            if str(record["customer_id"]) == str(customer_id) and (not statuses or record["status"] in statuses)
        ]
        return sorted(rows, key=lambda row: row["created_at"], reverse=True)

    async def fetch_order_items(self, conn, order_ids):
        return {order_id: list(self.items.get(order_id, [])) for order_id in order_ids}

    async def update_order(self, conn, order_id, fields):
        invalid = set(fields) - UPDATABLE_ORDER_COLUMNS
        if invalid:
            raise ValueError(f"Columnas no actualizables: {', '.join(sorted(invalid))}")
        if self.reject_with is not None:
            raise self.reject_with
        self.updates.append((order_id, dict(fields)))
        self.orders[order_id].update(fields)
        return {"id": order_id}

    async def insert_order_issue(self, conn, data):
        self.issues.append(dict(data))
        return {
            "id": data["id"],
            "order_id": data["order_id"],
            "issue_type": data["issue_type"],
            "created_at": NOW,
        }

    async def customer_address_exists(self, conn, address_id, customer_id):
        return (address_id, str(customer_id)) in self.addresses

    async def fetch_quote(self, conn, quote_id, customer_id, *, for_update=False):
        record = self.quotes.get(quote_id)
        if record is None or str(record["customer_id"]) != str(customer_id):
            return None
        return dict(record)

    async def fetch_quotes_for_customer(self, conn, customer_id, *, statuses=None):
        return [
            dict(record)
            for record in self.quotes.values()
            if str(record["customer_id"]) == str(customer_id) and (not statuses or record["status"] in statuses)
        ]

    async def update_quote_status(self, conn, quote_id, status, *, customer_notes=None):
        record = self.quotes[quote_id]
        record["status"] = status
        if customer_notes is not None:
            record["customer_notes"] = customer_notes
        return dict(record)

    def record_notification(self, client, name, payload):
        self.notifications.append((name, payload))
        return None


REPOSITORY_FUNCTIONS = (
    "fetch_order",
    "fetch_orders_for_customer",
    "fetch_order_items",
    "update_order",
    "insert_order_issue",
    "customer_address_exists",
    "fetch_quote",
    "fetch_quotes_for_customer",
    "update_quote_status",
)


class FakeStorage:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: List[Tuple[str, str, bytes, str]] = []
        self.signed: List[Tuple[str, str, int]] = []
        self.deleted: List[Tuple[str, str]] = []

    def delete_file(self, bucket, path):
        self.deleted.append((bucket, path))
        return True

    def upload_file(self, bucket, path, data, content_type):
        if self.fail:
            raise StorageError("No se pudo subir el archivo: HTTP 500")
        self.uploads.append((bucket, path, data, content_type))
        return path

    def get_signed_url(self, bucket, path, expires_in):
        self.signed.append((bucket, path, expires_in))
        return f"https://files.example.test/{bucket}/{path}?token=signed"


@pytest.fixture
def fake_pool():
    pool = FakePool()
    portal_db.set_pool(pool)
    yield pool
    portal_db.set_pool(None)


@pytest.fixture
def store(monkeypatch, fake_pool):
    portal_store = PortalStore()
    for name in REPOSITORY_FUNCTIONS:
        monkeypatch.setattr(order_service, name, getattr(portal_store, name))
    monkeypatch.setattr(order_service, "notify_in_background", portal_store.record_notification)
    return portal_store


@pytest.fixture
def storage():
    return FakeStorage()
