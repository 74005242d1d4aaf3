"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from workshop.adapters.persistence.memory_store import MemoryDocumentStore
from workshop.application.mappers import (
    APPOINTMENTS,
    MOTORCYCLES,
    QUEUE_ENTRIES,
    SERVICES,
    USERS,
    WORK_ORDERS,
)
from workshop.application.metrics import MetricsCollector
from workshop.application.ports.notifier import NotifierPort
from workshop.domain.errors import TransientStoreError

# 10:00 local time in the workshop (UTC-5)
NOW = datetime(2024, 3, 15, 15, 0, tzinfo=timezone.utc)


# ─── Fakes ──────────────────────────────────────────────────────────


class FakeClock:
    """Callable epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_710_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedStore(MemoryDocumentStore):
    """Memory store whose calls can be told to fail per method and collection."""

    def __init__(self):
        super().__init__()
        self.calls: list[tuple[str, str | None]] = []
        self._failures: list[list[Any]] = []

    def fail(self, method: str, collection: str | None = None, error: Exception | None = None,
             times: int | None = None) -> None:
        self._failures.append(
            [method, collection, error or TransientStoreError(f"{method} unavailable"), times]
        )

    def heal(self) -> None:
        self._failures.clear()

    def count(self, method: str, collection: str | None = None) -> int:
        return sum(1 for m, c in self.calls if m == method and (collection is None or c == collection))

    def _check(self, method: str, collection: str | None) -> None:
        self.calls.append((method, collection))
        for entry in self._failures:
            m, c, error, remaining = entry
            if m == method and (c is None or c == collection) and remaining != 0:
                if remaining is not None:
                    entry[3] = remaining - 1
                raise error

    async def get(self, collection, doc_id):
        self._check("get", collection)
        return await super().get(collection, doc_id)

    async def query(self, collection, filters=(), order_by=None, limit=None):
        self._check("query", collection)
        return await super().query(collection, filters, order_by, limit)

    async def set(self, collection, doc_id, data, merge=False):
        self._check("set", collection)
        await super().set(collection, doc_id, data, merge)

    async def update(self, collection, doc_id, fields):
        self._check("update", collection)
        await super().update(collection, doc_id, fields)

    async def add(self, collection, data):
        self._check("add", collection)
        return await super().add(collection, data)

    async def delete(self, collection, doc_id):
        self._check("delete", collection)
        await super().delete(collection, doc_id)

    async def run_transaction(self, fn):
        self._check("run_transaction", None)
        return await super().run_transaction(fn)

    async def batch_write(self, ops):
        self._check("batch_write", None)
        await super().batch_write(ops)

    async def ping(self):
        self._check("ping", None)


class RecordingNotifier(NotifierPort):
    def __init__(self):
        self.sms: list[dict] = []
        self.user_notifications: list[dict] = []
        self.fail_users: set[str] = set()

    async def notify_customer(self, customer_id, phone, message, meta=None):
        self.sms.append({"customer_id": customer_id, "phone": phone, "message": message, "meta": meta or {}})

    async def notify_user(self, user_id, title, message, priority="medium", category="service_orders", meta=None):
        if user_id in self.fail_users:
            raise ConnectionError(f"push gateway rejected {user_id}")
        self.user_notifications.append(
            {
                "user_id": user_id,
                "title": title,
                "message": message,
                "priority": priority,
                "category": category,
                "meta": meta or {},
            }
        )

    def for_user(self, user_id: str) -> list[dict]:
        return [n for n in self.user_notifications if n["user_id"] == user_id]


class Seeder:
    """Writes realistic documents straight into a memory store."""

    def __init__(self, store: MemoryDocumentStore, now: datetime):
        self.store = store
        self.now = now

    def technician(self, tech_id: str, skills=("basic_maintenance",), rating: float = 4.5,
                   available: bool = True, name: str | None = None) -> None:
        self.store.load(
            USERS,
            {
                tech_id: {
                    "role": "technician",
                    "name": name or tech_id.title(),
                    "availability": {"isAvailable": available},
                    "technicianProfile": {"skills": list(skills), "rating": rating},
                }
            },
        )

    def manager(self, manager_id: str) -> None:
        self.store.load(USERS, {manager_id: {"role": "manager", "name": manager_id.title()}})

    def customer(self, customer_id: str, phone: str | None = "+573001234567") -> None:
        data = {"role": "customer", "name": customer_id.title()}
        if phone:
            data["phone"] = phone
        self.store.load(USERS, {customer_id: data})

    def request(self, request_id: str, customer_id: str = "cust-1", service_type: str = "oil_change",
                **extra: Any) -> None:
        data = {
            "customerId": customer_id,
            "serviceType": service_type,
            "joinedAt": self.now - timedelta(minutes=10),
            "plate": "ABC123",
            "mileageKm": 12000,
            "status": "waiting",
            "verificationCode": "4821",
        }
        data.update(extra)
        self.store.load(QUEUE_ENTRIES, {request_id: data})

    def service(self, service_type: str, required_skills: list[str]) -> None:
        self.store.load(SERVICES, {service_type: {"requiredSkills": required_skills}})

    def motorcycle(self, vehicle_id: str, brand: str, model: str = "Duke 390") -> None:
        self.store.load(MOTORCYCLES, {vehicle_id: {"brand": brand, "model": model, "userId": "cust-1"}})

    def work_order(self, wo_id: str, assigned_to: str | None, status: str = "open",
                   age: timedelta = timedelta(hours=1), **extra: Any) -> None:
        data = {
            "status": status,
            "assignedTo": assigned_to,
            "clientId": "cust-1",
            "createdAt": self.now - age,
            "updatedAt": self.now - age,
            "totalPrice": 0,
        }
        data.update(extra)
        self.store.load(WORK_ORDERS, {wo_id: data})

    def appointment(self, apt_id: str, assigned_to: str | None, status: str = "scheduled",
                    at: datetime | None = None) -> None:
        self.store.load(
            APPOINTMENTS,
            {
                apt_id: {
                    "status": status,
                    "assignedTo": assigned_to,
                    "scheduledAt": at or self.now + timedelta(hours=2),
                    "estimatedDuration": 60,
                }
            },
        )


# ─── Fixtures ───────────────────────────────────────────────────────


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def tz():
    return ZoneInfo("America/Bogota")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return ScriptedStore()


@pytest.fixture
def metrics():
    return MetricsCollector(utcnow=lambda: NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def seed(store, now):
    return Seeder(store, now)
