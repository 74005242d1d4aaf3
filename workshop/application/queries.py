"""Typed read helpers shared by the use cases."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from workshop.application.mappers import (
    APPOINTMENTS,
    USERS,
    WORK_ORDERS,
    appointment_from_document,
    technician_from_document,
    work_order_from_document,
)
from workshop.application.ports.document_store import Document, DocumentStore, where
from workshop.domain.entities.appointment import Appointment
from workshop.domain.entities.technician import Technician
from workshop.domain.entities.work_order import WorkOrder
from workshop.domain.errors import ValidationError
from workshop.domain.value_objects.enums import AppointmentStatus, UserRole, WorkOrderStatus

logger = logging.getLogger(__name__)


def day_bounds(now: datetime, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC start/end of the local calendar day containing *now*."""
    local_day = now.astimezone(tz).date()
    start = datetime.combine(local_day, time.min, tzinfo=tz)
    end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def month_bounds(now: datetime, tz: ZoneInfo) -> tuple[str, datetime, datetime]:
    """(``YYYY-MM``, UTC start, UTC end) of the local month containing *now*."""
    local = now.astimezone(tz)
    start = datetime(local.year, local.month, 1, tzinfo=tz)
    if local.month == 12:
        end = datetime(local.year + 1, 1, 1, tzinfo=tz)
    else:
        end = datetime(local.year, local.month + 1, 1, tzinfo=tz)
    return f"{local.year:04d}-{local.month:02d}", start.astimezone(timezone.utc), end.astimezone(timezone.utc)


async def load_users(store: DocumentStore, role: UserRole) -> list[Document]:
    return await store.query(USERS, [where("role", "==", role.value)])


async def load_technicians(store: DocumentStore) -> list[Technician]:
    """Technician profiles; a malformed profile is logged and left out."""
    technicians = []
    for doc in await load_users(store, UserRole.TECHNICIAN):
        try:
            technicians.append(technician_from_document(doc))
        except ValidationError as e:
            logger.warning("Skipping technician %s with invalid profile: %s", doc.id, e)
    return technicians


async def load_work_orders(
    store: DocumentStore, statuses: Iterable[WorkOrderStatus]
) -> list[WorkOrder]:
    docs = await store.query(WORK_ORDERS, [where("status", "in", [s.value for s in statuses])])
    return [work_order_from_document(doc) for doc in docs]


async def load_appointments(
    store: DocumentStore,
    start: datetime,
    end: datetime,
    statuses: Iterable[AppointmentStatus] | None = None,
) -> list[Appointment]:
    filters = [where("scheduledAt", ">=", start), where("scheduledAt", "<", end)]
    if statuses is not None:
        filters.append(where("status", "in", [s.value for s in statuses]))
    return [appointment_from_document(doc) for doc in await store.query(APPOINTMENTS, filters)]
