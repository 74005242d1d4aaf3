"""Collection names and document → entity mappers.

Store documents are untyped dicts with camelCase keys. Everything that enters
the engine goes through one of the mappers below, which fail fast with
``ValidationError`` instead of letting missing fields reach scoring logic.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from workshop.application.ports.document_store import Document
from workshop.domain.entities.appointment import Appointment
from workshop.domain.entities.service_request import ServiceRequest
from workshop.domain.entities.technician import DEFAULT_RATING, Technician
from workshop.domain.entities.vehicle import Vehicle
from workshop.domain.entities.work_order import WorkOrder
from workshop.domain.errors import ValidationError
from workshop.domain.value_objects.enums import (
    AppointmentStatus,
    RequestStatus,
    WorkOrderStatus,
)

# ─── Collections ─────────────────────────────────────────────────────

USERS = "users"
QUEUE_ENTRIES = "queueEntries"
WORK_ORDERS = "workOrders"
APPOINTMENTS = "appointments"
MOTORCYCLES = "motorcycles"
SERVICES = "services"
NOTIFICATIONS = "notifications"
SMS_NOTIFICATIONS = "smsNotifications"
ASSIGNMENT_AUDIT_LOG = "assignmentAuditLog"
TECHNICIAN_METRICS = "technicianMetrics"
FUNCTION_METRICS = "functionMetrics"


# ─── Field helpers ───────────────────────────────────────────────────


def _required_str(doc: Document, path: str) -> str:
    value = doc.get(path)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{doc.id}: field '{path}' must be a non-empty string")
    return value


def _optional_str(doc: Document, path: str) -> str | None:
    value = doc.get(path)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{doc.id}: field '{path}' must be a string")
    return value


def _optional_number(doc: Document, path: str, default: float | None = None) -> float | None:
    value = doc.get(path)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{doc.id}: field '{path}' must be a number")
    return float(value)


def parse_datetime(value: Any, where: str = "value") -> datetime | None:
    """Accept datetimes, ISO-8601 strings and epoch seconds; always return UTC-aware."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(f"{where}: '{value}' is not an ISO-8601 timestamp") from e
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        raise ValidationError(f"{where}: unsupported timestamp type {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _datetime(doc: Document, path: str, required: bool = False) -> datetime | None:
    value = parse_datetime(doc.get(path), where=f"{doc.id}.{path}")
    if required and value is None:
        raise ValidationError(f"{doc.id}: field '{path}' is required")
    return value


def _enum(doc: Document, path: str, enum_cls, default=None):
    raw = doc.get(path)
    if raw is None:
        if default is None:
            raise ValidationError(f"{doc.id}: field '{path}' is required")
        return default
    try:
        return enum_cls(raw)
    except ValueError as e:
        raise ValidationError(f"{doc.id}: '{raw}' is not a valid {enum_cls.__name__}") from e


# ─── Mappers ─────────────────────────────────────────────────────────


def technician_from_document(doc: Document) -> Technician:
    raw_skills = doc.get("technicianProfile.skills", [])
    if not isinstance(raw_skills, list) or not all(isinstance(s, str) for s in raw_skills):
        raise ValidationError(f"{doc.id}: 'technicianProfile.skills' must be a list of strings")

    available = doc.get("availability.isAvailable")
    if available is not None and not isinstance(available, bool):
        raise ValidationError(f"{doc.id}: 'availability.isAvailable' must be a boolean")

    rating = _optional_number(doc, "technicianProfile.rating", DEFAULT_RATING)
    if not 0.0 <= rating <= 5.0:
        raise ValidationError(f"{doc.id}: rating {rating} is outside [0, 5]")

    return Technician(
        id=doc.id,
        name=_optional_str(doc, "name") or _optional_str(doc, "displayName") or doc.id,
        skills=[s for s in raw_skills if s.strip()],
        is_available=available is not False,
        hourly_rate=_optional_number(doc, "technicianProfile.hourlyRate"),
        rating=rating,
    )


def service_request_from_document(doc: Document) -> ServiceRequest:
    mileage = _optional_number(doc, "mileageKm", 0)
    return ServiceRequest(
        id=doc.id,
        customer_id=_required_str(doc, "customerId"),
        service_type=_required_str(doc, "serviceType"),
        joined_at=_datetime(doc, "joinedAt"),
        plate=_optional_str(doc, "plate") or "",
        mileage_km=int(mileage),
        vehicle_id=_optional_str(doc, "motorcycleId"),
        status=_enum(doc, "status", RequestStatus, RequestStatus.WAITING),
        assigned_to=_optional_str(doc, "assignedTo"),
        work_order_id=_optional_str(doc, "workOrderId"),
        verification_code=_optional_str(doc, "verificationCode"),
    )


def work_order_from_document(doc: Document) -> WorkOrder:
    return WorkOrder(
        id=doc.id,
        status=_enum(doc, "status", WorkOrderStatus),
        assigned_to=_optional_str(doc, "assignedTo"),
        client_id=_optional_str(doc, "clientId"),
        vehicle_id=_optional_str(doc, "vehicleId"),
        number=_optional_str(doc, "number"),
        created_at=_datetime(doc, "createdAt"),
        updated_at=_datetime(doc, "updatedAt"),
        total_price=_optional_number(doc, "totalPrice", 0.0),
    )


def appointment_from_document(doc: Document) -> Appointment:
    duration = _optional_number(doc, "estimatedDuration")
    return Appointment(
        id=doc.id,
        scheduled_at=_datetime(doc, "scheduledAt", required=True),
        status=_enum(doc, "status", AppointmentStatus),
        assigned_to=_optional_str(doc, "assignedTo"),
        estimated_duration=int(duration) if duration is not None else None,
        work_order_id=_optional_str(doc, "workOrderId"),
    )


def vehicle_from_document(doc: Document) -> Vehicle:
    year = _optional_number(doc, "year")
    mileage = _optional_number(doc, "mileageKm")
    return Vehicle(
        id=doc.id,
        brand=_optional_str(doc, "brand"),
        model=_optional_str(doc, "model"),
        year=int(year) if year is not None else None,
        plate=_optional_str(doc, "plate"),
        mileage_km=int(mileage) if mileage is not None else None,
        owner_id=_optional_str(doc, "userId"),
    )
