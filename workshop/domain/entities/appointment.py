"""Appointment entity: a scheduled service request occupying a technician slot."""

from dataclasses import dataclass
from datetime import datetime

from workshop.domain.value_objects.enums import (
    BOOKED_APPOINTMENT_STATUSES,
    AppointmentStatus,
)


@dataclass
class Appointment:
    id: str
    scheduled_at: datetime
    status: AppointmentStatus
    assigned_to: str | None = None
    estimated_duration: int | None = None
    work_order_id: str | None = None

    def is_unassigned(self) -> bool:
        return not self.assigned_to or self.status == AppointmentStatus.PENDING_APPROVAL

    def is_booked(self) -> bool:
        return self.status in BOOKED_APPOINTMENT_STATUSES
