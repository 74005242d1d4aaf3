"""ServiceRequest entity: a customer waiting in the queue for a technician."""

from dataclasses import dataclass
from datetime import datetime

from workshop.domain.value_objects.enums import RequestStatus


@dataclass
class ServiceRequest:
    id: str
    customer_id: str
    service_type: str
    joined_at: datetime | None
    plate: str = ""
    mileage_km: int = 0
    vehicle_id: str | None = None
    status: RequestStatus = RequestStatus.WAITING
    assigned_to: str | None = None
    work_order_id: str | None = None
    verification_code: str | None = None

    def is_assigned(self) -> bool:
        return self.work_order_id is not None
